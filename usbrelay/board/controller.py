"""Relay board controller.

Runs the attach -> poll -> detach cycle on a background worker and exposes
thread-safe relay operations to the host application.

Every USB exchange (poll reads, toggles, serial writes) and every update of
the cached identity and relay state happens under a single lock, so there is
at most one transfer in flight. Events are collected under the lock and
dispatched after it is released, so subscribers may call back into the
controller.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Callable, List, Optional, Sequence, Tuple

from ..errors import (
    DesyncError,
    DeviceNotFoundError,
    RelayError,
    TransferError,
    TransportInitError,
    ValidationError,
)
from ..models import (
    AllChannels,
    Channel,
    ControllerState,
    DeviceIdentity,
    EventKind,
    RelayEvent,
    RelayState,
    Selector,
)
from ..protocol import ReportSerializer
from ..protocol.report import REPORT_REQUEST_TIMEOUT_MS
from ..transport import UsbBackend
from ..transport.pyusb import PyUsbBackend
from .connection import RelayConnection
from .events import EventDispatcher
from .finder import claim_relay

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2  # seconds

BACKOFF_SHORT = 2.0  # seconds, first 20 failed attempts
BACKOFF_MEDIUM = 10.0  # seconds, attempts 21-40
BACKOFF_LONG = 15.0  # seconds, afterwards

# Worker join timeout: one exchange may still be in flight when stopping
STOP_TIMEOUT = REPORT_REQUEST_TIMEOUT_MS / 1000 + 1.0


def backoff_interval(attempts: int) -> float:
    """Seconds to wait after ``attempts`` consecutive failed claims."""
    if attempts > 40:
        return BACKOFF_LONG
    if attempts > 20:
        return BACKOFF_MEDIUM
    return BACKOFF_SHORT


class RelayController:
    """Controller for one USB relay board.

    Example:
        >>> from usbrelay import RelayController, ALL, Channel
        >>>
        >>> relay = RelayController(attach_serial="QWERT")
        >>> relay.subscribe_attached(lambda: print("attached"))
        >>> relay.init(initial_states=[False, True])
        >>>
        >>> relay.toggle(Channel(1), True)
        True
        >>> relay.states()
        [True, True]
        >>> relay.toggle(ALL, False)
        True
        >>> relay.deinit()
    """

    def __init__(self,
                 backend: Optional[UsbBackend] = None,
                 attach_serial: Optional[str] = None,
                 poll_interval: float = POLL_INTERVAL,
                 backoff: Callable[[int], float] = backoff_interval):
        """Initialize controller.

        Args:
            backend: USB backend, or None to create a PyUsbBackend in init()
            attach_serial: Accept only a board with this serial, if set
            poll_interval: Seconds between state polls while attached
            backoff: Maps consecutive failed claim attempts to a wait in seconds
        """
        self._backend = backend
        self._owns_backend = backend is None
        self._poll_interval = poll_interval
        self._backoff = backoff

        self._attach_serial = attach_serial or ""
        self._init_states: List[bool] = []

        # Session state, guarded by _lock
        self._lock = threading.Lock()
        self._connection: Optional[RelayConnection] = None
        self._identity: Optional[DeviceIdentity] = None
        self._relay_state = RelayState()
        self._state = ControllerState.DISCONNECTED

        # Worker
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._events = EventDispatcher()

    # --- Lifecycle ---

    def init(self, initial_states: Optional[Sequence[bool]] = None) -> None:
        """Start the controller worker.

        Args:
            initial_states: Relay states to apply once after the first attach

        Raises:
            TransportInitError: if the USB backend cannot be created
        """
        if self._thread is not None and self._thread.is_alive():
            if self._stop.is_set():
                logger.warning("Previous worker is still stopping, not started")
            else:
                logger.warning("Already started")
            return

        with self._lock:
            self._init_states = [bool(v) for v in initial_states or ()]

        if self._backend is None:
            try:
                self._backend = PyUsbBackend()
            except TransportInitError as e:
                logger.error(f"{e}")
                raise

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="RelayController"
        )
        self._thread.start()

    def deinit(self) -> None:
        """Stop the worker, release the board and the backend.

        Safe to call multiple times.
        """
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=STOP_TIMEOUT)
        if self._thread and self._thread.is_alive():
            # Keep the reference so init() cannot start a second worker
            logger.warning("Worker did not stop in time")
        else:
            self._thread = None

        if self._owns_backend and self._backend is not None:
            self._backend.close()
            self._backend = None

    def __enter__(self) -> RelayController:
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.deinit()

    # --- Accessors ---

    def product(self) -> str:
        """Product name of the attached board, empty if detached."""
        with self._lock:
            return self._identity.product if self._identity else ""

    def serial(self) -> str:
        """Serial of the attached board, empty if detached."""
        with self._lock:
            return self._identity.serial if self._identity else ""

    def identity(self) -> Optional[DeviceIdentity]:
        with self._lock:
            return self._identity

    def attach_serial(self) -> str:
        with self._lock:
            return self._attach_serial

    def set_attach_serial(self, value: Optional[str]) -> None:
        """Restrict attach to a board with this serial.

        Takes effect on the next claim cycle; an empty value accepts any board.
        """
        with self._lock:
            self._attach_serial = value or ""

    def states(self) -> List[bool]:
        """Current relay states, index 0 is relay 1."""
        with self._lock:
            return list(self._relay_state.states)

    def snapshot(self) -> RelayState:
        with self._lock:
            return self._relay_state

    def count(self) -> int:
        """Number of relays on the attached board, 0 if detached."""
        with self._lock:
            return self._relay_state.count

    def is_attached(self) -> bool:
        with self._lock:
            return self._state is ControllerState.ATTACHED

    def state(self) -> ControllerState:
        with self._lock:
            return self._state

    # --- Subscriptions ---

    def subscribe_events(self, callback: Callable[[RelayEvent], None]) -> Callable[[], None]:
        """Subscribe to every RelayEvent.

        Returns:
            Unsubscribe function
        """
        return self._events.subscribe(callback)

    def subscribe_attached(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._subscribe_kind(EventKind.ATTACHED, lambda event: callback())

    def subscribe_detached(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._subscribe_kind(EventKind.DETACHED, lambda event: callback())

    def subscribe_changed(self, callback: Callable[[Selector], None]) -> Callable[[], None]:
        """Subscribe to successful toggles.

        Args:
            callback: Function called with the toggled selector
        """
        return self._subscribe_kind(EventKind.CHANGED, lambda event: callback(event.selector))

    def subscribe_fail_change(self,
                              callback: Callable[[Selector, str], None]
                              ) -> Callable[[], None]:
        """Subscribe to failed toggles.

        Args:
            callback: Function called with the selector and an error message
        """
        return self._subscribe_kind(
            EventKind.FAIL_CHANGE, lambda event: callback(event.selector, event.message))

    def _subscribe_kind(self, kind: EventKind,
                        handler: Callable[[RelayEvent], None]) -> Callable[[], None]:
        def on_event(event: RelayEvent):
            if event.kind is kind:
                handler(event)

        return self._events.subscribe(on_event)

    # --- Operations ---

    def toggle(self, selector: Selector, value: bool) -> bool:
        """Switch one relay or all relays on or off.

        Emits ``changed(selector)`` on success, ``fail_change(selector,
        message)`` on any failure.

        Args:
            selector: ALL or Channel(n), n is 1-based
            value: True to switch on, False to switch off

        Returns:
            True if the board confirmed the requested state
        """
        with self._lock:
            success, event = self._toggle_locked(selector, value)
        self._events.dispatch(event)
        return success

    def set_serial(self, value: str) -> bool:
        """Store a new serial in the board.

        The value is truncated or right padded with '0' to 5 characters.
        Only printable ASCII without space is accepted.

        Returns:
            True if the board accepted the serial
        """
        raw = ReportSerializer.normalize_serial(value)
        try:
            command = ReportSerializer.set_serial(raw)
        except ValidationError as e:
            logger.error(f"{e}")
            return False

        with self._lock:
            if self._state is not ControllerState.ATTACHED or self._connection is None:
                logger.error("Failed set USB relay serial. Device not initialized")
                return False
            try:
                self._connection.write_report(command)
                report = self._connection.read_report()
            except TransferError as e:
                logger.error(f"Failed set USB relay serial: {raw!r}. {e}")
                return False

            if not report.terminated:
                logger.error("Bad USB relay serial string")
                return False

            self._identity = dataclasses.replace(self._identity, serial=report.serial)
            self._relay_state = self._relay_state.with_mask(report.mask)

        logger.info(f"USB relay new serial: {report.serial}")
        return True

    def _toggle_locked(self, selector: Selector, value: bool) -> Tuple[bool, RelayEvent]:
        try:
            self._toggle_exchange(selector, value)
        except RelayError as e:
            message = f"Failed toggle relay {selector}. {e}"
            logger.error(message)
            return False, RelayEvent(EventKind.FAIL_CHANGE, selector=selector, message=message)

        turn = "ON" if value else "OFF"
        if isinstance(selector, AllChannels):
            logger.info(f"USB all relay turn {turn}")
        else:
            logger.info(f"USB relay {selector.number} turn {turn}")
        return True, RelayEvent(EventKind.CHANGED, selector=selector)

    def _toggle_exchange(self, selector: Selector, value: bool) -> None:
        if not isinstance(selector, (AllChannels, Channel)):
            raise ValidationError(f"Unknown relay selector: {selector!r}")
        if self._state is not ControllerState.ATTACHED or self._connection is None:
            raise ValidationError("Device not initialized")

        count = self._relay_state.count
        current = 0
        if isinstance(selector, Channel):
            if selector.number > count:
                raise ValidationError(f"Number out of range [1..{count}]")
            # The board reports only the resulting snapshot, read the
            # current one to know which bits must stay untouched
            current = self._connection.read_report().mask

        expected = ReportSerializer.expected_mask(selector, value, current, count)
        self._connection.write_report(ReportSerializer.toggle(selector, value))

        report = self._connection.read_report()
        self._relay_state = self._relay_state.with_mask(report.mask)
        if self._relay_state.mask != expected:
            raise DesyncError(
                f"Failed set relays to new state. Expected {expected:#04x}, "
                f"got {self._relay_state.mask:#04x}")

    # --- Worker ---

    def _run(self) -> None:
        logger.info("Started")
        attempts = 0

        while not self._stop.is_set():
            with self._lock:
                self._state = ControllerState.CONNECTING
                attach_serial = self._attach_serial

            try:
                identity, connection, relay_state = claim_relay(
                    self._backend, attach_serial, self._stop)
            except DeviceNotFoundError as e:
                logger.debug(f"{e}")
                self._wait_backoff(attempts)
                attempts += 1
                continue
            except Exception:
                logger.exception("Unexpected error while claiming USB relay")
                self._wait_backoff(attempts)
                attempts += 1
                continue

            attempts = 0
            if self._stop.is_set():
                connection.release()
                break

            self._attach(identity, connection, relay_state)
            device_removed = self._poll()
            self._detach(device_removed)

        with self._lock:
            self._state = ControllerState.DISCONNECTED
        logger.info("Stopped")

    def _wait_backoff(self, attempts: int) -> None:
        with self._lock:
            self._state = ControllerState.DISCONNECTED
        self._stop.wait(self._backoff(attempts))

    def _attach(self, identity: DeviceIdentity,
                connection: RelayConnection,
                relay_state: RelayState) -> None:
        with self._lock:
            self._connection = connection
            self._identity = identity
            self._relay_state = relay_state
            self._state = ControllerState.ATTACHED

        logger.info(f"USB relay {identity.product} ({identity.serial}) attached "
                    f"on bus {identity.location}")
        self._events.dispatch(RelayEvent(EventKind.ATTACHED))

        with self._lock:
            events = self._apply_init_states_locked()
        self._events.dispatch_all(events)

    def _apply_init_states_locked(self) -> List[RelayEvent]:
        """Apply the initial states request once, then drop it."""
        if not self._init_states:
            return []

        desired = self._init_states[:self._relay_state.count]
        self._init_states = []

        events = []
        for index, value in enumerate(desired):
            if self._relay_state.states[index] != value:
                _, event = self._toggle_locked(Channel(index + 1), value)
                events.append(event)

        logger.debug(f"USB init relay states: {list(self._relay_state.states)}")
        return events

    def _poll(self) -> bool:
        """Poll the board until it must be detached or the worker stops.

        Returns:
            True if the session ended because the device was removed
        """
        while True:
            with self._lock:
                errors = self._connection.errors
                if errors.should_detach():
                    logger.warning(
                        f"USB continuous errors: {errors.count}, "
                        f"last error code: {errors.last_error_code}")
                    return errors.device_removed

            if self._stop.wait(self._poll_interval):
                with self._lock:
                    return self._connection.errors.device_removed

            with self._lock:
                # Failed toggles since the last tick count as well
                if errors.should_detach():
                    continue
                try:
                    report = self._connection.read_report()
                except TransferError as e:
                    logger.error(f"{e}")
                    continue
                except Exception:
                    logger.exception("Unexpected error while polling USB relay")
                    return errors.device_removed

                polled = self._relay_state.with_mask(report.mask)
                if polled != self._relay_state:
                    logger.debug(
                        "USB relay state was changed from outside. "
                        f"Old value: {self._relay_state.mask}. New value: {polled.mask}")
                    self._relay_state = polled

    def _detach(self, device_removed: bool) -> None:
        with self._lock:
            connection = self._connection
            self._connection = None
            self._identity = None
            self._relay_state = RelayState()
            self._state = ControllerState.DISCONNECTED
            if connection is not None:
                try:
                    connection.release(device_removed=device_removed)
                except Exception:
                    logger.exception("Unexpected error while releasing USB relay")

        logger.info("USB relay detached")
        self._events.dispatch(RelayEvent(EventKind.DETACHED))
