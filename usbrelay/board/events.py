"""Fan-out of controller notifications to host subscribers."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List

from ..models import RelayEvent

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Delivers RelayEvents to subscribed callbacks.

    Callbacks run on the thread that dispatches, which is the controller
    worker for attach/detach/poll events and the caller's thread for
    toggles. A failing callback is logged and does not stop delivery to the
    remaining subscribers.
    """

    def __init__(self):
        self._callbacks: List[Callable[[RelayEvent], None]] = []
        self._callback_lock = threading.Lock()

    def subscribe(self, callback: Callable[[RelayEvent], None]) -> Callable[[], None]:
        """Subscribe to all events.

        Args:
            callback: Function to call with each RelayEvent

        Returns:
            Unsubscribe function (call to remove subscription)
        """
        with self._callback_lock:
            self._callbacks.append(callback)

        def unsubscribe():
            with self._callback_lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def dispatch(self, event: RelayEvent) -> None:
        with self._callback_lock:
            callbacks = list(self._callbacks)

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in {event.kind.value} callback: {e}")

    def dispatch_all(self, events: Iterable[RelayEvent]) -> None:
        for event in events:
            self.dispatch(event)
