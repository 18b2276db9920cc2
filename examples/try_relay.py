#!/usr/bin/env python3
"""
Interactive Relay Test Script.

This script demonstrates the RelayController API.
Run it with a USBRelay board plugged in: it waits for the board, prints the
relay states, clicks every relay once and switches everything off.

Usage:
    python examples/try_relay.py [SERIAL]
"""

import sys
import time
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from usbrelay import ALL, Channel, RelayController

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def main():
    attach_serial = sys.argv[1] if len(sys.argv) > 1 else None

    print("Initializing Relay Controller...")
    relay = RelayController(attach_serial=attach_serial)
    relay.subscribe_attached(lambda: print(f"Attached: {relay.product()} ({relay.serial()})"))
    relay.subscribe_detached(lambda: print("Detached"))
    relay.subscribe_fail_change(lambda selector, message: print(f"Failed: {message}"))
    relay.init()

    try:
        print("\nWaiting for the board (10s)...")
        start = time.time()
        while not relay.is_attached() and time.time() - start < 10.0:
            time.sleep(0.1)
        if not relay.is_attached():
            print("No relay board found! Is it plugged in and accessible?")
            return

        print(f"Relays: {relay.states()}")

        print("\nClicking each relay...")
        for number in range(1, relay.count() + 1):
            relay.toggle(Channel(number), True)
            print(f"\r{relay.states()}", end="")
            sys.stdout.flush()
            time.sleep(0.5)
            relay.toggle(Channel(number), False)
        print()

        print("\nAll on, then all off...")
        relay.toggle(ALL, True)
        time.sleep(1)
        relay.toggle(ALL, False)
        print(f"Relays: {relay.states()}")

    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    finally:
        print("\nStopping...")
        relay.deinit()
        print("Done.")


if __name__ == "__main__":
    main()
