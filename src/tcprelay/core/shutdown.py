"""
=============================================================================
SHUTDOWN CONTROLLER
=============================================================================

Turns an asynchronous interrupt into a cooperative stop condition.

When you press Ctrl+C or run `kill`, the OS sends a SIGNAL to the process.

SIGINT (2):   Sent when user presses Ctrl+C
SIGTERM (15): Sent by docker stop, systemd stop, kill command

The handler does exactly one thing: set a flag. No logging, no I/O, no
allocation. The event loop reads the flag once per dispatched batch and
exits cleanly, closing every descriptor on the way out.

    signal ──► handler ──► flag.set()
                                │
    loop:  wait() → dispatch batch → flag.is_set()? ──► yes: cleanup, exit
                                          │
                                          └──► no: wait() again

Signal handlers can only be installed from the main thread. Servers run
from other threads (tests, embedding apps) stop through request_stop().

=============================================================================
"""

import signal
import threading
import contextlib
from typing import Dict, Generator


HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownController:
    """
    Process-wide stop flag plus signal handler installation.

    Usage:
        controller = ShutdownController()
        with controller.capture_signals():
            while not controller.should_exit:
                ...
    """

    def __init__(self):
        # threading.Event: a single atomic flag, safe to set from a signal
        # handler or from another thread.
        self._flag = threading.Event()

        # Original handlers, restored on exit so an embedding app keeps its own
        self._original_handlers: Dict[int, object] = {}

    @property
    def should_exit(self) -> bool:
        return self._flag.is_set()

    def request_stop(self) -> None:
        """Ask the loop to stop after the current batch. Idempotent."""
        self._flag.set()

    def reset(self) -> None:
        self._flag.clear()

    def _handle_signal(self, signum, frame):
        self._flag.set()

    def install(self) -> bool:
        """
        Install handlers for SIGINT and SIGTERM.

        Returns:
            True if installed, False when not on the main thread.
        """
        if threading.current_thread() is not threading.main_thread():
            return False
        for sig in HANDLED_SIGNALS:
            self._original_handlers[sig] = signal.signal(sig, self._handle_signal)
        return True

    def restore(self) -> None:
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    @contextlib.contextmanager
    def capture_signals(self) -> Generator["ShutdownController", None, None]:
        """Install handlers on entry, restore them on exit."""
        self.install()
        try:
            yield self
        finally:
            self.restore()
