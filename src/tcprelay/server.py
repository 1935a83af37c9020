"""
=============================================================================
RELAY SERVER
=============================================================================

The orchestrator that ties the core components into one event loop.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      RELAY SERVER ARCHITECTURE                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   RelayServer   │                          │
    │                        │  (event loop)   │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │      ┌──────────────┬───────────┼───────────┬──────────────┐        │
    │      ▼              ▼           ▼           ▼              ▼        │
    │ ┌──────────┐ ┌────────────┐ ┌────────┐ ┌──────────┐ ┌──────────┐   │
    │ │ Listener │ │Multiplexer │ │Handler │ │ Registry │ │ Shutdown │   │
    │ └──────────┘ └────────────┘ └────────┘ └──────────┘ └──────────┘   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LOOP LIFECYCLE
=============================================================================

    1. START
       └── bind + listen, create multiplexer, subscribe listener
       └── any failure here is fatal (SetupError)

    2. LOOP (single thread)
       └── wait(timeout) → dispatch whole batch → check stop flag

    3. STOP
       └── close every client, then the listener, then the multiplexer

There is no idle timeout: a client that never sends and never closes is held
open until it does, or until the server stops.

=============================================================================
"""

import logging
import threading
from typing import Optional, Tuple

from .config import RelayConfig, setup_logging
from .errors import MultiplexerError
from .core import (
    Listener, bind_and_listen,
    Multiplexer, create_multiplexer, LISTENER_INTEREST,
    ConnectionRegistry, ConnectionHandler, ShutdownController,
)


logger = logging.getLogger(__name__)


class RelayServer:
    """
    Single-threaded, readiness-driven TCP relay server.

    Usage:
        # Blocking, stops on Ctrl+C
        RelayServer(RelayConfig(port=51717)).run()

        # Step by step (tests, embedding)
        with RelayServer(config) as server:
            while ...:
                server.poll_once()
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.registry = ConnectionRegistry()

        self._shutdown = ShutdownController()
        self._listener: Optional[Listener] = None
        self._multiplexer: Optional[Multiplexer] = None
        self._handler: Optional[ConnectionHandler] = None

        # Set once start() has the listener subscribed; lets other threads
        # wait for the server to accept connections.
        self._ready = threading.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._ready.is_set()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (ip, port). Only valid after start()."""
        if self._listener is None:
            return (self.config.host, self.config.port)
        return self._listener.address

    @property
    def listener(self) -> Optional[Listener]:
        return self._listener

    @property
    def multiplexer(self) -> Optional[Multiplexer]:
        return self._multiplexer

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Bring up the listener and multiplexer.

        Raises:
            SetupError: Socket, bind, listen or multiplexer failure.
        """
        self._shutdown.reset()
        self._listener = bind_and_listen(
            self.config.host, self.config.port, self.config.backlog
        )
        host, port = self._listener.address
        logger.info(f"Server address: {host}:{port}")

        try:
            self._multiplexer = create_multiplexer(self.config.max_events)
        except MultiplexerError:
            self._listener.close()
            self._listener = None
            raise

        try:
            self._multiplexer.subscribe(self._listener.sock, LISTENER_INTEREST, tag=None)
        except OSError as e:
            self._multiplexer.close()
            self._listener.close()
            self._multiplexer = None
            self._listener = None
            raise MultiplexerError(f"Error adding listener to multiplexer: {e}") from e

        self._handler = ConnectionHandler(
            self._listener,
            self.registry,
            self._multiplexer,
            buffer_size=self.config.buffer_size,
        )
        self._ready.set()

    def poll_once(self, timeout: Optional[float] = None) -> int:
        """
        Wait for one batch of readiness events and dispatch all of them.

        Args:
            timeout: Seconds to wait; defaults to config.wait_timeout.

        Returns:
            Number of events dispatched.
        """
        if timeout is None:
            timeout = self.config.wait_timeout
        events = self._multiplexer.wait(timeout)
        self._handler.dispatch(events)
        return len(events)

    def serve_forever(self) -> None:
        """Run the loop until the stop flag is set. The flag is checked between batches."""
        while not self._shutdown.should_exit:
            self.poll_once()

    def run(self) -> None:
        """
        Start the server and block until SIGINT/SIGTERM or shutdown().

        Raises:
            SetupError: The server could not start; the loop never ran.
        """
        setup_logging(self.config.log_level)
        self.start()

        try:
            with self._shutdown.capture_signals():
                logger.info("Relay server running (Press CTRL+C to quit)")
                self.serve_forever()
        finally:
            self.stop()

    def shutdown(self) -> None:
        """
        Ask the loop to stop.

        Safe from any thread. The loop notices within one wait_timeout.
        """
        self._shutdown.request_stop()

    def stop(self) -> None:
        """Release every descriptor: clients first, then listener, then multiplexer."""
        logger.info("Shutting down relay server...")
        self._ready.clear()

        closed = 0
        if self._handler is not None:
            closed = self._handler.close_all()
            self._handler = None

        if self._listener is not None:
            if self._multiplexer is not None:
                try:
                    self._multiplexer.unsubscribe(self._listener.sock)
                except OSError as e:
                    logger.debug(f"Listener unsubscribe failed: {e}")
            self._listener.close()
            self._listener = None

        if self._multiplexer is not None:
            self._multiplexer.close()
            self._multiplexer = None

        logger.info(f"Relay server stopped ({closed} connections closed)")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
