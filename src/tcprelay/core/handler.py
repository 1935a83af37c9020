"""
=============================================================================
CONNECTION HANDLER
=============================================================================

Per-event logic for the relay's event loop.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        handle_event(event)                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   event.handle == listener?                                          │
    │       └── READABLE → accept() until EWOULDBLOCK                      │
    │                        └── record → registry.add + subscribe         │
    │                                                                      │
    │   event.handle == client?                                            │
    │       ├── READABLE → recv_into() until EWOULDBLOCK / EOF / error     │
    │       │                └── log each chunk verbatim                   │
    │       │                                                              │
    │       └── PEER_CLOSED | ERROR → teardown (exactly once)              │
    │               └── unsubscribe + close + registry.remove              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHY DRAIN IN A LOOP?
=============================================================================

The multiplexer is edge-triggered. A single recv() per notification would
leave the rest of a burst in the kernel buffer with no further wake-up.
Every READABLE event therefore reads until the socket would block.

No framing is imposed: whatever a recv() returns is logged as one entry.
Two lines sent back to back may arrive as one chunk; one long line may
arrive as several.

=============================================================================
FAILURE ISOLATION
=============================================================================

Nothing here raises into the event loop. Accept and read failures are
logged and affect at most the one connection involved. No retries.

=============================================================================
"""

import errno
import socket
import logging
from typing import Iterable, Optional

from .listener import Listener
from .multiplexer import Multiplexer, ReadyEvent, CLIENT_INTEREST
from .registry import ConnectionRecord, ConnectionRegistry


logger = logging.getLogger(__name__)


# accept() errors that will repeat until a descriptor or buffer is freed.
# Retrying them inside one dispatch would spin.
_ACCEPT_RESOURCE_ERRNOS = frozenset({
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
})


def render_payload(data: bytes) -> str:
    """
    Render a received chunk for the log.

    Clients terminate each line with a NUL byte; trailing terminators are
    dropped, everything else is kept as received.
    """
    return data.rstrip(b"\0").decode("utf-8", errors="replace")


class ConnectionHandler:
    """
    Dispatches readiness events against the registry and multiplexer.

    Args:
        listener: The listening socket wrapper.
        registry: Owner of live connection records.
        multiplexer: Where client handles are subscribed.
        buffer_size: Size of the one receive buffer reused for every read.
    """

    def __init__(
        self,
        listener: Listener,
        registry: ConnectionRegistry,
        multiplexer: Multiplexer,
        buffer_size: int = 1024,
    ):
        self.listener = listener
        self.registry = registry
        self.multiplexer = multiplexer

        # Allocated once; recv_into() overwrites it on every read
        self._buffer = bytearray(buffer_size)
        self._view = memoryview(self._buffer)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, events: Iterable[ReadyEvent]) -> None:
        """Handle a whole batch returned by one multiplexer wait."""
        for event in events:
            self.handle_event(event)

    def handle_event(self, event: ReadyEvent) -> None:
        if event.handle == self.listener.handle:
            if event.readable:
                self.accept_pending()
            return

        record = self.registry.get(event.handle)
        if record is None:
            logger.debug(f"Ignoring event {event.kinds} for unknown handle {event.handle}")
            return

        if event.readable:
            self.drain(record)

        if event.closed:
            self.teardown(record)

    # =========================================================================
    # ACCEPT
    # =========================================================================

    def accept_pending(self) -> int:
        """
        Accept every queued connection.

        Returns:
            Number of connections registered.
        """
        accepted = 0
        while True:
            try:
                sock, address = self.listener.accept()
            except BlockingIOError:
                break  # Accept queue is empty
            except OSError as e:
                logger.warning(f"Error on accept: {e}")
                if e.errno in _ACCEPT_RESOURCE_ERRNOS:
                    break
                continue

            if self._register(sock, address) is not None:
                accepted += 1
        return accepted

    def _register(self, sock: socket.socket, address) -> Optional[ConnectionRecord]:
        # Subscribe and insert in the same step; a socket that cannot be
        # subscribed is closed and never reaches the registry.
        try:
            sock.setblocking(False)
            record = ConnectionRecord.from_accept(sock, address)
            self.multiplexer.subscribe(sock, CLIENT_INTEREST, tag=record.handle)
        except OSError as e:
            logger.warning(f"Error on adding client {address[0]}:{address[1]}: {e}")
            sock.close()
            return None

        self.registry.add(record)
        logger.info(f"Client address: {record.peer}")
        return record

    # =========================================================================
    # READ
    # =========================================================================

    def drain(self, record: ConnectionRecord) -> int:
        """
        Read from a client until it would block, hits EOF, or errors.

        EOF and errors only end the drain. Teardown waits for the
        PEER_CLOSED / ERROR readiness kind.

        Returns:
            Total bytes read.
        """
        total = 0
        while True:
            try:
                n = record.sock.recv_into(self._buffer)
            except BlockingIOError:
                break
            except OSError as e:
                logger.warning(f"Read error from client {record.peer}: {e}")
                break

            if n == 0:
                logger.debug(f"End of stream from client {record.peer}")
                break

            payload = bytes(self._view[:n])
            logger.info(f"Client {record.peer} : {render_payload(payload)}")
            total += n
        return total

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def teardown(self, record: ConnectionRecord) -> bool:
        """
        Release one connection: unsubscribe, close, forget.

        Safe to call twice; only the first call does anything.

        Returns:
            True if the connection was torn down by this call.
        """
        if self.registry.remove(record.handle) is None:
            return False

        logger.info(f"Connection closed from client {record.peer}")
        self._release(record)
        return True

    def close_all(self) -> int:
        """Tear down every live connection (process shutdown). Returns the count."""
        records = self.registry.drain()
        for record in records:
            logger.debug(f"Closing connection to client {record.peer}")
            self._release(record)
        return len(records)

    def _release(self, record: ConnectionRecord) -> None:
        try:
            self.multiplexer.unsubscribe(record.handle)
        except OSError as e:
            logger.warning(f"Error unsubscribing client {record.peer}: {e}")
        try:
            record.sock.close()
        except OSError:
            pass  # Already closed
