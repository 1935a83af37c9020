"""
=============================================================================
LISTENING SOCKET
=============================================================================

The "ears" of the relay: one long-lived TCP socket that the kernel queues
new connections on.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create a socket file descriptor
    2. bind()      Associate the socket with an IP:PORT
    3. listen()    Mark socket as listening; backlog = pending queue size
    4. accept()    Take one queued connection (done by the handler)
    5. close()     Release the descriptor at process shutdown

Unlike a blocking accept loop, the listener here is NON-BLOCKING. It is
subscribed to the multiplexer for readability; a readable listening socket
means "at least one connection is waiting in the accept queue".

    ┌───────────────────────┐
    │   Listening Socket    │ ◄── Created once at startup
    │   0.0.0.0:51717       │     Never sends/receives data
    └───────────┬───────────┘
                │  readable
                ▼
        accept() until EWOULDBLOCK

=============================================================================
"""

import socket
import logging
from typing import Tuple

from ..errors import SocketCreateError, BindError, ListenError


logger = logging.getLogger(__name__)


class Listener:
    """
    Owns the listening socket.

    Attributes:
        sock: The non-blocking listening socket.
    """

    def __init__(self, sock: socket.socket):
        self.sock = sock

    @property
    def handle(self) -> int:
        """The listener's file descriptor."""
        return self.sock.fileno()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (ip, port); resolves port 0 to the port the OS picked."""
        host, port = self.sock.getsockname()[:2]
        return host, port

    def accept(self) -> Tuple[socket.socket, Tuple[str, int]]:
        """
        Accept one pending connection.

        Raises:
            BlockingIOError: The accept queue is empty.
            OSError: The accept itself failed.
        """
        return self.sock.accept()

    def close(self):
        """Close the listening socket."""
        try:
            self.sock.close()
        except OSError:
            pass  # Already closed


def bind_and_listen(host: str, port: int, backlog: int = 32) -> Listener:
    """
    Create, bind and listen on a non-blocking TCP socket.

    No retries: a failure here is fatal and the caller must not proceed to
    the event loop.

    Args:
        host: Interface to bind ("0.0.0.0" = all interfaces).
        port: Port to bind (0 = ephemeral).
        backlog: Maximum pending connections.

    Returns:
        A Listener ready to be subscribed for readability.

    Raises:
        SocketCreateError: socket() failed.
        BindError: bind() failed.
        ListenError: listen() failed.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as e:
        raise SocketCreateError(f"Error opening socket: {e}", host, port) from e

    try:
        # SO_REUSEADDR: avoid "Address already in use" on quick restarts
        # while the previous socket sits in TIME_WAIT.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise SocketCreateError(f"Error configuring socket: {e}", host, port) from e

    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BindError(f"Failed to bind to {host}:{port}: {e}", host, port) from e

    try:
        sock.listen(backlog)
    except OSError as e:
        sock.close()
        raise ListenError(f"Error on listening on {host}:{port}: {e}", host, port) from e

    listener = Listener(sock)
    logger.debug(f"Listening on {host}:{listener.address[1]} (backlog={backlog})")
    return listener
