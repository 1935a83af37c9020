"""
=============================================================================
RELAY ERRORS
=============================================================================

Exception hierarchy for the relay.

    RelayError
    ├── SetupError              Fatal: the server cannot start
    │   ├── SocketCreateError   socket() failed
    │   ├── BindError           bind() failed (port in use, permission)
    │   ├── ListenError         listen() failed
    │   └── MultiplexerError    epoll/selector creation or wait failed
    └── ConnectError            The client could not reach the server

Only setup errors are ever raised out of the server. Per-connection failures
(accept, read, peer reset) are logged and contained to that one connection.

=============================================================================
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class SetupError(RelayError):
    """
    A fatal error while bringing the server up.

    The process must not enter the event loop after one of these.
    The CLI maps it to exit code 1.
    """

    def __init__(self, message: str, host: Optional[str] = None, port: Optional[int] = None):
        super().__init__(message)
        self.host = host
        self.port = port


class SocketCreateError(SetupError):
    """Raised when the listening socket cannot be created."""


class BindError(SetupError):
    """Raised when the listening socket cannot be bound to host:port."""


class ListenError(SetupError):
    """Raised when listen() fails on a bound socket."""


class MultiplexerError(SetupError):
    """Raised when the readiness multiplexer cannot be created or waited on."""


class ConnectError(RelayError):
    """Raised by the client when it cannot connect to the relay server."""

    def __init__(self, message: str, host: str, port: int):
        super().__init__(message)
        self.host = host
        self.port = port
