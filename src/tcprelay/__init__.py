"""
=============================================================================
TCPRELAY - Minimal Readiness-Driven TCP Message Relay
=============================================================================

A server accepts any number of concurrent TCP clients on one thread, reads
whatever bytes they send and logs them tagged with the sender's address. A
client forwards lines typed at the terminal.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    tcprelay/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m tcprelay)
    ├── server.py            # RelayServer: the event loop
    ├── client.py            # RelayClient: interactive line sender
    ├── config.py            # RelayConfig dataclass, logging setup
    ├── errors.py            # Exception hierarchy
    └── core/                # Event-loop components
        ├── listener.py      # Listening socket
        ├── multiplexer.py   # epoll / selectors readiness
        ├── registry.py      # Connection records
        ├── handler.py       # Accept / drain / teardown
        └── shutdown.py      # Signal → stop flag

=============================================================================
QUICK START
=============================================================================

    # Terminal 1
    python -m tcprelay serve

    # Terminal 2
    python -m tcprelay connect
    input : ping

    # Terminal 1 log
    ... [INFO] tcprelay.core.handler: Client 127.0.0.1:40122 : ping

=============================================================================
"""

__version__ = "1.0.0"

from .server import RelayServer
from .client import RelayClient
from .config import RelayConfig

__all__ = ["RelayServer", "RelayClient", "RelayConfig", "__version__"]
