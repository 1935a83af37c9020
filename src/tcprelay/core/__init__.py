"""
Core event-loop components.

    listener.py     Non-blocking listening socket (bind_and_listen)
    multiplexer.py  Readiness multiplexer (epoll / selectors)
    registry.py     Connection records, keyed by handle
    handler.py      Accept / drain / teardown per readiness event
    shutdown.py     Signal → stop flag
"""

from .listener import Listener, bind_and_listen
from .multiplexer import (
    ReadyKind,
    ReadyEvent,
    Multiplexer,
    EpollMultiplexer,
    SelectorMultiplexer,
    create_multiplexer,
    LISTENER_INTEREST,
    CLIENT_INTEREST,
)
from .registry import ConnectionRecord, ConnectionRegistry
from .handler import ConnectionHandler, render_payload
from .shutdown import ShutdownController

__all__ = [
    "Listener",
    "bind_and_listen",
    "ReadyKind",
    "ReadyEvent",
    "Multiplexer",
    "EpollMultiplexer",
    "SelectorMultiplexer",
    "create_multiplexer",
    "LISTENER_INTEREST",
    "CLIENT_INTEREST",
    "ConnectionRecord",
    "ConnectionRegistry",
    "ConnectionHandler",
    "render_payload",
    "ShutdownController",
]
