"""
=============================================================================
READINESS MULTIPLEXER
=============================================================================

One thread, many sockets. Instead of a thread per connection, we ask the
kernel: "tell me which of these descriptors can make progress right now".

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        wait(timeout)                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   subscribed:  listener(3)   client(7)   client(9)   client(12)      │
    │                    │             │           │            │          │
    │                    ▼             ▼           ▼            ▼          │
    │   kernel:      [pending]      [data]      [idle]       [FIN]         │
    │                    │             │                        │          │
    │                    ▼             ▼                        ▼          │
    │   events:  (3, READABLE) (7, READABLE)  (12, READABLE|PEER_CLOSED)   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
EDGE-TRIGGERED CONTRACT
=============================================================================

Readiness is reported on TRANSITIONS. Once a handle is reported READABLE,
the consumer MUST read until the socket would block. Data left behind in the
kernel buffer does not produce another notification until NEW data arrives,
so a partial read stalls the connection silently.

    epoll (Linux)      EPOLLET - true edge-triggered.
    selectors          level-triggered; draining on every event gives the
                       same observable behavior.

=============================================================================
READINESS KINDS
=============================================================================

    READABLE      data (or EOF) can be read / a connection can be accepted
    WRITABLE      send buffer has room (requested for the listener, unused)
    PEER_CLOSED   the peer shut down its sending half, or hung up
    ERROR         an error is pending on the socket

=============================================================================
"""

import enum
import errno
import select
import socket
import logging
import selectors
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from ..errors import MultiplexerError


logger = logging.getLogger(__name__)


class ReadyKind(enum.Flag):
    """Readiness conditions reported for a subscribed handle."""
    NONE = 0
    READABLE = enum.auto()
    WRITABLE = enum.auto()
    PEER_CLOSED = enum.auto()
    ERROR = enum.auto()


LISTENER_INTEREST = ReadyKind.READABLE | ReadyKind.WRITABLE
CLIENT_INTEREST = ReadyKind.READABLE | ReadyKind.PEER_CLOSED | ReadyKind.ERROR


@dataclass(frozen=True)
class ReadyEvent:
    """
    One readiness notification.

    Attributes:
        handle: The file descriptor that became ready.
        kinds: What it is ready for.
        tag: The opaque value given at subscribe time. A lookup key,
             never the owner of any connection state.
    """
    handle: int
    kinds: ReadyKind
    tag: Any = None

    @property
    def readable(self) -> bool:
        return bool(self.kinds & ReadyKind.READABLE)

    @property
    def closed(self) -> bool:
        """True when the peer hung up or the socket reported an error."""
        return bool(self.kinds & (ReadyKind.PEER_CLOSED | ReadyKind.ERROR))


_MISSING = object()


def _fileno(handle) -> int:
    return handle if isinstance(handle, int) else handle.fileno()


class Multiplexer:
    """
    Base class for readiness multiplexers.

    Subclasses implement subscribe/unsubscribe/wait/close over a kernel
    facility. The subscription table is keyed by file descriptor.

    Usage:
        with create_multiplexer(max_events=10) as mux:
            mux.subscribe(listener.sock, LISTENER_INTEREST, tag=None)
            for event in mux.wait(timeout=60.0):
                ...
    """

    def __init__(self, max_events: int = 10):
        self.max_events = max_events

    def subscribe(self, sock, interest: ReadyKind, tag: Any = None) -> None:
        raise NotImplementedError

    def unsubscribe(self, handle) -> None:
        raise NotImplementedError

    def wait(self, timeout: Optional[float]) -> List[ReadyEvent]:
        raise NotImplementedError

    def subscribed_handles(self) -> Set[int]:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class EpollMultiplexer(Multiplexer):
    """
    Edge-triggered multiplexer over Linux epoll.

    Every subscription is registered with EPOLLET. EPOLLHUP and EPOLLERR
    are always reported by the kernel whether requested or not.
    """

    def __init__(self, max_events: int = 10):
        super().__init__(max_events)
        try:
            self._epoll = select.epoll()
        except OSError as e:
            raise MultiplexerError(f"Error on creating epoll instance: {e}") from e
        self._tags: Dict[int, Any] = {}

    @staticmethod
    def _to_mask(interest: ReadyKind) -> int:
        mask = select.EPOLLET
        if interest & ReadyKind.READABLE:
            mask |= select.EPOLLIN
        if interest & ReadyKind.WRITABLE:
            mask |= select.EPOLLOUT
        if interest & ReadyKind.PEER_CLOSED:
            mask |= select.EPOLLRDHUP
        if interest & ReadyKind.ERROR:
            mask |= select.EPOLLERR
        return mask

    @staticmethod
    def _from_mask(mask: int) -> ReadyKind:
        kinds = ReadyKind.NONE
        if mask & select.EPOLLIN:
            kinds |= ReadyKind.READABLE
        if mask & select.EPOLLOUT:
            kinds |= ReadyKind.WRITABLE
        if mask & (select.EPOLLRDHUP | select.EPOLLHUP):
            kinds |= ReadyKind.PEER_CLOSED
        if mask & select.EPOLLERR:
            kinds |= ReadyKind.ERROR
        return kinds

    def subscribe(self, sock, interest: ReadyKind, tag: Any = None) -> None:
        fd = _fileno(sock)
        self._epoll.register(fd, self._to_mask(interest))
        self._tags[fd] = tag

    def unsubscribe(self, handle) -> None:
        fd = _fileno(handle)
        if self._tags.pop(fd, _MISSING) is _MISSING:
            return
        self._epoll.unregister(fd)

    def wait(self, timeout: Optional[float]) -> List[ReadyEvent]:
        try:
            ready = self._epoll.poll(-1 if timeout is None else timeout, self.max_events)
        except OSError as e:
            raise MultiplexerError(f"epoll wait failed: {e}") from e
        return [
            ReadyEvent(fd, self._from_mask(mask), self._tags.get(fd))
            for fd, mask in ready
        ]

    def subscribed_handles(self) -> Set[int]:
        return set(self._tags)

    def close(self) -> None:
        self._tags.clear()
        self._epoll.close()


@dataclass
class _Subscription:
    interest: ReadyKind
    tag: Any


class SelectorMultiplexer(Multiplexer):
    """
    Portable multiplexer over selectors.DefaultSelector.

    Selectors only know READ and WRITE. PEER_CLOSED and ERROR are derived
    for subscriptions that ask for them: a readable stream socket whose
    MSG_PEEK returns b"" has reached EOF, and a peek that raises carries
    a pending error.
    """

    def __init__(self, max_events: int = 10):
        super().__init__(max_events)
        try:
            self._selector = selectors.DefaultSelector()
        except OSError as e:
            raise MultiplexerError(f"Error on creating selector: {e}") from e

    def subscribe(self, sock, interest: ReadyKind, tag: Any = None) -> None:
        events = 0
        if interest & (ReadyKind.READABLE | ReadyKind.PEER_CLOSED | ReadyKind.ERROR):
            events |= selectors.EVENT_READ
        if interest & ReadyKind.WRITABLE:
            events |= selectors.EVENT_WRITE
        self._selector.register(sock, events, data=_Subscription(interest, tag))

    def unsubscribe(self, handle) -> None:
        try:
            self._selector.unregister(_fileno(handle))
        except KeyError:
            pass  # Not subscribed

    def _probe(self, sock: socket.socket) -> ReadyKind:
        try:
            if sock.recv(1, socket.MSG_PEEK) == b"":
                return ReadyKind.PEER_CLOSED
        except (BlockingIOError, InterruptedError):
            pass
        except OSError as e:
            logger.debug(f"Peek on fd {sock.fileno()} raised {errno.errorcode.get(e.errno, e)}")
            return ReadyKind.ERROR
        return ReadyKind.NONE

    def wait(self, timeout: Optional[float]) -> List[ReadyEvent]:
        try:
            ready = self._selector.select(timeout)
        except OSError as e:
            raise MultiplexerError(f"selector wait failed: {e}") from e

        events = []
        for key, mask in ready[:self.max_events]:
            sub: _Subscription = key.data
            kinds = ReadyKind.NONE
            if mask & selectors.EVENT_READ:
                kinds |= ReadyKind.READABLE & sub.interest
                if sub.interest & (ReadyKind.PEER_CLOSED | ReadyKind.ERROR):
                    kinds |= self._probe(key.fileobj)
            if mask & selectors.EVENT_WRITE:
                kinds |= ReadyKind.WRITABLE
            events.append(ReadyEvent(key.fd, kinds, sub.tag))
        return events

    def subscribed_handles(self) -> Set[int]:
        return set(self._selector.get_map())

    def close(self) -> None:
        self._selector.close()


def create_multiplexer(max_events: int = 10) -> Multiplexer:
    """
    Create the best multiplexer for this platform.

    Raises:
        MultiplexerError: The kernel facility could not be created.
    """
    if hasattr(select, "epoll"):
        return EpollMultiplexer(max_events)
    return SelectorMultiplexer(max_events)
