"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

The registry is the single owner of per-connection state.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  Registry  ⇄  Multiplexer (lockstep)                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   registry:     { 7: Record(10.0.0.5:40122), 9: Record(...) }        │
    │   multiplexer:  { 3: None (listener), 7: tag 7, 9: tag 9 }           │
    │                                                                      │
    │   accept   → registry.add()    + multiplexer.subscribe()             │
    │   teardown → multiplexer.unsubscribe() + close() + registry.remove() │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

INVARIANT: apart from the listener, the set of subscribed handles equals the
set of registry keys after every loop iteration. Both mutations happen in the
same step of the connection handler, so no subscription can dangle and no
record can be orphaned.

A closed descriptor number may be reused by the OS for the next accept. Since
the old record is removed before its socket is closed, a reused number always
maps to a fresh record.

=============================================================================
"""

import socket
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionRecord:
    """
    One accepted client.

    Fields are fixed at accept time. Read and error state lives in the
    transient ReadyEvent, never here.

    Attributes:
        handle: The client socket's file descriptor.
        peer_address: Client IP.
        peer_port: Client port.
        sock: The client socket (owned through the registry).
    """
    handle: int
    peer_address: str
    peer_port: int
    sock: socket.socket = field(repr=False, compare=False)

    @property
    def peer(self) -> str:
        """ip:port, as printed in every log line about this client."""
        return f"{self.peer_address}:{self.peer_port}"

    @classmethod
    def from_accept(cls, sock: socket.socket, address) -> "ConnectionRecord":
        """Build a record from the (socket, address) pair accept() returns."""
        return cls(
            handle=sock.fileno(),
            peer_address=address[0],
            peer_port=address[1],
            sock=sock,
        )


class ConnectionRegistry:
    """
    Owns the live ConnectionRecords, keyed by handle.

    Not thread-safe; only the event loop thread touches it.
    """

    def __init__(self):
        self._records: Dict[int, ConnectionRecord] = {}

    def add(self, record: ConnectionRecord) -> None:
        """
        Insert a record.

        Raises:
            ValueError: A live record already owns this handle.
        """
        if record.handle in self._records:
            raise ValueError(f"Handle {record.handle} is already registered")
        self._records[record.handle] = record

    def get(self, handle: int) -> Optional[ConnectionRecord]:
        return self._records.get(handle)

    def remove(self, handle: int) -> Optional[ConnectionRecord]:
        """Remove and return the record, or None if it is already gone."""
        return self._records.pop(handle, None)

    def drain(self) -> List[ConnectionRecord]:
        """Remove and return every record (used at shutdown)."""
        records = list(self._records.values())
        self._records.clear()
        return records

    def handles(self) -> set:
        return set(self._records)

    def __contains__(self, handle: int) -> bool:
        return handle in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ConnectionRecord]:
        return iter(list(self._records.values()))
