"""
Connection data models.

ConnectionKey identifies a connection's lifetime; EmittedUnit and
ConnectionSummary are the immutable records handed from the tracker to the
sinks.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class Direction(str, Enum):
    READ = "read"
    WRITE = "write"

    @property
    def other(self) -> "Direction":
        return Direction.WRITE if self is Direction.READ else Direction.READ


class ConnectionStatus(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class EmitReason(str, Enum):
    """Why a unit (or a whole connection) was flushed."""
    COMPLETE = "complete"
    CONTINUATION_LIMIT = "continuation_limit"
    CLOSE = "close"
    IDLE = "idle"
    SHUTDOWN = "shutdown"
    REOPEN = "reopen"


@dataclass(frozen=True, order=True)
class ConnectionKey:
    """(pid, fd) pair. Unique among live connections, reusable after close."""
    pid: int
    fd: int

    def __str__(self) -> str:
        return f"pid={self.pid},fd={self.fd}"


@dataclass(frozen=True)
class EmittedUnit:
    """One logical byte range ready for output."""
    key: ConnectionKey
    generation: int
    comm: str
    tid: int
    direction: Direction

    offset: int
    """Cumulative bytes emitted for this direction before this unit"""

    data: bytes

    timestamp: int
    """Timestamp of the last fragment that contributed to the unit"""

    fragments: int
    reason: EmitReason = EmitReason.COMPLETE

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def end_offset(self) -> int:
        return self.offset + len(self.data)

    @property
    def truncated(self) -> bool:
        """True when the unit was cut by the continuation limit."""
        return self.reason is EmitReason.CONTINUATION_LIMIT


@dataclass(frozen=True)
class ConnectionSummary:
    """Final accounting for one connection generation."""
    key: ConnectionKey
    generation: int
    comm: str
    first_ts: int
    last_ts: int
    reason: EmitReason
    bytes_read: int = 0
    bytes_written: int = 0
    units_read: int = 0
    units_written: int = 0
    truncated_units: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.key.pid,
            "fd": self.key.fd,
            "generation": self.generation,
            "comm": self.comm,
            "first_ts": self.first_ts,
            "last_ts": self.last_ts,
            "end_reason": self.reason.value,
            "bytes_read": self.bytes_read,
            "bytes_written": self.bytes_written,
            "units_read": self.units_read,
            "units_written": self.units_written,
            "truncated_units": self.truncated_units,
        }
