# Event data model
"""
Event data model for tlstap.

EVENTS ARE IMMUTABLE - the reassembler and sinks only ever read them.
An Event mirrors one fixed-size record emitted by the kernel hooks on an
SSL read/write call: a small descriptor plus a bounded payload buffer whose
valid prefix is given by payload_length.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional

from ..exceptions import MalformedEventError, UnsupportedSchemaError
from .connection import ConnectionKey, Direction

# Maximum payload bytes carried by one schema v1 event
MAX_DATA_SIZE = 4096

# Process name length in the kernel task struct
TASK_COMM_LEN = 16

SCHEMA_VERSION_V1 = 1

# Payload capacity per schema version
SCHEMA_CAPACITY: Dict[int, int] = {
    SCHEMA_VERSION_V1: MAX_DATA_SIZE,
}


class EventKind(IntEnum):
    """What happened on the instrumented socket. Values match the kernel DataType field."""
    DATA_READ = 0
    DATA_WRITE = 1
    CONNECTION_OPEN = 2
    CONNECTION_CLOSE = 3
    CONTROL = 4


def capacity_for(schema_version: int) -> int:
    """Return the payload capacity for a schema version."""
    try:
        return SCHEMA_CAPACITY[schema_version]
    except KeyError:
        raise UnsupportedSchemaError(schema_version) from None


@dataclass(frozen=True)
class Event:
    """
    One captured read/write/open/close occurrence.

    IMPORTANT: bytes of payload past payload_length are undefined and must
    never be emitted. Use `data` to get the valid prefix.
    """
    kind: EventKind
    """Event kind (see EventKind)"""

    timestamp: int
    """Monotonic nanosecond counter from the kernel. Ordering key within a
    connection, NOT wall-clock time."""

    pid: int
    tid: int

    fd: int
    """Socket descriptor, scoped to pid"""

    comm: str
    """Process name (at most TASK_COMM_LEN bytes on the wire)"""

    payload_length: int
    """Declared valid bytes in payload. Equal to the capacity when the
    source call filled the capture buffer (the message may continue)."""

    payload: bytes = b""
    """Bounded payload buffer"""

    schema_version: int = SCHEMA_VERSION_V1
    """Selects the event layout; must be checked before trusting fields"""

    version: int = 0
    """Version value reported by the kernel hook (e.g. 0x0303). Informational only;
    it never selects the layout."""

    @property
    def key(self) -> ConnectionKey:
        return ConnectionKey(pid=self.pid, fd=self.fd)

    @property
    def direction(self) -> Optional[Direction]:
        """READ/WRITE for data events, None for everything else."""
        if self.kind == EventKind.DATA_READ:
            return Direction.READ
        if self.kind == EventKind.DATA_WRITE:
            return Direction.WRITE
        return None

    @property
    def capacity(self) -> int:
        return capacity_for(self.schema_version)

    @property
    def is_data(self) -> bool:
        return self.direction is not None

    @property
    def data(self) -> bytes:
        """Valid payload prefix."""
        return bytes(self.payload[:self.payload_length])

    def validate(self) -> None:
        """
        Check the event invariants.

        Raises:
            UnsupportedSchemaError: schema_version is unknown
            MalformedEventError: length fields are out of bounds
        """
        capacity = capacity_for(self.schema_version)
        if not isinstance(self.kind, EventKind):
            raise MalformedEventError(f"Unknown event kind: {self.kind!r}")
        if self.payload_length < 0 or self.payload_length > capacity:
            raise MalformedEventError(
                f"payload_length {self.payload_length} out of bounds "
                f"(capacity {capacity}) for pid={self.pid} fd={self.fd}"
            )
        if self.payload_length > len(self.payload):
            raise MalformedEventError(
                f"payload_length {self.payload_length} exceeds buffer of "
                f"{len(self.payload)} bytes for pid={self.pid} fd={self.fd}"
            )
        if len(self.payload) > capacity:
            raise MalformedEventError(
                f"payload buffer of {len(self.payload)} bytes exceeds "
                f"capacity {capacity}"
            )

    def describe(self) -> str:
        """Short human-readable label for logs."""
        kind = getattr(self.kind, "name", self.kind)
        return (f"{kind} pid={self.pid} tid={self.tid} fd={self.fd} "
                f"comm={self.comm!r} len={self.payload_length} ts={self.timestamp}")
