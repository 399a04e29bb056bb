"""
Raw kernel event decoding.

The kernel hooks write fixed-size little-endian records. A record does not name
its own layout: the producer's schema is agreed out of band and passed to
the decoder (v1 unless told otherwise).

  v1 (4148 bytes):
    int64  kind             offset 0
    uint64 timestamp_ns     offset 8
    uint32 pid              offset 16
    uint32 tid              offset 20
    int32  payload_length   offset 24
    char   comm[16]         offset 28
    uint32 fd               offset 44
    int32  version          offset 48   (reported by the hook, e.g. 0x0303)
    uint8  payload[4096]    offset 52

Decoding only checks the layout. Length invariants are checked later by
Event.validate(), where a bad record is dropped without side effects.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Dict

from ..exceptions import MalformedEventError, UnsupportedSchemaError
from ..models.event import (
    Event,
    EventKind,
    MAX_DATA_SIZE,
    SCHEMA_VERSION_V1,
    TASK_COMM_LEN,
)


@dataclass(frozen=True)
class EventLayout:
    version: int
    record: struct.Struct
    capacity: int

    @property
    def size(self) -> int:
        return self.record.size


EVENT_LAYOUTS: Dict[int, EventLayout] = {
    SCHEMA_VERSION_V1: EventLayout(
        version=SCHEMA_VERSION_V1,
        record=struct.Struct(f'<qQIIi{TASK_COMM_LEN}sIi{MAX_DATA_SIZE}s'),
        capacity=MAX_DATA_SIZE,
    ),
}


def decode_comm(raw: bytes) -> str:
    """NUL-terminated task name to str."""
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


def encode_comm(comm: str) -> bytes:
    return comm.encode("utf-8")[:TASK_COMM_LEN].ljust(TASK_COMM_LEN, b"\x00")


def layout_for(schema_version: int) -> EventLayout:
    try:
        return EVENT_LAYOUTS[schema_version]
    except KeyError:
        raise UnsupportedSchemaError(schema_version) from None


def decode_event(buffer: bytes, schema_version: int = SCHEMA_VERSION_V1) -> Event:
    """
    Decode one raw record of the given schema into an Event.

    Raises:
        UnsupportedSchemaError: unknown schema version
        MalformedEventError: record shorter than its layout, or unknown kind
    """
    layout = layout_for(schema_version)
    if len(buffer) < layout.size:
        raise MalformedEventError(
            f"Event record too short for schema v{layout.version}: "
            f"{len(buffer)} < {layout.size} bytes"
        )
    (kind, timestamp, pid, tid, payload_length,
     comm, fd, version, payload) = layout.record.unpack_from(buffer)
    try:
        kind = EventKind(kind)
    except ValueError:
        raise MalformedEventError(f"Unknown event kind {kind} (pid={pid} fd={fd})") from None
    return Event(
        kind=kind,
        timestamp=timestamp,
        pid=pid,
        tid=tid,
        fd=fd,
        comm=decode_comm(comm),
        payload_length=payload_length,
        payload=payload,
        schema_version=layout.version,
        version=version,
    )


def encode_event(event: Event) -> bytes:
    """Inverse of decode_event; used to build dumps and test fixtures."""
    layout = layout_for(event.schema_version)
    return layout.record.pack(
        int(event.kind),
        event.timestamp,
        event.pid,
        event.tid,
        event.payload_length,
        encode_comm(event.comm),
        event.fd,
        event.version,
        bytes(event.payload[:layout.capacity]),
    )
