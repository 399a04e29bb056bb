"""
Connection index: one JSON line per finished connection generation.

The index maps what a reader sees in the output (a transcript file, or a
synthesized TCP 4-tuple in the capture) back to the process that produced
it. Records are appended as connections end, so memory stays flat no matter
how many connections a run sees.
"""

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, TextIO

from ..models.connection import ConnectionSummary


@dataclass(frozen=True)
class ConnectionIndexRecord:
    """Index entry for one connection generation."""
    pid: int
    fd: int
    generation: int
    comm: str
    first_ts: int
    last_ts: int
    end_reason: str
    bytes_read: int
    bytes_written: int
    units_read: int
    units_written: int
    truncated_units: int

    output: Optional[str] = None
    """Transcript file holding this connection (transcript mode)"""

    process_endpoint: Optional[str] = None
    """Synthesized ip:port of the process side (capture mode)"""

    peer_endpoint: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: ConnectionSummary, **extra) -> "ConnectionIndexRecord":
        return cls(
            pid=summary.key.pid,
            fd=summary.key.fd,
            generation=summary.generation,
            comm=summary.comm,
            first_ts=summary.first_ts,
            last_ts=summary.last_ts,
            end_reason=summary.reason.value,
            bytes_read=summary.bytes_read,
            bytes_written=summary.bytes_written,
            units_read=summary.units_read,
            units_written=summary.units_written,
            truncated_units=summary.truncated_units,
            **extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        record = {
            'pid': self.pid,
            'fd': self.fd,
            'generation': self.generation,
            'comm': self.comm,
            'first_ts': self.first_ts,
            'last_ts': self.last_ts,
            'end_reason': self.end_reason,
            'bytes_read': self.bytes_read,
            'bytes_written': self.bytes_written,
            'units_read': self.units_read,
            'units_written': self.units_written,
            'truncated_units': self.truncated_units,
        }
        if self.output is not None:
            record['output'] = self.output
        if self.process_endpoint is not None:
            record['process_endpoint'] = self.process_endpoint
            record['peer_endpoint'] = self.peer_endpoint
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


class ConnectionIndexWriter:
    """Append-only JSON-lines writer, opened on the first record."""

    def __init__(self, filepath: str):
        self.filepath = filepath
        self._handle: Optional[TextIO] = None
        self.records_written = 0

    def append(self, record: ConnectionIndexRecord) -> None:
        if self._handle is None:
            parent = os.path.dirname(os.path.abspath(self.filepath))
            os.makedirs(parent, exist_ok=True)
            self._handle = open(self.filepath, 'w', encoding='utf-8')
        self._handle.write(record.to_json())
        self._handle.write("\n")
        self._handle.flush()
        self.records_written += 1

    def close(self) -> None:
        if self._handle is not None:
            handle, self._handle = self._handle, None
            handle.close()
