# Session manifest handling
"""
Session manifest creation.

The session manifest is the "receipt" for one processor run. It documents:

1. WHAT was written (mode, destination, unit/byte totals)
2. WHEN (first/last event timestamps, creation time)
3. HOW to read it, in particular that every address, port and TCP
   sequence number in capture output is SYNTHESIZED, never observed

It is written next to the output when the sink closes.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ADDRESSING_NOTE = (
    "Link, network and transport headers are fabricated. Process endpoints "
    "are 10.0.0.0/8 addresses derived from the pid, ports from the socket fd, "
    "peers are 192.0.2.1:443 and TCP sequence numbers are derived from byte "
    "offsets. None of these values were observed on a network path."
)


@dataclass
class SessionManifest:
    """
    Metadata for one output session.

    DATA CONTAINER - sinks fill the counters, this class only serializes.
    """

    mode: str
    """Output mode: "transcript" or "capture" """

    destination: str
    """Output file (capture) or directory (transcript)"""

    created_at: str = field(default_factory=lambda: SessionManifest.now_iso())
    """UTC creation time, ISO 8601 with 'Z' suffix"""

    connections_total: int = 0
    units_total: int = 0
    bytes_total: int = 0
    truncated_units: int = 0
    packets_total: int = 0
    """Synthesized packet records (capture mode only)"""

    first_ts: Optional[int] = None
    """Earliest event timestamp (monotonic ns)"""

    last_ts: Optional[int] = None

    timestamp_offset_ns: int = 0
    """Added to event timestamps to produce capture times"""

    addressing: str = "synthesized"
    addressing_note: str = ADDRESSING_NOTE

    connection_index: Optional[str] = None
    """Path of the JSON-lines connection index"""

    errors: int = 0

    manifest_schema_version: str = "1.0.0"

    @staticmethod
    def now_iso() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def observe(self, timestamp: int) -> None:
        if self.first_ts is None or timestamp < self.first_ts:
            self.first_ts = timestamp
        if self.last_ts is None or timestamp > self.last_ts:
            self.last_ts = timestamp

    @property
    def session_id(self) -> str:
        """Deterministic id over destination, mode and totals."""
        h = hashlib.blake2b(digest_size=16)
        for part in (self.mode, self.destination, self.first_ts, self.last_ts,
                     self.units_total, self.bytes_total):
            h.update(str(part).encode("utf-8"))
            h.update(b"\x00")
        return h.hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        base = {
            'session_id': self.session_id,
            'created_at': self.created_at,
            'mode': self.mode,
            'destination': self.destination,
            'connections_total': self.connections_total,
            'units_total': self.units_total,
            'bytes_total': self.bytes_total,
            'truncated_units': self.truncated_units,
            'first_ts': self.first_ts,
            'last_ts': self.last_ts,
            'timestamp_offset_ns': self.timestamp_offset_ns,
            'errors': self.errors,
            'manifest_schema_version': self.manifest_schema_version,
        }
        if self.mode == "capture":
            base['packets_total'] = self.packets_total
            base['addressing'] = self.addressing
            base['addressing_note'] = self.addressing_note
        if self.connection_index is not None:
            base['connection_index'] = self.connection_index
        return base

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    def save(self, filepath: str) -> None:
        """
        Save manifest to file.

        Write to a temp file first, then rename, so a crash never leaves a
        half-written manifest behind.
        """
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix('.tmp')
        with open(temp_path, 'w', encoding='utf-8') as f:
            f.write(self.to_json())
        temp_path.replace(path)

    @classmethod
    def load(cls, filepath: str) -> 'SessionManifest':
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        data.pop('session_id', None)
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})
