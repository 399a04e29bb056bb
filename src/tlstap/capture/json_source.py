"""
JSON-lines event dump reader.

One JSON object per line:

    {"DataType": 1, "Timestamp": 9132, "Pid": 100, "Tid": 100,
     "DataLen": 517, "Comm": "curl", "Fd": 7, "Version": 771}

The payload is read from a side-car file `<Timestamp>.bin` next to the dump
when one exists, otherwise from the optional "Data" field (a list of byte
values or a base64 string). "Comm" may be a string or a NUL-padded list of
byte values. "Version" is the value the kernel hook reported and does not select
the layout; every record is read with the schema the reader was built with.
"""

import base64
import binascii
import json
import logging
import os
from typing import Any, Dict, Iterator

from ..exceptions import MalformedEventError
from ..models.event import Event, EventKind, SCHEMA_VERSION_V1, capacity_for
from .event_decoder import decode_comm
from .event_source import IEventSource

logger = logging.getLogger(__name__)


def _bytes_field(value: Any, name: str) -> bytes:
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedEventError(f"{name} is not valid base64: {e}") from e
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError) as e:
            raise MalformedEventError(f"{name} is not a byte list: {e}") from e
    raise MalformedEventError(f"{name} has unsupported type {type(value).__name__}")


class JsonEventReader(IEventSource):
    """Replays a JSON-lines event dump with optional side-car payload files."""

    format_name = "json"

    def __init__(self, filepath: str, schema_version: int = SCHEMA_VERSION_V1):
        super().__init__(filepath)
        capacity_for(schema_version)
        self.schema_version = schema_version
        self.file_handle = None
        self.payload_dir = os.path.dirname(os.path.abspath(filepath))

    def open(self):
        if not os.path.exists(self.filepath):
            raise FileNotFoundError(f"Event dump not found: {self.filepath}")
        self.file_handle = open(self.filepath, 'r', encoding='utf-8')

    def _payload(self, record: Dict[str, Any], timestamp: int) -> bytes:
        side_car = os.path.join(self.payload_dir, f"{timestamp}.bin")
        if os.path.isfile(side_car):
            with open(side_car, 'rb') as f:
                return f.read()
        if "Data" in record:
            return _bytes_field(record["Data"], "Data")
        return b""

    def parse_record(self, record: Dict[str, Any]) -> Event:
        """Build an Event from one decoded JSON object."""
        try:
            kind = EventKind(int(record["DataType"]))
            timestamp = int(record["Timestamp"])
            pid = int(record["Pid"])
            tid = int(record.get("Tid", pid))
            fd = int(record["Fd"])
            payload_length = int(record.get("DataLen", 0))
            version = int(record.get("Version", 0))
        except KeyError as e:
            raise MalformedEventError(f"missing field {e}") from None
        except (TypeError, ValueError) as e:
            raise MalformedEventError(f"bad field value: {e}") from None

        comm = record.get("Comm", "")
        if not isinstance(comm, str):
            comm = decode_comm(_bytes_field(comm, "Comm"))

        return Event(
            kind=kind,
            timestamp=timestamp,
            pid=pid,
            tid=tid,
            fd=fd,
            comm=comm,
            payload_length=payload_length,
            payload=self._payload(record, timestamp),
            schema_version=self.schema_version,
            version=version,
        )

    def __iter__(self) -> Iterator[Event]:
        if self.file_handle is None:
            raise RuntimeError("Event dump not opened. Call open() or use 'with' statement.")

        for line_no, line in enumerate(self.file_handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                if not isinstance(record, dict):
                    raise MalformedEventError("record is not a JSON object")
                event = self.parse_record(record)
            except (json.JSONDecodeError, MalformedEventError, OSError) as e:
                self._skip(f"line {line_no}", e)
                continue
            self._events_read += 1
            yield event

    def close(self):
        if self.file_handle is not None:
            self.file_handle.close()
            self.file_handle = None
