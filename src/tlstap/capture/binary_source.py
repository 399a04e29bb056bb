"""
Binary event dump reader.

File structure: a plain concatenation of fixed-size raw kernel records, as
drained from the ring buffer. No file header; all records share the schema
the reader is constructed with.
"""

import logging
import mmap
import os
from typing import Iterator

from ..exceptions import EventSourceError, MalformedEventError
from ..models.event import Event, SCHEMA_VERSION_V1
from .event_decoder import decode_event, layout_for
from .event_source import IEventSource

logger = logging.getLogger(__name__)


class BinaryEventReader(IEventSource):
    """Reads concatenated raw event records through a memory map."""

    format_name = "binary"

    def __init__(self, filepath: str, schema_version: int = SCHEMA_VERSION_V1):
        super().__init__(filepath)
        self.layout = layout_for(schema_version)
        self.file_handle = None
        self.mmap = None
        self._file_size = 0

    def open(self):
        if not os.path.exists(self.filepath):
            raise FileNotFoundError(f"Event dump not found: {self.filepath}")
        self._file_size = os.path.getsize(self.filepath)
        self.file_handle = open(self.filepath, 'rb')
        if self._file_size == 0:
            return
        try:
            self.mmap = mmap.mmap(self.file_handle.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            self.file_handle.close()
            self.file_handle = None
            raise EventSourceError(f"Failed to memory map {self.filepath}: {e}") from e

    def __iter__(self) -> Iterator[Event]:
        if self.file_handle is None:
            raise RuntimeError("Event dump not opened. Call open() or use 'with' statement.")
        if self.mmap is None:
            return

        size = self.layout.size
        total = len(self.mmap)
        for offset in range(0, total, size):
            end = offset + size
            if end > total:
                self._skip(f"truncated record at offset {offset}",
                           MalformedEventError(f"need {size} bytes, have {total - offset}"))
                return
            try:
                event = decode_event(self.mmap[offset:end], self.layout.version)
            except MalformedEventError as e:
                self._skip(f"record at offset {offset}", e)
                continue
            self._events_read += 1
            yield event

    def close(self):
        if self.mmap is not None:
            self.mmap.close()
            self.mmap = None
        if self.file_handle is not None:
            self.file_handle.close()
            self.file_handle = None
