"""Transcript sink: one append-only text file per connection key."""
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import BinaryIO, Dict, Tuple

from scapy.utils import hexdump

from ..exceptions import SinkIOError
from ..models.connection import ConnectionKey, ConnectionSummary, EmitReason, EmittedUnit
from ..utils.retry import retry_io
from .connection_index import ConnectionIndexRecord
from .sink import BaseSink

logger = logging.getLogger(__name__)


class TranscriptSink(BaseSink):
    """
    Appends each unit, with a header line naming the connection and
    direction, to `<destination>/pid<pid>_fd<fd>.log`.

    Files are opened lazily on the first unit of a generation and closed
    when that generation ends, so open handles track live connections only.
    A write failure disables output for that connection generation alone.
    """

    mode = "transcript"

    def __init__(self, destination: str, hex_dump: bool = False, **options):
        super().__init__(destination, **options)
        self.hex_dump = hex_dump
        self._handles: Dict[ConnectionKey, BinaryIO] = {}
        self._generation: Dict[ConnectionKey, int] = {}
        self._failed: Dict[Tuple[ConnectionKey, int], SinkIOError] = {}

    def index_path(self) -> str:
        return os.path.join(self.destination, "connections.jsonl")

    def manifest_path(self) -> str:
        return os.path.join(self.destination, "session_manifest.json")

    def path_for(self, key: ConnectionKey) -> str:
        return os.path.join(self.destination, f"pid{key.pid}_fd{key.fd}.log")

    def _timestamp(self, timestamp: int) -> str:
        wall = self.wall_time_ns(timestamp) / 1_000_000_000
        return datetime.fromtimestamp(wall, tz=timezone.utc).isoformat()

    def format_unit(self, unit: EmittedUnit) -> bytes:
        header = (
            f"[{self._timestamp(unit.timestamp)}] PID:{unit.key.pid}, Comm:{unit.comm}, "
            f"TID:{unit.tid}, FD:{unit.key.fd}, Generation:{unit.generation}, "
            f"Direction:{unit.direction.value}, Offset:{unit.offset}, Length:{unit.length}"
        )
        if unit.truncated:
            header += ", TRUNCATED"
        elif unit.reason is not EmitReason.COMPLETE:
            header += f", Flushed:{unit.reason.value}"
        if self.hex_dump:
            body = hexdump(unit.data, dump=True).encode("ascii")
        else:
            body = unit.data
        return header.encode("utf-8") + b"\n" + body + b"\n"

    def _write(self, handle: BinaryIO, data: bytes, description: str) -> None:
        retry_io(lambda: handle.write(data), description,
                 retries=self.io_retries, delay=self.io_retry_delay)
        retry_io(handle.flush, description,
                 retries=self.io_retries, delay=self.io_retry_delay)

    def _handle_for(self, unit: EmittedUnit) -> BinaryIO:
        handle = self._handles.get(unit.key)
        if handle is not None:
            return handle
        os.makedirs(self.destination, exist_ok=True)
        path = self.path_for(unit.key)
        handle = open(path, 'ab')
        self._handles[unit.key] = handle
        self._generation[unit.key] = unit.generation
        banner = (f"=== connection {unit.key} generation {unit.generation} "
                  f"({unit.comm}) opened ===\n")
        self._write(handle, banner.encode("utf-8"), path)
        logger.debug("Opened transcript %s", path)
        return handle

    def _close_handle(self, key: ConnectionKey) -> None:
        handle = self._handles.pop(key, None)
        self._generation.pop(key, None)
        if handle is not None:
            handle.close()

    def _emit(self, unit: EmittedUnit) -> None:
        ident = (unit.key, unit.generation)
        if ident in self._failed:
            return
        try:
            handle = self._handle_for(unit)
            self._write(handle, self.format_unit(unit), self.path_for(unit.key))
        except OSError as e:
            error = SinkIOError(f"Transcript {self.path_for(unit.key)} failed: {e}", key=unit.key)
            self._failed[ident] = error
            self._record_error(error)
            try:
                self._close_handle(unit.key)
            except OSError:
                logger.debug("Ignoring close failure on broken transcript %s",
                             self.path_for(unit.key))

    def _end_connection(self, summary: ConnectionSummary) -> ConnectionIndexRecord:
        path = self.path_for(summary.key)
        failed = self._failed.pop((summary.key, summary.generation), None) is not None
        # a handle is only held for a generation that wrote successfully
        wrote = self._generation.get(summary.key) == summary.generation
        if wrote:
            footer = (f"=== connection {summary.key} generation {summary.generation} "
                      f"closed ({summary.reason.value}): read {summary.bytes_read} bytes, "
                      f"wrote {summary.bytes_written} bytes ===\n")
            try:
                self._write(self._handles[summary.key], footer.encode("utf-8"), path)
                self._close_handle(summary.key)
            except OSError as e:
                self._record_error(SinkIOError(f"Transcript {path} failed: {e}", key=summary.key))
                self._handles.pop(summary.key, None)
                self._generation.pop(summary.key, None)
        output = path if (wrote or failed) else None
        return ConnectionIndexRecord.from_summary(summary, output=output)

    def _close(self) -> None:
        first_error = None
        for key in list(self._handles):
            try:
                self._close_handle(key)
            except OSError as e:
                first_error = first_error or e
        if first_error is not None:
            raise first_error
