"""
ISink Interface

Every output strategy (TranscriptSink, CaptureSink) follows this contract:
1. emit() receives units in per-connection order from a single emitter
2. end_connection() is called once per connection generation, after its
   last unit
3. close() flushes and closes the destination and reports persistent I/O
   failures as SinkIOError; it is safe to call more than once
4. Data already flushed is never lost because a later write failed
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from ..exceptions import SinkIOError
from ..models.connection import ConnectionSummary, EmittedUnit
from .connection_index import ConnectionIndexRecord, ConnectionIndexWriter
from .session_manifest import SessionManifest

logger = logging.getLogger(__name__)


class OutputMode(str, Enum):
    TRANSCRIPT = "transcript"
    CAPTURE = "capture"


def boot_offset_ns() -> int:
    """Offset that turns a monotonic timestamp into Unix-epoch nanoseconds."""
    return time.time_ns() - time.monotonic_ns()


class ISink(ABC):
    """Abstract base class for output sinks."""

    @abstractmethod
    def emit(self, unit: EmittedUnit) -> None:
        """
        Persist one emitted unit.

        MUST NOT raise for destination I/O failures: record them and surface
        them from close(), so one bad connection cannot stop the pipeline.
        """
        pass

    @abstractmethod
    def end_connection(self, summary: ConnectionSummary) -> None:
        """Finish the output of one connection generation."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Flush and close the destination. Raises SinkIOError on failure."""
        pass

    @property
    @abstractmethod
    def errors(self) -> List[SinkIOError]:
        """Persistent failures recorded so far."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class BaseSink(ISink):
    """
    Shared plumbing: exclusive-writer lock, totals, session manifest,
    connection index and error recording. Subclasses implement _emit,
    _end_connection, _close and the two path helpers.
    """

    mode = "base"

    def __init__(self,
                 destination: str,
                 io_retries: int = 3,
                 io_retry_delay: float = 0.05,
                 timestamp_offset_ns: Optional[int] = None):
        self.destination = destination
        self.io_retries = io_retries
        self.io_retry_delay = io_retry_delay
        self.timestamp_offset_ns = (boot_offset_ns() if timestamp_offset_ns is None
                                    else timestamp_offset_ns)
        self._lock = threading.RLock()
        self._closed = False
        self._errors: List[SinkIOError] = []
        self.manifest = SessionManifest(
            mode=self.mode,
            destination=destination,
            timestamp_offset_ns=self.timestamp_offset_ns,
            connection_index=self.index_path(),
        )
        self.index = ConnectionIndexWriter(self.index_path())

    # ---- subclass hooks -------------------------------------------------
    @abstractmethod
    def _emit(self, unit: EmittedUnit) -> None:
        pass

    @abstractmethod
    def _end_connection(self, summary: ConnectionSummary) -> ConnectionIndexRecord:
        pass

    @abstractmethod
    def _close(self) -> None:
        pass

    @abstractmethod
    def index_path(self) -> str:
        pass

    @abstractmethod
    def manifest_path(self) -> str:
        pass

    # ---- ISink ----------------------------------------------------------
    @property
    def errors(self) -> List[SinkIOError]:
        with self._lock:
            return list(self._errors)

    @property
    def closed(self) -> bool:
        return self._closed

    def wall_time_ns(self, timestamp: int) -> int:
        return timestamp + self.timestamp_offset_ns

    def _record_error(self, error: SinkIOError) -> None:
        self._errors.append(error)
        self.manifest.errors = len(self._errors)
        logger.error("%s sink: %s", self.mode, error)

    def emit(self, unit: EmittedUnit) -> None:
        with self._lock:
            if self._closed:
                logger.warning("%s sink closed, dropping unit for %s", self.mode, unit.key)
                return
            self.manifest.observe(unit.timestamp)
            self.manifest.units_total += 1
            self.manifest.bytes_total += unit.length
            if unit.truncated:
                self.manifest.truncated_units += 1
            self._emit(unit)

    def end_connection(self, summary: ConnectionSummary) -> None:
        with self._lock:
            if self._closed:
                return
            self.manifest.connections_total += 1
            record = self._end_connection(summary)
            try:
                self.index.append(record)
            except OSError as e:
                self._record_error(SinkIOError(
                    f"Failed to append connection index {self.index_path()}: {e}",
                    key=summary.key,
                ))

    def close(self) -> None:
        """
        Close the destination, then write the session manifest.

        Raises the first recorded SinkIOError, if any. Later calls are no-ops.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._close()
            except OSError as e:
                self._record_error(SinkIOError(f"Failed to close {self.destination}: {e}"))
            try:
                self.index.close()
            except OSError as e:
                self._record_error(SinkIOError(f"Failed to close {self.index_path()}: {e}"))
            try:
                self.manifest.save(self.manifest_path())
            except OSError as e:
                self._record_error(SinkIOError(f"Failed to save manifest {self.manifest_path()}: {e}"))
            logger.info("%s sink closed: %d connections, %d units, %d bytes",
                        self.mode, self.manifest.connections_total,
                        self.manifest.units_total, self.manifest.bytes_total)
            if self._errors:
                raise self._errors[0]


def create_sink(mode: OutputMode, destination: str, **options) -> BaseSink:
    """Build the sink for an output mode."""
    mode = OutputMode(mode)
    if mode is OutputMode.CAPTURE:
        from .capture_sink import CaptureSink
        return CaptureSink(destination, **options)
    from .transcript_sink import TranscriptSink
    return TranscriptSink(destination, **options)
