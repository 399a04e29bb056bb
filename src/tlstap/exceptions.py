# Custom exceptions

"""
Custom exceptions for tlstap event processing.

Per-event errors (MalformedEventError) are logged and skipped by the
processor. Lifecycle and sink errors are collected and raised from
EventProcessor.close(), the one place a caller learns whether a run
finished cleanly.
"""

from typing import Optional


class TapError(Exception):
    """Base exception for all tlstap errors."""
    pass


class MalformedEventError(TapError):
    """Raised when an event violates its length or layout invariants."""
    pass


class UnsupportedSchemaError(MalformedEventError):
    """Raised when an event carries a schema version we cannot interpret."""

    def __init__(self, version: int):
        super().__init__(f"Unsupported event schema version: {version}")
        self.version = version


class ProcessorError(TapError):
    """Base exception for processor lifecycle errors."""
    pass


class AlreadyServingError(ProcessorError):
    """Raised when serve() is invoked a second time."""
    pass


class ProcessorClosedError(ProcessorError):
    """Raised when the processor no longer accepts work."""
    pass


class QueueFullError(ProcessorError):
    """Raised when the input queue stays full past the write timeout."""
    pass


class DrainTimeoutError(ProcessorError):
    """Raised when close() could not drain in-flight work in time."""
    pass


class SinkError(TapError):
    """Base exception for output sink errors."""
    pass


class SinkIOError(SinkError):
    """Raised when the sink destination persistently fails to write or close."""

    def __init__(self, message: str, key: Optional[object] = None):
        super().__init__(message)
        self.key = key


class EventSourceError(TapError):
    """Raised when a replay source cannot be read."""
    pass
