"""
IEventSource Interface

Contract for offline event sources (dump files replayed through the
processor). A live ring-buffer poller lives outside this package and only
needs EventProcessor.write().

All event sources must:
1. Yield events in recorded order (never reorder within a connection)
2. Skip undecodable records with a warning instead of aborting the replay
3. Release file handles on close(); close() must be safe to call twice
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator

from ..exceptions import EventSourceError
from ..models.event import Event

logger = logging.getLogger(__name__)


class IEventSource(ABC):
    """
    Abstract base class for event sources.

    Example implementations:
    - BinaryEventReader (concatenated raw kernel records)
    - JsonEventReader (JSON-lines dump with side-car payload files)
    """

    def __init__(self, filepath: str):
        self.filepath = filepath
        self._events_read = 0
        self._records_skipped = 0

    @abstractmethod
    def open(self):
        """
        Open the source for reading.

        Raises:
            FileNotFoundError: if the file doesn't exist
            EventSourceError: if the file is not in the expected format
        """
        pass

    @abstractmethod
    def __iter__(self) -> Iterator[Event]:
        """Yield decoded events in recorded order."""
        pass

    @abstractmethod
    def close(self):
        """Release resources. Safe to call multiple times."""
        pass

    def get_source_info(self) -> Dict[str, Any]:
        return {
            'path': self.filepath,
            'format': getattr(self, 'format_name', 'unknown'),
            'events_read': self._events_read,
            'records_skipped': self._records_skipped,
        }

    def _skip(self, position: str, error: Exception) -> None:
        self._records_skipped += 1
        logger.warning("Skipping %s in %s: %s", position, self.filepath, error)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_event_source(filepath: str) -> IEventSource:
    """
    Pick a reader from the file extension, falling back to content sniffing.

    `.bin`/`.raw` -> BinaryEventReader, `.json`/`.jsonl` -> JsonEventReader.
    """
    from .binary_source import BinaryEventReader
    from .json_source import JsonEventReader

    lower = filepath.lower()
    if lower.endswith((".json", ".jsonl")):
        return JsonEventReader(filepath)
    if lower.endswith((".bin", ".raw")):
        return BinaryEventReader(filepath)

    try:
        with open(filepath, "rb") as f:
            head = f.read(1)
    except OSError as e:
        raise EventSourceError(f"Failed to open {filepath}: {e}") from e
    if head in (b"{", b"["):
        return JsonEventReader(filepath)
    if not os.path.isfile(filepath):
        raise EventSourceError(f"Not a file: {filepath}")
    return BinaryEventReader(filepath)
