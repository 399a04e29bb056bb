"""
Pytest configuration and shared fixtures for tlstap tests.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, List

import pytest

from tlstap.exceptions import SinkIOError
from tlstap.models import (
    ConnectionSummary,
    EmittedUnit,
    Event,
    EventKind,
    MAX_DATA_SIZE,
)
from tlstap.pcap_writer import ISink


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="tlstap_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


# ===========================================================================
# Event Fixtures
# ===========================================================================

def build_event(kind: EventKind = EventKind.DATA_READ,
                data: bytes = b"",
                pid: int = 100,
                fd: int = 7,
                timestamp: int = 1_000,
                tid: int = None,
                comm: str = "curl",
                payload_length: int = None,
                schema_version: int = 1,
                version: int = 0) -> Event:
    """Event with payload_length defaulting to len(data)."""
    return Event(
        kind=kind,
        timestamp=timestamp,
        pid=pid,
        tid=pid if tid is None else tid,
        fd=fd,
        comm=comm,
        payload_length=len(data) if payload_length is None else payload_length,
        payload=data,
        schema_version=schema_version,
        version=version,
    )


@pytest.fixture
def make_event() -> Callable[..., Event]:
    return build_event


@pytest.fixture
def full_chunk() -> Callable[[int], bytes]:
    """A payload that fills the whole v1 buffer."""
    def _chunk(fill: int = 0x41) -> bytes:
        return bytes([fill]) * MAX_DATA_SIZE
    return _chunk


# ===========================================================================
# Sink / Clock Fixtures
# ===========================================================================

class RecordingSink(ISink):
    """In-memory sink that remembers everything it was given."""

    def __init__(self):
        self.units: List[EmittedUnit] = []
        self.summaries: List[ConnectionSummary] = []
        self.close_calls = 0
        self._errors: List[SinkIOError] = []
        self.fail_on_close = None

    def emit(self, unit: EmittedUnit) -> None:
        self.units.append(unit)

    def end_connection(self, summary: ConnectionSummary) -> None:
        self.summaries.append(summary)

    def close(self) -> None:
        self.close_calls += 1
        if self.fail_on_close is not None:
            raise self.fail_on_close

    @property
    def errors(self) -> List[SinkIOError]:
        return list(self._errors)


class FakeClock:
    """Manually advanced monotonic nanosecond clock."""

    def __init__(self, start: int = 0):
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1_000_000_000)

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
