"""
Tests for tlstap/reassembly/reassembler.py - fragment concatenation.
"""

import pytest

from tlstap.exceptions import MalformedEventError
from tlstap.models import ConnectionKey, Direction, EmitReason, EventKind, MAX_DATA_SIZE
from tlstap.reassembly import Reassembler


@pytest.fixture
def reassembler():
    return Reassembler(ConnectionKey(100, 7), generation=1, comm="curl")


class TestReassembler:

    @pytest.mark.unit
    def test_short_fragment_emits_immediately(self, reassembler, make_event):
        unit = reassembler.feed(make_event(data=b"hello"))
        assert unit is not None
        assert unit.data == b"hello"
        assert unit.offset == 0
        assert unit.reason is EmitReason.COMPLETE
        assert reassembler.pending_bytes == 0

    @pytest.mark.unit
    def test_full_fragments_join_with_following_short_one(self, reassembler, make_event, full_chunk):
        assert reassembler.feed(make_event(data=full_chunk(0x41), timestamp=1)) is None
        assert reassembler.feed(make_event(data=full_chunk(0x42), timestamp=2)) is None
        unit = reassembler.feed(make_event(data=b"C" * 10, timestamp=3))

        assert unit.length == 2 * MAX_DATA_SIZE + 10
        assert unit.data == b"A" * MAX_DATA_SIZE + b"B" * MAX_DATA_SIZE + b"C" * 10
        assert unit.fragments == 3
        assert unit.timestamp == 3

    @pytest.mark.unit
    def test_offsets_accumulate_per_direction(self, reassembler, make_event):
        first = reassembler.feed(make_event(kind=EventKind.DATA_WRITE, data=b"abc"))
        read = reassembler.feed(make_event(kind=EventKind.DATA_READ, data=b"xy"))
        second = reassembler.feed(make_event(kind=EventKind.DATA_WRITE, data=b"defg"))

        assert (first.offset, second.offset) == (0, 3)
        assert read.offset == 0
        assert reassembler.offset(Direction.WRITE) == 7
        assert reassembler.offset(Direction.READ) == 2

    @pytest.mark.unit
    def test_directions_do_not_mix(self, reassembler, make_event, full_chunk):
        reassembler.feed(make_event(kind=EventKind.DATA_READ, data=full_chunk()))
        unit = reassembler.feed(make_event(kind=EventKind.DATA_WRITE, data=b"req"))
        assert unit.direction is Direction.WRITE
        assert unit.data == b"req"
        assert reassembler.pending_bytes == MAX_DATA_SIZE

    @pytest.mark.unit
    def test_zero_length_is_noop(self, reassembler, make_event):
        assert reassembler.feed(make_event(data=b"")) is None
        assert reassembler.pending_bytes == 0
        assert reassembler.cursors[Direction.READ].units == 0

    @pytest.mark.unit
    def test_continuation_limit_forces_truncated_emit(self, make_event, full_chunk):
        reassembler = Reassembler(ConnectionKey(1, 1), 1, "x", continuation_limit=2)
        assert reassembler.feed(make_event(data=full_chunk())) is None
        assert reassembler.feed(make_event(data=full_chunk())) is None
        unit = reassembler.feed(make_event(data=full_chunk()))

        assert unit is not None
        assert unit.truncated
        assert unit.reason is EmitReason.CONTINUATION_LIMIT
        assert unit.length == 3 * MAX_DATA_SIZE
        assert reassembler.cursors[Direction.READ].truncated_units == 1

    @pytest.mark.unit
    def test_oversize_event_leaves_tail_untouched(self, reassembler, make_event, full_chunk):
        reassembler.feed(make_event(data=full_chunk()))
        bad = make_event(data=full_chunk(), payload_length=MAX_DATA_SIZE + 1)
        with pytest.raises(MalformedEventError):
            reassembler.feed(bad)
        assert reassembler.pending_bytes == MAX_DATA_SIZE
        assert reassembler.cursors[Direction.READ].continuations == 1

    @pytest.mark.unit
    def test_flush_emits_pending_tails(self, reassembler, make_event, full_chunk):
        reassembler.feed(make_event(kind=EventKind.DATA_READ, data=full_chunk(), timestamp=9))
        reassembler.feed(make_event(kind=EventKind.DATA_WRITE, data=full_chunk(), timestamp=10))

        units = reassembler.flush(EmitReason.CLOSE)

        assert {u.direction for u in units} == {Direction.READ, Direction.WRITE}
        assert all(u.reason is EmitReason.CLOSE and not u.truncated for u in units)
        assert reassembler.pending_bytes == 0
        assert reassembler.flush(EmitReason.CLOSE) == []

    @pytest.mark.unit
    def test_out_of_order_fragment_processed_in_arrival_order(self, reassembler, make_event, full_chunk):
        reassembler.feed(make_event(data=full_chunk(0x41), timestamp=50))
        unit = reassembler.feed(make_event(data=b"late", timestamp=40))
        assert unit.data.endswith(b"late")
        assert reassembler.cursors[Direction.READ].out_of_order == 1

    @pytest.mark.unit
    def test_rejects_control_events(self, reassembler, make_event):
        with pytest.raises(ValueError):
            reassembler.feed(make_event(kind=EventKind.CONTROL))
