"""
Tests for tlstap/pcap_writer/transcript_sink.py - per-connection transcripts.
"""

import json

import pytest

from tlstap.exceptions import SinkIOError
from tlstap.models import (
    ConnectionKey,
    ConnectionSummary,
    Direction,
    EmitReason,
    EmittedUnit,
)
from tlstap.pcap_writer import TranscriptSink, create_sink, OutputMode

KEY = ConnectionKey(100, 7)


def unit(data, direction=Direction.READ, offset=0, generation=1,
         reason=EmitReason.COMPLETE, key=KEY):
    return EmittedUnit(key=key, generation=generation, comm="curl", tid=101,
                       direction=direction, offset=offset, data=data,
                       timestamp=1_000_000_000, fragments=1, reason=reason)


def summary(generation=1, key=KEY, bytes_read=0):
    return ConnectionSummary(key=key, generation=generation, comm="curl",
                             first_ts=1, last_ts=2, reason=EmitReason.CLOSE,
                             bytes_read=bytes_read)


class TestTranscriptSink:

    @pytest.mark.unit
    def test_unit_header_and_payload(self, temp_dir):
        sink = TranscriptSink(str(temp_dir), timestamp_offset_ns=0)
        sink.emit(unit(b"HTTP/1.1 200 OK"))
        sink.end_connection(summary(bytes_read=15))
        sink.close()

        lines = (temp_dir / "pid100_fd7.log").read_bytes().split(b"\n")
        assert lines[0].startswith(b"=== connection pid=100,fd=7 generation 1 (curl) opened")
        header = lines[1].decode()
        assert header.startswith("[1970-01-01T00:00:01+00:00]")
        for field in ("PID:100", "Comm:curl", "TID:101", "FD:7", "Generation:1",
                      "Direction:read", "Offset:0", "Length:15"):
            assert field in header
        assert lines[2] == b"HTTP/1.1 200 OK"
        assert b"closed (close): read 15 bytes" in lines[3]

    @pytest.mark.unit
    def test_truncation_and_flush_markers(self, temp_dir):
        sink = TranscriptSink(str(temp_dir), timestamp_offset_ns=0)
        truncated = sink.format_unit(unit(b"x", reason=EmitReason.CONTINUATION_LIMIT))
        flushed = sink.format_unit(unit(b"x", reason=EmitReason.IDLE))
        assert b", TRUNCATED\n" in truncated
        assert b", Flushed:idle\n" in flushed
        sink.close()

    @pytest.mark.unit
    def test_hex_dump(self, temp_dir):
        sink = TranscriptSink(str(temp_dir), hex_dump=True, timestamp_offset_ns=0)
        body = sink.format_unit(unit(b"ABC")).split(b"\n", 1)[1]
        assert body.startswith(b"0000")
        assert b"41 42 43" in body
        sink.close()

    @pytest.mark.unit
    def test_one_file_per_key_and_generations_append(self, temp_dir):
        other = ConnectionKey(100, 8)
        sink = TranscriptSink(str(temp_dir), timestamp_offset_ns=0)
        sink.emit(unit(b"first", generation=1))
        sink.emit(unit(b"elsewhere", key=other, generation=2))
        sink.end_connection(summary(generation=1))
        sink.emit(unit(b"second", generation=3))
        sink.end_connection(summary(generation=3))
        sink.end_connection(summary(generation=2, key=other))
        sink.close()

        content = (temp_dir / "pid100_fd7.log").read_bytes()
        assert b"first" in content and b"second" in content
        assert content.count(b"opened ===") == 2
        assert b"elsewhere" in (temp_dir / "pid100_fd8.log").read_bytes()

        index = [json.loads(line) for line in
                 (temp_dir / "connections.jsonl").read_text().splitlines()]
        assert [r['generation'] for r in index] == [1, 3, 2]
        assert index[0]['output'].endswith("pid100_fd7.log")

        manifest = json.loads((temp_dir / "session_manifest.json").read_text())
        assert manifest['mode'] == "transcript"
        assert manifest['connections_total'] == 3
        assert 'addressing' not in manifest

    @pytest.mark.unit
    def test_failure_is_scoped_to_connection(self, temp_dir):
        sink = TranscriptSink(str(temp_dir), timestamp_offset_ns=0, io_retry_delay=0)
        (temp_dir / "pid100_fd7.log").mkdir()
        sink.emit(unit(b"cannot write"))
        sink.emit(unit(b"fine", key=ConnectionKey(100, 8)))

        assert len(sink.errors) == 1
        assert sink.errors[0].key == KEY
        assert (temp_dir / "pid100_fd8.log").read_bytes().count(b"fine") == 1
        with pytest.raises(SinkIOError):
            sink.close()

    @pytest.mark.unit
    def test_create_sink_by_mode(self, temp_dir):
        sink = create_sink(OutputMode.TRANSCRIPT, str(temp_dir), hex_dump=True)
        assert isinstance(sink, TranscriptSink)
        assert sink.hex_dump
        sink.close()
