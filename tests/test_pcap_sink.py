"""
Tests for capture-synthesis output: pcap container, synthesized framing and
the capture sink. Output is read back with scapy to prove third-party parsers
accept it.
"""

import json
import struct

import pytest
from scapy.layers.inet import IP, TCP
from scapy.layers.l2 import Ether
from scapy.packet import Raw
from scapy.utils import rdpcap

from tlstap.exceptions import SinkIOError
from tlstap.models import (
    ConnectionKey,
    ConnectionSummary,
    Direction,
    EmitReason,
    EmittedUnit,
)
from tlstap.pcap_writer import CaptureSink, PacketSynthesizer, PcapFileWriter, SyntheticFlow
from tlstap.pcap_writer.packet_synth import (
    PEER_ADDRESS,
    PEER_PORT,
    initial_sequence,
    process_endpoint,
)

KEY = ConnectionKey(100, 7)


def unit(data, direction=Direction.READ, offset=0, generation=1, timestamp=1_000):
    return EmittedUnit(key=KEY, generation=generation, comm="curl", tid=100,
                       direction=direction, offset=offset, data=data,
                       timestamp=timestamp, fragments=1)


def summary(generation=1, reason=EmitReason.CLOSE, last_ts=2_000):
    return ConnectionSummary(key=KEY, generation=generation, comm="curl",
                             first_ts=1_000, last_ts=last_ts, reason=reason)


class TestPcapFileWriter:

    @pytest.mark.unit
    def test_empty_capture_still_has_header(self, temp_dir):
        path = temp_dir / "empty.pcap"
        writer = PcapFileWriter(str(path))
        assert not path.exists()
        writer.close()
        writer.close()

        raw = path.read_bytes()
        assert len(raw) == 24
        magic, major, minor, _, _, snaplen, link_type = struct.unpack("<IHHiIII", raw)
        assert magic == PcapFileWriter.MAGIC_NUMBER_NANO
        assert (major, minor) == (2, 4)
        assert snaplen == PcapFileWriter.DEFAULT_SNAPLEN
        assert link_type == PcapFileWriter.DLT_EN10MB
        assert not hasattr(writer, "header_written")
        assert len(rdpcap(str(path))) == 0

    @pytest.mark.unit
    def test_record_header_nanoseconds(self, temp_dir):
        path = temp_dir / "one.pcap"
        writer = PcapFileWriter(str(path))
        writer.write_record(5_000_000_123, b"\x00" * 60)
        writer.close()

        raw = path.read_bytes()
        ts_sec, ts_nsec, caplen, wirelen = struct.unpack("<IIII", raw[24:40])
        assert (ts_sec, ts_nsec) == (5, 123)
        assert caplen == wirelen == 60
        assert len(raw) == 24 + 16 + 60
        assert writer.records_written == 1


class TestPacketSynthesizer:

    @pytest.mark.unit
    def test_addressing_is_deterministic(self):
        endpoint = process_endpoint(ConnectionKey(0x01020304, 70000))
        assert endpoint.ip == "10.2.3.4"
        assert endpoint.port == 1024 + 70000 % 64512
        assert endpoint.mac == "02:00:01:02:03:04"

    @pytest.mark.unit
    def test_isn_depends_on_generation_and_direction(self):
        a = initial_sequence(KEY, 1, Direction.READ)
        assert a == initial_sequence(KEY, 1, Direction.READ)
        assert a != initial_sequence(KEY, 2, Direction.READ)
        assert a != initial_sequence(KEY, 1, Direction.WRITE)

    @pytest.mark.unit
    def test_handshake_flags(self):
        flow = SyntheticFlow.for_connection(KEY, 1)
        frames = [Ether(f) for f in PacketSynthesizer().handshake(flow)]
        assert [str(f[TCP].flags) for f in frames] == ["S", "SA", "A"]
        assert frames[0][IP].dst == PEER_ADDRESS
        assert frames[1][TCP].ack == (flow.isn[Direction.WRITE] + 1) & 0xFFFFFFFF

    @pytest.mark.unit
    def test_large_unit_split_into_segments(self):
        flow = SyntheticFlow.for_connection(KEY, 1)
        synth = PacketSynthesizer(segment_size=1000)
        frames = [Ether(f) for f in synth.data(flow, unit(b"z" * 2500, offset=10))]

        assert [len(f[Raw].load) for f in frames] == [1000, 1000, 500]
        isn = flow.isn[Direction.READ]
        assert [f[TCP].seq for f in frames] == [
            (isn + 1 + 10 + step) & 0xFFFFFFFF for step in (0, 1000, 2000)]
        assert flow.sent[Direction.READ] == 2510

    @pytest.mark.unit
    def test_invalid_segment_size(self):
        with pytest.raises(ValueError):
            PacketSynthesizer(segment_size=0)


class TestCaptureSink:

    @pytest.mark.unit
    def test_connection_becomes_tcp_stream(self, temp_dir):
        path = temp_dir / "out.pcap"
        sink = CaptureSink(str(path), timestamp_offset_ns=0)
        sink.emit(unit(b"GET / HTTP/1.1\r\n\r\n", direction=Direction.WRITE))
        sink.emit(unit(b"HTTP/1.1 200 OK\r\n\r\n", direction=Direction.READ))
        sink.end_connection(summary())
        sink.close()

        packets = rdpcap(str(path))
        flags = [str(p[TCP].flags) for p in packets]
        assert flags == ["S", "SA", "A", "PA", "PA", "FA", "FA", "A"]

        request, response = packets[3], packets[4]
        local = process_endpoint(KEY)
        assert (request[IP].src, request[TCP].sport) == (local.ip, local.port)
        assert (request[IP].dst, request[TCP].dport) == (PEER_ADDRESS, PEER_PORT)
        assert bytes(request[Raw].load) == b"GET / HTTP/1.1\r\n\r\n"
        assert response[IP].src == PEER_ADDRESS
        # response acknowledges the full request
        expected_ack = (request[TCP].seq + len(request[Raw].load)) & 0xFFFFFFFF
        assert response[TCP].ack == expected_ack

    @pytest.mark.unit
    def test_manifest_and_index_written(self, temp_dir):
        path = temp_dir / "out.pcap"
        sink = CaptureSink(str(path), timestamp_offset_ns=0)
        sink.emit(unit(b"abc"))
        sink.end_connection(summary())
        sink.close()

        manifest = json.loads((temp_dir / "out.pcap.manifest.json").read_text())
        assert manifest['mode'] == "capture"
        assert manifest['addressing'] == "synthesized"
        assert manifest['units_total'] == 1
        assert manifest['bytes_total'] == 3
        assert manifest['packets_total'] == 3 + 1 + 3

        index = [json.loads(line) for line in
                 (temp_dir / "out.pcap.connections.jsonl").read_text().splitlines()]
        assert index[0]['pid'] == 100
        assert index[0]['process_endpoint'] == str(process_endpoint(KEY))
        assert index[0]['peer_endpoint'] == f"{PEER_ADDRESS}:{PEER_PORT}"

    @pytest.mark.unit
    def test_generations_get_distinct_flows(self, temp_dir):
        path = temp_dir / "out.pcap"
        sink = CaptureSink(str(path), timestamp_offset_ns=0)
        sink.emit(unit(b"one", generation=1))
        sink.end_connection(summary(generation=1))
        sink.emit(unit(b"two", generation=2))
        sink.end_connection(summary(generation=2))
        sink.close()

        syns = [p for p in rdpcap(str(path)) if str(p[TCP].flags) == "S"]
        assert len(syns) == 2
        assert syns[0][TCP].seq != syns[1][TCP].seq

    @pytest.mark.unit
    def test_unwritable_destination_surfaces_on_close(self, temp_dir):
        blocker = temp_dir / "file"
        blocker.write_text("not a directory")
        sink = CaptureSink(str(blocker / "out.pcap"), timestamp_offset_ns=0, io_retry_delay=0)
        sink.emit(unit(b"abc"))
        assert sink.failed
        with pytest.raises(SinkIOError):
            sink.close()
        sink.close()
