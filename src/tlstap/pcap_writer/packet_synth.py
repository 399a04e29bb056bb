"""
Synthetic TCP/IPv4/Ethernet framing for reassembled plaintext.

Nothing here was observed on the wire. Addresses, ports, MACs and sequence
numbers are fabricated deterministically from the connection key so that a
protocol analyzer can follow each connection as a TCP stream:

- process endpoint: 10.0.0.0/8 + low 24 bits of the pid,
  port 1024 + fd % 64512
- peer endpoint:    192.0.2.1:443 (TEST-NET-1, RFC 5737)
- write events travel process -> peer, read events peer -> process
- initial sequence numbers come from a BLAKE2b hash of
  (pid, fd, generation, direction)
"""
from __future__ import annotations

import hashlib
import ipaddress
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from scapy.layers.inet import IP, TCP
from scapy.layers.l2 import Ether
from scapy.packet import Raw

from ..models.connection import ConnectionKey, Direction, EmittedUnit

PROCESS_NETWORK = ipaddress.IPv4Network("10.0.0.0/8")
PEER_ADDRESS = "192.0.2.1"
PEER_PORT = 443
PEER_MAC = "02:00:c0:00:02:01"

EPHEMERAL_PORT_BASE = 1024
EPHEMERAL_PORT_SPAN = 65536 - EPHEMERAL_PORT_BASE

IPV4_HEADER_LEN = 20
TCP_HEADER_LEN = 20
# Largest TCP payload an IPv4 total-length field can describe
MAX_SEGMENT_SIZE = 0xFFFF - IPV4_HEADER_LEN - TCP_HEADER_LEN

TCP_WINDOW = 65535
SEQ_MASK = 0xFFFFFFFF


@dataclass(frozen=True)
class Endpoint:
    ip: str
    port: int
    mac: str

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


def process_endpoint(key: ConnectionKey) -> Endpoint:
    """Deterministic stand-in address for the instrumented process side."""
    host = key.pid & 0xFFFFFF
    ip = str(PROCESS_NETWORK.network_address + host)
    port = EPHEMERAL_PORT_BASE + (key.fd % EPHEMERAL_PORT_SPAN)
    mac = "02:00:" + ":".join(f"{b:02x}" for b in (key.pid & 0xFFFFFFFF).to_bytes(4, "big"))
    return Endpoint(ip=ip, port=port, mac=mac)


def peer_endpoint(key: ConnectionKey) -> Endpoint:
    return Endpoint(ip=PEER_ADDRESS, port=PEER_PORT, mac=PEER_MAC)


def initial_sequence(key: ConnectionKey, generation: int, direction: Direction) -> int:
    digest = hashlib.blake2b(
        f"{key.pid}:{key.fd}:{generation}:{direction.value}".encode("ascii"),
        digest_size=4,
    ).digest()
    return int.from_bytes(digest, "big")


@dataclass
class SyntheticFlow:
    """Per-generation TCP bookkeeping for one connection."""
    key: ConnectionKey
    generation: int
    local: Endpoint
    remote: Endpoint
    isn: Dict[Direction, int]
    sent: Dict[Direction, int] = field(default_factory=lambda: {Direction.READ: 0, Direction.WRITE: 0})
    handshake_done: bool = False
    ip_id: int = 0

    @classmethod
    def for_connection(cls, key: ConnectionKey, generation: int) -> "SyntheticFlow":
        return cls(
            key=key,
            generation=generation,
            local=process_endpoint(key),
            remote=peer_endpoint(key),
            isn={d: initial_sequence(key, generation, d) for d in Direction},
        )

    def endpoints(self, direction: Direction) -> Tuple[Endpoint, Endpoint]:
        """(source, destination) for a direction."""
        if direction is Direction.WRITE:
            return self.local, self.remote
        return self.remote, self.local

    def seq(self, direction: Direction, offset: int) -> int:
        # +1 accounts for the SYN
        return (self.isn[direction] + 1 + offset) & SEQ_MASK

    def ack(self, direction: Direction) -> int:
        other = direction.other
        return (self.isn[other] + 1 + self.sent[other]) & SEQ_MASK

    def next_ip_id(self) -> int:
        self.ip_id = (self.ip_id + 1) & 0xFFFF
        return self.ip_id


class PacketSynthesizer:
    """Builds Ethernet frames for emitted units using scapy layers."""

    def __init__(self, segment_size: int = MAX_SEGMENT_SIZE):
        if segment_size <= 0 or segment_size > MAX_SEGMENT_SIZE:
            raise ValueError(f"segment_size must be in 1..{MAX_SEGMENT_SIZE}")
        self.segment_size = segment_size

    def _frame(self, flow: SyntheticFlow, direction: Direction, flags: str,
               seq: int, ack: Optional[int], payload: bytes = b"") -> bytes:
        src, dst = flow.endpoints(direction)
        tcp = TCP(sport=src.port, dport=dst.port, seq=seq, flags=flags, window=TCP_WINDOW)
        if ack is not None:
            tcp.ack = ack
        packet = (Ether(src=src.mac, dst=dst.mac)
                  / IP(src=src.ip, dst=dst.ip, id=flow.next_ip_id(), flags="DF", ttl=64)
                  / tcp)
        if payload:
            packet = packet / Raw(load=payload)
        return bytes(packet)

    def handshake(self, flow: SyntheticFlow) -> List[bytes]:
        """SYN, SYN/ACK, ACK opening the flow. Process side is the initiator."""
        w, r = Direction.WRITE, Direction.READ
        frames = [
            self._frame(flow, w, "S", flow.isn[w], None),
            self._frame(flow, r, "SA", flow.isn[r], (flow.isn[w] + 1) & SEQ_MASK),
            self._frame(flow, w, "A", (flow.isn[w] + 1) & SEQ_MASK, (flow.isn[r] + 1) & SEQ_MASK),
        ]
        flow.handshake_done = True
        return frames

    def data(self, flow: SyntheticFlow, unit: EmittedUnit) -> List[bytes]:
        """Segments carrying the unit's bytes, in order."""
        frames = []
        direction = unit.direction
        data = unit.data
        for start in range(0, len(data), self.segment_size):
            chunk = data[start:start + self.segment_size]
            frames.append(self._frame(
                flow, direction, "PA",
                flow.seq(direction, unit.offset + start),
                flow.ack(direction),
                chunk,
            ))
        flow.sent[direction] = max(flow.sent[direction], unit.end_offset)
        return frames

    def teardown(self, flow: SyntheticFlow) -> List[bytes]:
        """FIN exchange closing the flow."""
        w, r = Direction.WRITE, Direction.READ
        fin_w = flow.seq(w, flow.sent[w])
        fin_r = flow.seq(r, flow.sent[r])
        return [
            self._frame(flow, w, "FA", fin_w, fin_r),
            self._frame(flow, r, "FA", fin_r, (fin_w + 1) & SEQ_MASK),
            self._frame(flow, w, "A", (fin_w + 1) & SEQ_MASK, (fin_r + 1) & SEQ_MASK),
        ]
