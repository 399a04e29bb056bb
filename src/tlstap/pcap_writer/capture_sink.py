"""Capture-synthesis sink: reassembled bytes as synthetic TCP packets in a pcap."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from ..exceptions import SinkIOError
from ..models.connection import ConnectionKey, ConnectionSummary, EmittedUnit
from .connection_index import ConnectionIndexRecord
from .packet_synth import MAX_SEGMENT_SIZE, PacketSynthesizer, SyntheticFlow
from .pcap_file import PcapFileWriter
from .sink import BaseSink

logger = logging.getLogger(__name__)


class CaptureSink(BaseSink):
    """
    Writes every unit as one or more TCP segments of a synthetic flow.

    All connections share one pcap file, so a persistent write failure
    marks the whole sink failed; later units are counted but not written.
    """

    mode = "capture"

    def __init__(self, destination: str,
                 segment_size: int = MAX_SEGMENT_SIZE,
                 **options):
        super().__init__(destination, **options)
        self.writer = PcapFileWriter(
            destination,
            link_type=PcapFileWriter.DLT_EN10MB,
            io_retries=self.io_retries,
            io_retry_delay=self.io_retry_delay,
        )
        self.synthesizer = PacketSynthesizer(segment_size=segment_size)
        self._flows: Dict[Tuple[ConnectionKey, int], SyntheticFlow] = {}
        self._failure: Optional[SinkIOError] = None

    def index_path(self) -> str:
        return f"{self.destination}.connections.jsonl"

    def manifest_path(self) -> str:
        return f"{self.destination}.manifest.json"

    @property
    def failed(self) -> bool:
        return self._failure is not None

    def _flow(self, key: ConnectionKey, generation: int) -> SyntheticFlow:
        flow = self._flows.get((key, generation))
        if flow is None:
            flow = SyntheticFlow.for_connection(key, generation)
            self._flows[(key, generation)] = flow
            logger.debug("Synthetic flow %s -> %s for %s generation %d",
                         flow.local, flow.remote, key, generation)
        return flow

    def _write_frames(self, timestamp: int, frames: List[bytes]) -> None:
        if self._failure is not None or not frames:
            return
        wall_ns = self.wall_time_ns(timestamp)
        try:
            for frame in frames:
                self.writer.write_record(wall_ns, frame)
            self.writer.flush()
        except OSError as e:
            self._failure = SinkIOError(f"Capture destination {self.destination} failed: {e}")
            self._record_error(self._failure)
            return
        self.manifest.packets_total += len(frames)

    def _emit(self, unit: EmittedUnit) -> None:
        flow = self._flow(unit.key, unit.generation)
        frames = []
        if not flow.handshake_done:
            frames.extend(self.synthesizer.handshake(flow))
        frames.extend(self.synthesizer.data(flow, unit))
        self._write_frames(unit.timestamp, frames)

    def _end_connection(self, summary: ConnectionSummary) -> ConnectionIndexRecord:
        flow = self._flows.pop((summary.key, summary.generation), None)
        if flow is not None and flow.handshake_done:
            self._write_frames(summary.last_ts, self.synthesizer.teardown(flow))
        if flow is None:
            flow = SyntheticFlow.for_connection(summary.key, summary.generation)
        return ConnectionIndexRecord.from_summary(
            summary,
            process_endpoint=str(flow.local),
            peer_endpoint=str(flow.remote),
        )

    def _close(self) -> None:
        if self._flows:
            logger.debug("Closing capture with %d unfinished flows", len(self._flows))
            self._flows.clear()
        self.writer.close()
