"""
Output sinks: per-connection transcripts and synthetic pcap captures.
"""

from .sink import ISink, BaseSink, OutputMode, create_sink, boot_offset_ns
from .capture_sink import CaptureSink
from .transcript_sink import TranscriptSink
from .pcap_file import PcapFileWriter
from .packet_synth import PacketSynthesizer, SyntheticFlow, MAX_SEGMENT_SIZE
from .session_manifest import SessionManifest
from .connection_index import ConnectionIndexRecord, ConnectionIndexWriter

__all__ = [
    'ISink',
    'BaseSink',
    'OutputMode',
    'create_sink',
    'boot_offset_ns',
    'CaptureSink',
    'TranscriptSink',
    'PcapFileWriter',
    'PacketSynthesizer',
    'SyntheticFlow',
    'MAX_SEGMENT_SIZE',
    'SessionManifest',
    'ConnectionIndexRecord',
    'ConnectionIndexWriter',
]
