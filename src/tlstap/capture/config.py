from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..pcap_writer.packet_synth import MAX_SEGMENT_SIZE
from ..pcap_writer.sink import OutputMode
from ..reassembly.reassembler import DEFAULT_CONTINUATION_LIMIT


class OverflowPolicy(str, Enum):
    """What write() does when the event queue is full."""
    BLOCK = "block"  # wait up to write_timeout, then QueueFullError
    FAIL = "fail"    # QueueFullError immediately
    DROP = "drop"    # drop and count; explicit opt-in only


@dataclass
class ProcessorConfig:
    """Event processor configuration."""
    destination: str
    mode: OutputMode = OutputMode.TRANSCRIPT
    idle_timeout: float = 60.0  # seconds of stream time
    queue_capacity: int = 1024
    continuation_limit: int = DEFAULT_CONTINUATION_LIMIT
    overflow_policy: OverflowPolicy = OverflowPolicy.BLOCK
    write_timeout: float = 1.0
    drain_timeout: float = 10.0
    sweep_interval: float = 1.0
    poll_interval: float = 0.2  # serve loop wakeup when the queue is idle
    hex_dump: bool = False  # transcript mode only
    segment_size: int = MAX_SEGMENT_SIZE  # capture mode only
    io_retries: int = 3
    io_retry_delay: float = 0.05
    timestamp_offset_ns: Optional[int] = None  # None: boot-time offset

    def __post_init__(self):
        self.mode = OutputMode(self.mode)
        self.overflow_policy = OverflowPolicy(self.overflow_policy)
        if not self.destination:
            raise ValueError("destination is required")
        if self.queue_capacity < 1:
            raise ValueError(f"queue_capacity must be >= 1, got {self.queue_capacity}")
        if self.continuation_limit < 0:
            raise ValueError(f"continuation_limit must be >= 0, got {self.continuation_limit}")
        if self.segment_size < 1 or self.segment_size > MAX_SEGMENT_SIZE:
            raise ValueError(f"segment_size must be in 1..{MAX_SEGMENT_SIZE}, got {self.segment_size}")
        if self.io_retries < 0:
            raise ValueError(f"io_retries must be >= 0, got {self.io_retries}")
        for name in ('idle_timeout', 'write_timeout', 'drain_timeout',
                      'sweep_interval', 'poll_interval'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.io_retry_delay < 0:
            raise ValueError(f"io_retry_delay must be >= 0, got {self.io_retry_delay}")

    def sink_options(self) -> Dict[str, Any]:
        """Keyword arguments for create_sink() in the configured mode."""
        options: Dict[str, Any] = {
            'io_retries': self.io_retries,
            'io_retry_delay': self.io_retry_delay,
            'timestamp_offset_ns': self.timestamp_offset_ns,
        }
        if self.mode is OutputMode.CAPTURE:
            options['segment_size'] = self.segment_size
        else:
            options['hex_dump'] = self.hex_dump
        return options
