"""Connection tracking and fragment reassembly."""
from .reassembler import DEFAULT_CONTINUATION_LIMIT, DirectionCursor, Reassembler
from .tracker import ConnectionState, ConnectionTracker
