"""
Event intake: raw record decoding, offline replay sources and the
event processor.
"""

from .event_decoder import EVENT_LAYOUTS, EventLayout, decode_event, encode_event
from .event_source import IEventSource, open_event_source
from .binary_source import BinaryEventReader
from .json_source import JsonEventReader
from .config import OverflowPolicy, ProcessorConfig
from .processor import EventProcessor, ProcessorState

__all__ = [
    'EVENT_LAYOUTS',
    'EventLayout',
    'decode_event',
    'encode_event',
    'IEventSource',
    'open_event_source',
    'BinaryEventReader',
    'JsonEventReader',
    'OverflowPolicy',
    'ProcessorConfig',
    'EventProcessor',
    'ProcessorState',
]
