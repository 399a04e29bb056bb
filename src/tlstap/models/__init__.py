"""
Event and connection data models.
"""

from .connection import (
    ConnectionKey,
    ConnectionStatus,
    ConnectionSummary,
    Direction,
    EmitReason,
    EmittedUnit,
)
from .event import (
    Event,
    EventKind,
    MAX_DATA_SIZE,
    SCHEMA_CAPACITY,
    SCHEMA_VERSION_V1,
    TASK_COMM_LEN,
    capacity_for,
)

__all__ = [
    'ConnectionKey',
    'ConnectionStatus',
    'ConnectionSummary',
    'Direction',
    'EmitReason',
    'EmittedUnit',
    'Event',
    'EventKind',
    'MAX_DATA_SIZE',
    'SCHEMA_CAPACITY',
    'SCHEMA_VERSION_V1',
    'TASK_COMM_LEN',
    'capacity_for',
]
