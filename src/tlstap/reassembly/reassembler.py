"""Per-connection fragment reassembly."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models.connection import ConnectionKey, Direction, EmitReason, EmittedUnit
from ..models.event import Event

logger = logging.getLogger(__name__)

DEFAULT_CONTINUATION_LIMIT = 32


@dataclass
class DirectionCursor:
    """Reassembly state for one direction of one connection."""
    direction: Direction
    offset: int = 0
    tail: bytearray = field(default_factory=bytearray)
    continuations: int = 0
    fragments: int = 0
    first_ts: int = 0
    last_ts: int = 0
    tid: int = 0
    units: int = 0
    truncated_units: int = 0
    out_of_order: int = 0

    @property
    def pending(self) -> int:
        return len(self.tail)

    def take(self) -> bytes:
        data = bytes(self.tail)
        self.tail = bytearray()
        self.continuations = 0
        self.fragments = 0
        self.first_ts = 0
        return data


class Reassembler:
    """
    Turns possibly-truncated payload fragments of one connection into
    emit-ready units.

    A fragment shorter than the event capacity ends the current unit. A
    fragment that fills the capacity is presumed to continue in the next
    event of the same direction, up to `continuation_limit` consecutive
    fragments; past that the tail is emitted with a truncation marker.
    """

    def __init__(self, key: ConnectionKey, generation: int, comm: str,
                 continuation_limit: int = DEFAULT_CONTINUATION_LIMIT):
        if continuation_limit < 0:
            raise ValueError("continuation_limit must be >= 0")
        self.key = key
        self.generation = generation
        self.comm = comm
        self.continuation_limit = continuation_limit
        self.cursors: Dict[Direction, DirectionCursor] = {
            Direction.READ: DirectionCursor(Direction.READ),
            Direction.WRITE: DirectionCursor(Direction.WRITE),
        }

    def feed(self, event: Event) -> Optional[EmittedUnit]:
        """
        Add one data event.

        Returns the unit completed by this event, if any.

        Raises:
            MalformedEventError: the event is invalid; state is untouched
        """
        event.validate()
        direction = event.direction
        if direction is None:
            raise ValueError(f"Not a data event: {event.describe()}")
        cursor = self.cursors[direction]

        if event.timestamp < cursor.last_ts:
            cursor.out_of_order += 1
            logger.warning("Out-of-order fragment on %s/%s: ts %d < %d",
                           self.key, direction.value, event.timestamp, cursor.last_ts)
        cursor.last_ts = max(cursor.last_ts, event.timestamp)
        cursor.tid = event.tid
        if event.comm:
            self.comm = event.comm

        if event.payload_length == 0:
            return None

        if not cursor.tail:
            cursor.first_ts = event.timestamp
        cursor.tail.extend(event.data)
        cursor.fragments += 1

        if event.payload_length < event.capacity:
            return self._emit(cursor, event.timestamp, EmitReason.COMPLETE)

        cursor.continuations += 1
        if cursor.continuations > self.continuation_limit:
            logger.warning(
                "Continuation limit (%d) exceeded on %s/%s, emitting %d bytes as truncated",
                self.continuation_limit, self.key, direction.value, cursor.pending,
            )
            return self._emit(cursor, event.timestamp, EmitReason.CONTINUATION_LIMIT)
        return None

    def flush(self, reason: EmitReason) -> List[EmittedUnit]:
        """Emit whatever is pending in both directions, complete or not."""
        units = []
        for cursor in self.cursors.values():
            if cursor.tail:
                units.append(self._emit(cursor, cursor.last_ts, reason))
        return units

    def _emit(self, cursor: DirectionCursor, timestamp: int, reason: EmitReason) -> EmittedUnit:
        fragments = cursor.fragments
        data = cursor.take()
        unit = EmittedUnit(
            key=self.key,
            generation=self.generation,
            comm=self.comm,
            tid=cursor.tid,
            direction=cursor.direction,
            offset=cursor.offset,
            data=data,
            timestamp=timestamp,
            fragments=fragments,
            reason=reason,
        )
        cursor.offset += len(data)
        cursor.units += 1
        if unit.truncated:
            cursor.truncated_units += 1
        logger.debug("Emit %s/%s gen=%d offset=%d len=%d reason=%s",
                     self.key, cursor.direction.value, self.generation,
                     unit.offset, unit.length, reason.value)
        return unit

    @property
    def pending_bytes(self) -> int:
        return sum(c.pending for c in self.cursors.values())

    def offset(self, direction: Direction) -> int:
        return self.cursors[direction].offset
