"""Connection tracker: keyed registry of per-connection reassembly state."""
from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..models.connection import (
    ConnectionKey,
    ConnectionStatus,
    ConnectionSummary,
    Direction,
    EmitReason,
    EmittedUnit,
)
from ..models.event import Event, EventKind
from ..exceptions import MalformedEventError
from .reassembler import DEFAULT_CONTINUATION_LIMIT, Reassembler

logger = logging.getLogger(__name__)

NS_PER_SECOND = 1_000_000_000


@dataclass
class ConnectionState:
    """Mutable state of one connection generation. Owned by the tracker."""
    key: ConnectionKey
    generation: int
    comm: str
    first_ts: int
    last_ts: int
    reassembler: Reassembler
    status: ConnectionStatus = ConnectionStatus.OPEN

    def touch(self, event: Event) -> None:
        self.last_ts = max(self.last_ts, event.timestamp)
        if event.comm:
            self.comm = event.comm

    def summarize(self, reason: EmitReason) -> ConnectionSummary:
        read = self.reassembler.cursors[Direction.READ]
        write = self.reassembler.cursors[Direction.WRITE]
        return ConnectionSummary(
            key=self.key,
            generation=self.generation,
            comm=self.comm,
            first_ts=self.first_ts,
            last_ts=self.last_ts,
            reason=reason,
            bytes_read=read.offset,
            bytes_written=write.offset,
            units_read=read.units,
            units_written=write.units,
            truncated_units=read.truncated_units + write.truncated_units,
        )


class ConnectionTracker:
    """
    Maps (pid, fd) to connection state, routes events to the right
    reassembler and forwards emitted units to the sink.

    Registry access is serialized by one re-entrant lock, so a connection's
    state is never touched by two threads at once.
    """

    def __init__(self,
                 sink,
                 idle_timeout: float = 60.0,
                 continuation_limit: int = DEFAULT_CONTINUATION_LIMIT,
                 sweep_interval: float = 1.0,
                 clock: Callable[[], int] = time.monotonic_ns):
        self.sink = sink
        self.idle_timeout_ns = int(idle_timeout * NS_PER_SECOND)
        self.sweep_interval_ns = int(sweep_interval * NS_PER_SECOND)
        self.continuation_limit = continuation_limit
        self._clock = clock
        self._connections: Dict[ConnectionKey, ConnectionState] = {}
        self._lock = threading.RLock()
        self._generations = itertools.count(1)
        self._watermark_ts = 0
        self._watermark_wall: Optional[int] = None
        self._last_sweep_ts = 0
        self._closed = False
        self.stats = {
            'connections_created': 0,
            'connections_closed': 0,
            'connections_evicted': 0,
            'units_emitted': 0,
            'bytes_emitted': 0,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def dispatch(self, event: Event) -> List[EmittedUnit]:
        """
        Route one event to its connection.

        Returns the units emitted as a consequence (also sent to the sink).

        Raises:
            MalformedEventError: invalid event; no state is created or changed
        """
        event.validate()
        with self._lock:
            if self._closed:
                logger.warning("Tracker already flushed, ignoring %s", event.describe())
                return []
            self._advance_clock(event.timestamp)
            units = self._route(event)
            self._maybe_sweep()
            return units

    def _route(self, event: Event) -> List[EmittedUnit]:
        key = event.key
        state = self._connections.get(key)
        kind = event.kind

        if kind == EventKind.CONNECTION_OPEN:
            units: List[EmittedUnit] = []
            if state is not None:
                logger.info("Connection %s reopened, closing generation %d",
                            key, state.generation)
                units.extend(self._finish(state, EmitReason.REOPEN))
            self._create(event)
            return units

        if kind == EventKind.CONNECTION_CLOSE:
            if state is None:
                logger.debug("Close for untracked connection %s", key)
                return []
            state.touch(event)
            self.stats['connections_closed'] += 1
            return self._finish(state, EmitReason.CLOSE)

        if kind in (EventKind.DATA_READ, EventKind.DATA_WRITE):
            if state is None or state.status is not ConnectionStatus.OPEN:
                state = self._create(event)
            state.touch(event)
            unit = state.reassembler.feed(event)
            if unit is None:
                return []
            self._deliver(unit)
            return [unit]

        if kind == EventKind.CONTROL:
            if state is not None:
                state.touch(event)
            logger.debug("Control event %s", event.describe())
            return []

        raise MalformedEventError(f"Unhandled event kind: {kind!r}")

    def _create(self, event: Event) -> ConnectionState:
        generation = next(self._generations)
        state = ConnectionState(
            key=event.key,
            generation=generation,
            comm=event.comm,
            first_ts=event.timestamp,
            last_ts=event.timestamp,
            reassembler=Reassembler(event.key, generation, event.comm,
                                    continuation_limit=self.continuation_limit),
        )
        self._connections[event.key] = state
        self.stats['connections_created'] += 1
        logger.debug("New connection %s generation %d (%s)", event.key, generation, event.comm)
        return state

    def _finish(self, state: ConnectionState, reason: EmitReason) -> List[EmittedUnit]:
        """Flush a connection, tell the sink it ended and drop it."""
        state.status = ConnectionStatus.CLOSING
        try:
            units = state.reassembler.flush(reason)
            for unit in units:
                self._deliver(unit)
            self.sink.end_connection(state.summarize(reason))
        finally:
            state.status = ConnectionStatus.CLOSED
            if self._connections.get(state.key) is state:
                del self._connections[state.key]
        logger.debug("Connection %s generation %d ended (%s)",
                     state.key, state.generation, reason.value)
        return units

    def _deliver(self, unit: EmittedUnit) -> None:
        self.sink.emit(unit)
        self.stats['units_emitted'] += 1
        self.stats['bytes_emitted'] += unit.length

    # ------------------------------------------------------------------
    # Idle eviction
    # ------------------------------------------------------------------
    def _advance_clock(self, timestamp: int) -> None:
        if self._watermark_wall is None or timestamp >= self._watermark_ts:
            self._watermark_ts = timestamp
            self._watermark_wall = self._clock()

    def stream_now(self) -> int:
        """Latest event timestamp plus wall time elapsed since it was seen."""
        with self._lock:
            if self._watermark_wall is None:
                return 0
            return self._watermark_ts + max(0, self._clock() - self._watermark_wall)

    def _maybe_sweep(self) -> None:
        now = self.stream_now()
        if now - self._last_sweep_ts >= self.sweep_interval_ns:
            self.evict_idle()

    def evict_idle(self) -> int:
        """End every connection idle for longer than idle_timeout. Returns the count."""
        with self._lock:
            if self._closed:
                return 0
            now = self.stream_now()
            self._last_sweep_ts = now
            idle = [s for s in self._connections.values()
                    if now - s.last_ts > self.idle_timeout_ns]
            for state in idle:
                logger.info("Evicting idle connection %s generation %d (idle %.1fs)",
                            state.key, state.generation,
                            (now - state.last_ts) / NS_PER_SECOND)
                self._finish(state, EmitReason.IDLE)
                self.stats['connections_evicted'] += 1
            return len(idle)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    def flush_all(self) -> List[Exception]:
        """
        Flush and end every tracked connection, then refuse further events.

        Best effort: a failure in one connection is logged and collected, the
        remaining connections are still flushed.
        """
        errors: List[Exception] = []
        with self._lock:
            for state in list(self._connections.values()):
                try:
                    self._finish(state, EmitReason.SHUTDOWN)
                except Exception as e:
                    logger.error("Failed to flush connection %s: %s", state.key, e)
                    errors.append(e)
            self._connections.clear()
            self._closed = True
        return errors

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, key: ConnectionKey) -> bool:
        with self._lock:
            return key in self._connections

    def get(self, key: ConnectionKey) -> Optional[ConnectionState]:
        with self._lock:
            return self._connections.get(key)

    @property
    def closed(self) -> bool:
        return self._closed
