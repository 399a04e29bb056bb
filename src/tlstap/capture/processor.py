"""
Event processor: bounded intake queue, serve loop and shutdown sequencing.

Producers call write() from any thread. One serve loop consumes the queue
and drives the connection tracker, which forwards emitted units to the sink.
close() is the single place where lifecycle and I/O failures are reported.
"""

import logging
import queue
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import (
    AlreadyServingError,
    DrainTimeoutError,
    MalformedEventError,
    ProcessorClosedError,
    QueueFullError,
)
from ..models.event import Event
from ..pcap_writer.sink import ISink, create_sink
from ..reassembly.tracker import ConnectionTracker
from .config import OverflowPolicy, ProcessorConfig

logger = logging.getLogger(__name__)

# Queue marker telling the serve loop that every accepted event is ahead of it
_STOP = object()


class ProcessorState(str, Enum):
    CREATED = "created"
    SERVING = "serving"
    CLOSING = "closing"
    CLOSED = "closed"


class EventProcessor:
    """
    Pipeline of queue -> tracker -> sink for one output destination.

    Lifecycle: CREATED -> SERVING -> CLOSING -> CLOSED. Events written before
    serve() starts are buffered in the queue.
    """

    def __init__(self,
                 config: ProcessorConfig,
                 sink: Optional[ISink] = None,
                 clock: Callable[[], int] = time.monotonic_ns):
        self.config = config
        self.sink = sink if sink is not None else create_sink(
            config.mode, config.destination, **config.sink_options())
        self.tracker = ConnectionTracker(
            self.sink,
            idle_timeout=config.idle_timeout,
            continuation_limit=config.continuation_limit,
            sweep_interval=config.sweep_interval,
            clock=clock,
        )
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=config.queue_capacity)
        self._cond = threading.Condition()
        self._state = ProcessorState.CREATED
        self._serve_started = False
        self._writers = 0
        self._abandon = threading.Event()
        self._serve_done = threading.Event()
        self._close_done = threading.Event()
        self._outcome: Optional[Exception] = None
        self._stats_lock = threading.Lock()
        self._stats = {
            'events_received': 0,
            'events_processed': 0,
            'events_malformed': 0,
            'events_dropped': 0,
            'events_failed': 0,
        }

    @property
    def state(self) -> ProcessorState:
        return self._state

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------
    def _begin_serving(self) -> None:
        with self._cond:
            if self._state in (ProcessorState.CLOSING, ProcessorState.CLOSED):
                raise ProcessorClosedError("Processor is closed")
            if self._serve_started:
                raise AlreadyServingError("serve() already running")
            self._serve_started = True
            self._state = ProcessorState.SERVING
        logger.info("Serving %s output to %s", self.config.mode.value, self.config.destination)

    def serve(self) -> None:
        """
        Consume events until close() drains the queue.

        Raises:
            AlreadyServingError: serve() or start() was already called
            ProcessorClosedError: close() has begun
        """
        self._begin_serving()
        self._serve_loop()

    def start(self) -> threading.Thread:
        """Run serve() on a daemon thread and return the thread."""
        self._begin_serving()
        thread = threading.Thread(target=self._serve_loop, name="tlstap-serve", daemon=True)
        thread.start()
        return thread

    def _serve_loop(self) -> None:
        try:
            while not self._abandon.is_set():
                try:
                    item = self._queue.get(timeout=self.config.poll_interval)
                except queue.Empty:
                    self._sweep_idle()
                    continue
                if item is _STOP:
                    break
                self._process(item)
        finally:
            self._serve_done.set()
            logger.debug("Serve loop stopped")

    def _process(self, event: Event) -> None:
        try:
            self.tracker.dispatch(event)
        except MalformedEventError as e:
            self._count('events_malformed')
            logger.warning("Dropping malformed event (%s): %s", event.describe(), e)
        except Exception:
            # one bad event must not stop the other connections
            self._count('events_failed')
            logger.exception("Failed to process %s", event.describe())
        else:
            self._count('events_processed')

    def _sweep_idle(self) -> None:
        try:
            evicted = self.tracker.evict_idle()
        except Exception:
            logger.exception("Idle sweep failed")
            return
        if evicted:
            logger.debug("Idle sweep ended %d connections", evicted)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------
    def write(self, event: Event) -> None:
        """
        Queue one event for processing.

        Raises:
            ProcessorClosedError: close() has begun
            QueueFullError: queue full under the block or fail policy
        """
        with self._cond:
            if self._state in (ProcessorState.CLOSING, ProcessorState.CLOSED):
                raise ProcessorClosedError("Processor is closed, event rejected")
            self._writers += 1
        try:
            self._enqueue(event)
        finally:
            with self._cond:
                self._writers -= 1
                self._cond.notify_all()

    def _enqueue(self, event: Event) -> None:
        policy = self.config.overflow_policy
        try:
            if policy is OverflowPolicy.BLOCK:
                self._queue.put(event, timeout=self.config.write_timeout)
            else:
                self._queue.put_nowait(event)
        except queue.Full:
            if policy is OverflowPolicy.DROP:
                self._count('events_dropped')
                dropped = self._stats['events_dropped']
                if dropped == 1 or dropped % 100 == 0:
                    logger.warning("Event queue full, dropped %d events so far", dropped)
                return
            raise QueueFullError(
                f"Event queue full ({self.config.queue_capacity} events)") from None
        self._count('events_received')

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    def close(self) -> None:
        """
        Stop intake, drain queued events, flush every connection and close
        the sink.

        Safe to call repeatedly and from several threads: later calls wait
        for the first one and report the same outcome.

        Raises:
            DrainTimeoutError: writers or the serve loop did not finish in time
            SinkIOError: the destination could not be written or closed

        Any other failure of the sink's close is recorded the same way and
        re-raised by every later call.
        """
        with self._cond:
            first_call = self._state in (ProcessorState.CREATED, ProcessorState.SERVING)
            if first_call:
                self._state = ProcessorState.CLOSING
        if not first_call:
            self._close_done.wait()
            if self._outcome is not None:
                raise self._outcome
            return

        logger.info("Closing event processor")
        errors: List[Exception] = []
        try:
            try:
                errors.extend(self._drain())
                errors.extend(self.tracker.flush_all())
            except Exception as e:
                logger.error("Drain failed: %s", e)
                errors.append(e)
            # the sink is closed even when draining failed
            try:
                self.sink.close()
            except Exception as e:
                errors.append(e)
        finally:
            for extra in errors[1:]:
                logger.error("Additional close failure: %s", extra)
            self._outcome = errors[0] if errors else None
            with self._cond:
                self._state = ProcessorState.CLOSED
            self._close_done.set()
            logger.info("Event processor closed (%d errors)", len(errors))
        if self._outcome is not None:
            raise self._outcome

    def _drain(self) -> List[Exception]:
        errors: List[Exception] = []
        timeout = self.config.drain_timeout
        deadline = time.monotonic() + timeout

        with self._cond:
            if not self._cond.wait_for(lambda: self._writers == 0, timeout=timeout):
                errors.append(DrainTimeoutError(
                    f"{self._writers} writers still in flight after {timeout}s"))
            serving = self._serve_started

        if not serving:
            self._drain_inline()
            return errors

        try:
            self._queue.put(_STOP, timeout=max(0.0, deadline - time.monotonic()))
        except queue.Full:
            logger.warning("Could not queue stop marker before drain timeout")
        if not self._serve_done.wait(max(0.0, deadline - time.monotonic())):
            self._abandon.set()
            errors.append(DrainTimeoutError(
                f"Serve loop did not drain {self._queue.qsize()} queued events within {timeout}s"))
        return errors

    def _drain_inline(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _STOP:
                self._process(item)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats: Dict[str, Any] = dict(self._stats)
        stats['state'] = self._state.value
        stats['active_connections'] = len(self.tracker)
        stats['queue_depth'] = self._queue.qsize()
        stats['sink_errors'] = len(self.sink.errors)
        stats.update(self.tracker.stats)
        return stats

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
