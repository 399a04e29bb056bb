"""Bounded retry for transient I/O failures."""
from __future__ import annotations

import errno
import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# errno values worth another attempt; anything else is treated as persistent
TRANSIENT_ERRNOS = frozenset({
    errno.EINTR,
    errno.EAGAIN,
    errno.EBUSY,
    errno.ENOBUFS,
})


def is_transient(error: OSError) -> bool:
    if isinstance(error, (InterruptedError, BlockingIOError)):
        return True
    return error.errno in TRANSIENT_ERRNOS


def retry_io(operation: Callable[[], T],
             description: str,
             retries: int = 3,
             delay: float = 0.05,
             backoff: float = 2.0) -> T:
    """
    Run `operation`, retrying transient OSErrors up to `retries` times.

    Persistent errors, and transient ones that outlast the retries, are
    re-raised to the caller.
    """
    attempt = 0
    current_delay = delay
    while True:
        try:
            return operation()
        except OSError as e:
            attempt += 1
            if not is_transient(e) or attempt > retries:
                raise
            logger.info("Retrying %s in %.2fs (attempt %d/%d): %s",
                        description, current_delay, attempt, retries + 1, e)
            time.sleep(current_delay)
            current_delay *= backoff
