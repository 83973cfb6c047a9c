"""Retry a check until it succeeds or a time budget runs out.

Used for pod readiness, service reachability and "does the query return
the expected row" checks. The check is a plain callable returning a truthy
value on success. ``poll_until`` never raises on timeout; it returns
``False`` and leaves it to the caller to decide whether that is fatal.

A ``timeout`` of ``0`` checks exactly once and never sleeps, which is how
callers assert that something is *absent* (data lost after an ephemeral
redeploy) without waiting for it to maybe show up.

Clock and sleep are parameters so tests can drive the loop without
waiting, and so several polls can share one start time.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from pgtestbed.logging import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL = 3.0
DEFAULT_TIMEOUT = 60.0


def poll_until(
    check: Callable[[], object],
    *,
    interval: float = DEFAULT_INTERVAL,
    timeout: float = DEFAULT_TIMEOUT,
    description: str = "condition",
    started_at: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Call ``check`` every ``interval`` seconds until it succeeds.

    Parameters
    ----------
    check
        Zero-argument callable; a truthy return value means success.
    interval
        Seconds to sleep between attempts.
    timeout
        Budget in seconds, measured from ``started_at``. ``0`` means a
        single attempt.
    description
        Human-readable name used in log events.
    started_at
        Start of the budget on the ``clock`` timeline. Defaults to now.

    Returns
    -------
    bool
        ``True`` as soon as ``check`` succeeds, ``False`` once the budget
        is exhausted.
    """
    start = clock() if started_at is None else started_at
    attempt = 0

    while True:
        attempt += 1
        if check():
            logger.debug("poll.succeeded", check=description, attempts=attempt)
            return True

        elapsed = clock() - start
        if elapsed >= timeout:
            logger.info(
                "poll.timeout",
                check=description,
                attempts=attempt,
                timeout=timeout,
                elapsed=round(elapsed, 1),
            )
            return False

        logger.debug("poll.retry", check=description, attempt=attempt)
        sleep(interval)
