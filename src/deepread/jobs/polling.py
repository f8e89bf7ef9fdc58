"""Client-side polling contract for deep analysis jobs.

Clients poll at a fixed interval and give up after a timeout scaled to the
job's batch count. Giving up has no effect on the server-side job.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from deepread.db.models import AnalysisJob

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 3.0
MIN_POLL_TIMEOUT_MINUTES = 5
MAX_POLL_TIMEOUT_MINUTES = 30


def poll_timeout_minutes(total_batches: int, cap: int = MAX_POLL_TIMEOUT_MINUTES) -> int:
    """``min(max(5, 2 * total_batches), cap)`` minutes."""
    return min(max(MIN_POLL_TIMEOUT_MINUTES, total_batches * 2), cap)


class PollTimeoutError(TimeoutError):
    """The client stopped waiting; the job should be treated as failed."""

    def __init__(self, job_id: str, minutes: float) -> None:
        super().__init__(f"Job {job_id} did not finish within {minutes:g} minutes")
        self.job_id = job_id
        self.minutes = minutes


def wait_for_job(
    fetch: Callable[[], AnalysisJob | None],
    *,
    interval: float = POLL_INTERVAL_SECONDS,
    max_timeout_minutes: int = MAX_POLL_TIMEOUT_MINUTES,
    on_update: Callable[[AnalysisJob], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AnalysisJob | None:
    """Poll *fetch* until the job is terminal or the timeout passes.

    The timeout is recomputed from the latest ``total_batches`` on every poll,
    since a pending job does not yet know its batch count.

    Returns:
        The terminal job, or None if the job disappeared (expired or deleted).

    Raises:
        PollTimeoutError: The job was still running when the timeout elapsed.
    """
    started = clock()
    while True:
        job = fetch()
        if job is None:
            return None
        if on_update is not None:
            on_update(job)
        if job.is_terminal:
            return job
        minutes = poll_timeout_minutes(job.total_batches, max_timeout_minutes)
        if clock() - started >= minutes * 60:
            logger.info("Giving up on job %s after %d minutes", job.id, minutes)
            raise PollTimeoutError(job.id, minutes)
        sleep(interval)
