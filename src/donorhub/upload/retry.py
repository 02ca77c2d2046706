"""Optional automatic retry for upload tasks.

Interactive callers retry by hand (``attempts=1``, the default).  Batch
callers can ask for bounded automatic retries with exponential backoff
and jitter; each retry goes through :meth:`UploadTask.retry`, so it
re-enters at the right step and counts toward ``task.attempts``.

Only failures flagged ``retryable`` (network errors, timeouts, failed
confirmations) are retried automatically.  A storage rejection burns the
grant and is surfaced to the caller instead.
"""

from __future__ import annotations

import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)

from donorhub.models import TaskStatus
from donorhub.upload.task import UploadTask

logger = logging.getLogger(__name__)


def needs_retry(task: UploadTask) -> bool:
    """True if *task* failed with an error worth retrying automatically."""
    return (
        task.status is TaskStatus.FAILED
        and task.last_error is not None
        and task.last_error.retryable
        and not task.cancel_requested
    )


def _last_result(retry_state: RetryCallState) -> UploadTask:
    return retry_state.outcome.result()


class RetryPolicy:
    """Bounded retry schedule for one task.

    Args:
        attempts: Total executions allowed, including the first run.
        min_wait: Initial backoff in seconds.
        max_wait: Backoff cap in seconds.
    """

    def __init__(self, attempts: int = 1, min_wait: float = 1.0, max_wait: float = 30.0) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.min_wait = min_wait
        self.max_wait = max_wait

    async def execute(self, task: UploadTask) -> UploadTask:
        """Run *task*, retrying it while it keeps failing retryably."""
        if self.attempts == 1:
            await task.run()
            return task

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential_jitter(
                initial=self.min_wait, max=self.max_wait, jitter=self.min_wait
            ),
            retry=retry_if_result(needs_retry),
            retry_error_callback=_last_result,
            before_sleep=before_sleep_log(logger, logging.INFO),
        )
        return await retrying(self._attempt, task)

    @staticmethod
    async def _attempt(task: UploadTask) -> UploadTask:
        if task.attempts == 0:
            await task.run()
        elif not task.cancel_requested:
            await task.retry()
        return task
