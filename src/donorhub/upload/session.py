"""Batch upload session.

Owns a set of :class:`UploadTask` objects and drives them concurrently:

* Validates every file up front (no I/O, no suspension)
* Limits in-flight transfers with ``asyncio.Semaphore``
* Recomputes one aggregate progress value on every task event
* Returns per-file results in submission order; one file's failure never
  hides or corrupts another's result
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from donorhub.models import (
    FileDescriptor,
    LogicalCategory,
    TaskStatus,
    UploadConfig,
    UploadResult,
)
from donorhub.upload.confirmation import ConfirmationHandshake
from donorhub.upload.exceptions import UploadError
from donorhub.upload.grants import GrantNegotiator
from donorhub.upload.ledger import UnconfirmedObjectLedger
from donorhub.upload.origin import OriginApiClient
from donorhub.upload.policy import UploadPolicy
from donorhub.upload.retry import RetryPolicy
from donorhub.upload.task import UploadTask
from donorhub.upload.transfer import StorageTransferClient

logger = logging.getLogger(__name__)

SessionListener = Callable[["UploadSession", UploadTask], None]


@dataclass(frozen=True)
class SessionEntry:
    """Outcome of one submitted file.

    Exactly one of ``result`` (on success) or ``error`` (on failure) is
    meaningful.  ``file_descriptor``, ``category`` and ``task_id`` are
    always set so a failed entry can be offered for retry.
    """

    success: bool
    file_descriptor: FileDescriptor
    category: LogicalCategory
    task_id: str
    result: UploadResult | None = None
    error: UploadError | None = None

    @classmethod
    def from_task(cls, task: UploadTask) -> SessionEntry:
        if task.status is TaskStatus.COMPLETED:
            return cls(
                success=True,
                file_descriptor=task.descriptor,
                category=task.category,
                task_id=task.id,
                result=task.result,
            )
        return cls(
            success=False,
            file_descriptor=task.descriptor,
            category=task.category,
            task_id=task.id,
            error=task.last_error,
        )


class UploadSession:
    """Concurrent upload of a user-initiated batch of files.

    Usage::

        async with UploadSession.from_config(config, token) as session:
            session.submit_many(descriptors, LogicalCategory.CAMPAIGN_IMAGE)
            entries = await session.run()

    Args:
        negotiator: Grant negotiator shared by all tasks.
        transfer_client: Storage transfer client shared by all tasks.
        handshake: Confirmation handshake shared by all tasks.
        policy: Validation rules (defaults to :class:`UploadPolicy`).
        max_concurrency: Maximum tasks past validation at once.
        retry_policy: Automatic retry schedule (defaults to none).
        ledger: Optional ledger for stored-but-unconfirmed objects.
    """

    def __init__(
        self,
        negotiator: GrantNegotiator,
        transfer_client: StorageTransferClient,
        handshake: ConfirmationHandshake,
        *,
        policy: UploadPolicy | None = None,
        max_concurrency: int = 4,
        retry_policy: RetryPolicy | None = None,
        ledger: UnconfirmedObjectLedger | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._negotiator = negotiator
        self._transfer_client = transfer_client
        self._handshake = handshake
        self._policy = policy or UploadPolicy()
        self._retry_policy = retry_policy or RetryPolicy()
        self._ledger = ledger
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)

        self._tasks: list[UploadTask] = []
        self._listeners: list[SessionListener] = []
        self._aggregate = 0.0
        self._closeables: list[Any] = []

    @classmethod
    def from_config(
        cls,
        config: UploadConfig,
        token: str | None,
        *,
        policy: UploadPolicy | None = None,
        ledger: UnconfirmedObjectLedger | None = None,
    ) -> UploadSession:
        """Build a session and the HTTP clients it owns from *config*.

        The clients are closed by :meth:`aclose` (or ``async with``).
        """
        origin = OriginApiClient(
            config.origin_url, token, timeout=config.origin_timeout_seconds
        )
        transfer_client = StorageTransferClient(timeout=config.transfer_timeout_seconds)
        session = cls(
            GrantNegotiator(origin),
            transfer_client,
            ConfirmationHandshake(origin),
            policy=policy,
            max_concurrency=config.max_concurrent_uploads,
            retry_policy=RetryPolicy(
                attempts=config.retry_attempts,
                min_wait=config.retry_min_wait,
                max_wait=config.retry_max_wait,
            ),
            ledger=ledger,
        )
        session._closeables.extend([origin, transfer_client])
        return session

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        descriptor: FileDescriptor,
        category: LogicalCategory,
        metadata: dict[str, str] | None = None,
    ) -> UploadTask:
        """Create a task for *descriptor*; it starts on the next :meth:`run`."""
        task = UploadTask(
            descriptor,
            category,
            negotiator=self._negotiator,
            transfer_client=self._transfer_client,
            handshake=self._handshake,
            policy=self._policy,
            metadata=metadata,
            ledger=self._ledger,
        )
        task.add_listener(self._on_task_event)
        self._tasks.append(task)
        self._recompute()
        return task

    def submit_many(
        self,
        descriptors: Iterable[FileDescriptor],
        category: LogicalCategory,
        metadata: dict[str, str] | None = None,
    ) -> list[UploadTask]:
        return [self.submit(d, category, metadata) for d in descriptors]

    def add_listener(self, listener: SessionListener) -> None:
        """Call *listener* with ``(session, task)`` after every task event."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> tuple[UploadTask, ...]:
        return tuple(self._tasks)

    def get_task(self, task_id: str) -> UploadTask:
        for task in self._tasks:
            if task.id == task_id:
                return task
        raise KeyError(task_id)

    @property
    def aggregate_progress_percent(self) -> float:
        """Combined completion of all tasks, 0-100."""
        return self._aggregate

    def results(self) -> list[SessionEntry]:
        """Per-file outcomes in submission order."""
        return [SessionEntry.from_task(task) for task in self._tasks]

    @property
    def summary(self) -> dict[str, int]:
        """Return task counts by outcome."""
        completed = sum(1 for t in self._tasks if t.status is TaskStatus.COMPLETED)
        failed = sum(1 for t in self._tasks if t.status is TaskStatus.FAILED)
        return {
            "total": len(self._tasks),
            "completed": completed,
            "failed": failed,
            "pending": len(self._tasks) - completed - failed,
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self) -> list[SessionEntry]:
        """Drive every task that has not started yet.

        Returns:
            One entry per submitted file, in submission order.
        """
        fresh = [t for t in self._tasks if t.attempts == 0 and not t.cancel_requested]

        # Validation is CPU-only; rejected files never reach the semaphore.
        runnable = [t for t in fresh if t.validate()]

        rejected = len(fresh) - len(runnable)
        logger.info(
            "Starting session: %d files (%d rejected by policy, concurrency limit %d)",
            len(fresh),
            rejected,
            self.max_concurrency,
        )

        await self._gather(self._run_bounded(t) for t in runnable)
        self._log_summary()
        return self.results()

    async def retry_failed(self) -> list[SessionEntry]:
        """Retry every failed task that can be retried, then return all results."""
        candidates = [t for t in self._tasks if t.is_retryable]
        logger.info("Retrying %d failed files", len(candidates))
        await self._gather(self._retry_bounded(t) for t in candidates)
        self._log_summary()
        return self.results()

    def cancel(self, task_id: str) -> bool:
        """Drop one task; siblings keep running."""
        return self.get_task(task_id).cancel()

    async def _run_bounded(self, task: UploadTask) -> None:
        async with self._semaphore:
            if task.cancel_requested:
                return
            await self._retry_policy.execute(task)

    async def _retry_bounded(self, task: UploadTask) -> None:
        async with self._semaphore:
            await task.retry()

    async def _gather(self, coros: Iterable[Any]) -> None:
        results = await asyncio.gather(*coros, return_exceptions=True)
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                # A task dropped through cancel(); its state records it.
                continue
            if isinstance(result, BaseException):
                logger.error("Upload task raised unexpectedly: %r", result)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _recompute(self) -> None:
        if not self._tasks:
            self._aggregate = 0.0
            return
        units = sum(
            1.0 if t.status is TaskStatus.COMPLETED else t.progress_percent / 100.0
            for t in self._tasks
        )
        self._aggregate = units * 100.0 / len(self._tasks)

    def _on_task_event(self, task: UploadTask) -> None:
        self._recompute()
        for listener in self._listeners:
            listener(self, task)

    def _log_summary(self) -> None:
        summary = self.summary
        logger.info(
            "Session complete: %d completed, %d failed of %d total",
            summary["completed"],
            summary["failed"],
            summary["total"],
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close HTTP clients created by :meth:`from_config`."""
        for closeable in self._closeables:
            await closeable.aclose()
        self._closeables.clear()

    async def __aenter__(self) -> UploadSession:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()
