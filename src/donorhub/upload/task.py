"""Per-file upload driver.

Sequences policy check → grant → transfer → confirmation for one file,
recording progress and the typed failure of whichever step stops it.
State changes go through :class:`~donorhub.upload.fsm.UploadTaskSM`, so
an illegal jump raises instead of silently corrupting the task.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from typing import Any

import aiosqlite

from donorhub.models import FileDescriptor, LogicalCategory, TaskStatus, UploadResult
from donorhub.upload.confirmation import ConfirmationHandshake
from donorhub.upload.exceptions import (
    TaskNotRetryable,
    UploadCancelled,
    UploadError,
    ValidationError,
)
from donorhub.upload.fsm import create_fsm
from donorhub.upload.grants import GrantNegotiator, WriteGrant
from donorhub.upload.ledger import UnconfirmedObjectLedger
from donorhub.upload.policy import UploadPolicy
from donorhub.upload.transfer import StorageTransferClient

logger = logging.getLogger(__name__)

TaskListener = Callable[["UploadTask"], None]


class UploadTask:
    """One file's journey from the caller to object storage.

    The task is mutated only by its own driver (:meth:`run` /
    :meth:`retry`).  Typed pipeline failures never escape either method;
    they leave the task in ``failed`` with ``last_error`` set.

    Attributes:
        id: Short unique identifier.
        descriptor: The file being uploaded.
        category: Logical category, fixed at creation.
        metadata: Caller metadata forwarded to the origin.
        progress_percent: 0-100, non-decreasing while transferring.
        last_error: Typed failure of the last attempt, if any.
        result: Canonical result once ``completed``.
        attempts: Number of pipeline executions (first run plus retries).
    """

    def __init__(
        self,
        descriptor: FileDescriptor,
        category: LogicalCategory,
        *,
        negotiator: GrantNegotiator,
        transfer_client: StorageTransferClient,
        handshake: ConfirmationHandshake,
        policy: UploadPolicy | None = None,
        metadata: dict[str, str] | None = None,
        ledger: UnconfirmedObjectLedger | None = None,
        task_id: str | None = None,
    ) -> None:
        self.id = task_id or uuid.uuid4().hex[:12]
        self.descriptor = descriptor
        self.category = category
        self.metadata = dict(metadata or {})

        self._negotiator = negotiator
        self._transfer_client = transfer_client
        self._handshake = handshake
        self._policy = policy or UploadPolicy()
        self._ledger = ledger

        self._fsm = create_fsm()
        self.progress_percent = 0.0
        self.last_error: UploadError | None = None
        self.result: UploadResult | None = None
        self.attempts = 0

        # Key of bytes already in storage but not yet confirmed.
        self._stored_key: str | None = None
        self._failed_step: TaskStatus | None = None
        self._grant: WriteGrant | None = None
        self._running: asyncio.Task | None = None
        self._cancel_requested = False
        self._listeners: list[TaskListener] = []
        self._last_status = TaskStatus.VALIDATING

    def __repr__(self) -> str:
        return (
            f"UploadTask(id={self.id!r}, name={self.descriptor.name!r}, "
            f"status={self.status.value}, progress={self.progress_percent:.1f})"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> TaskStatus:
        return TaskStatus(self._fsm.current_state.value)

    @property
    def failed_step(self) -> TaskStatus | None:
        """Step at which the last attempt failed, or ``None``."""
        return self._failed_step

    @property
    def is_retryable(self) -> bool:
        """Whether :meth:`retry` would be accepted."""
        return self.status is TaskStatus.FAILED and not isinstance(
            self.last_error, ValidationError
        )

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def add_listener(self, listener: TaskListener) -> None:
        """Call *listener* with this task after every progress or status change."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        status = self.status
        if status is not self._last_status:
            logger.debug("%s (%s) -> %s", self.descriptor.name, self.id, status.value)
            self._last_status = status
        for listener in self._listeners:
            listener(self)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """Run the local policy check (no I/O).

        Returns:
            ``True`` if the task may proceed to grant negotiation.
        """
        if self.status is not TaskStatus.VALIDATING:
            return self.status is not TaskStatus.FAILED
        rejection = self._policy.check(self.descriptor, self.category)
        if rejection is not None:
            self._fail(rejection, TaskStatus.VALIDATING)
            return False
        self._fsm.validated()
        self._notify()
        return True

    async def run(self) -> None:
        """Execute the pipeline from the beginning.

        Safe to call after :meth:`validate`; a task already executed must
        use :meth:`retry` instead.
        """
        if self.attempts > 0:
            raise RuntimeError(f"Task {self.id} already ran; use retry()")
        if not self.validate():
            return
        await self._drive(TaskStatus.REQUESTING_GRANT)

    async def retry(self) -> None:
        """Re-run a failed task from the earliest step that needs repeating.

        A failure at confirmation re-enters at ``confirming`` (the bytes
        are already stored).  Any other failure re-enters at
        ``requesting_grant``, because grants are single use.  A task
        cancelled before it was validated is checked against the policy
        first; a rejection is recorded as its error and nothing is sent.

        Raises:
            TaskNotRetryable: The task is not failed, or it was rejected by
                validation (the same file would be rejected again).
        """
        if self.status is not TaskStatus.FAILED:
            raise TaskNotRetryable(
                f"Task {self.id} is {self.status.value}, only failed tasks can be retried"
            )
        if isinstance(self.last_error, ValidationError):
            raise TaskNotRetryable(f"Task {self.id} was rejected: {self.last_error}")

        if self._failed_step is TaskStatus.VALIDATING:
            rejection = self._policy.check(self.descriptor, self.category)
            if rejection is not None:
                self.last_error = rejection
                logger.warning(
                    "Upload of %s (%s) rejected on retry: %s",
                    self.descriptor.name,
                    self.id,
                    rejection,
                )
                self._notify()
                return

        self._cancel_requested = False
        if self._failed_step is TaskStatus.CONFIRMING and self._stored_key is not None:
            self._fsm.retry_confirmation()
            start = TaskStatus.CONFIRMING
        else:
            self._fsm.retry_grant()
            self._stored_key = None
            self.progress_percent = 0.0
            start = TaskStatus.REQUESTING_GRANT

        logger.info(
            "Retrying %s (%s) from %s", self.descriptor.name, self.id, start.value
        )
        self.last_error = None
        self._failed_step = None
        self._notify()
        await self._drive(start)

    def cancel(self) -> bool:
        """Drop the task: abort an in-flight attempt or fail a queued one.

        Returns:
            ``True`` if the task was running or waiting to run.
        """
        if self._running is not None and not self._running.done():
            self._cancel_requested = True
            self._running.cancel()
            return True
        if self.status is TaskStatus.COMPLETED:
            return False
        if self.status is TaskStatus.FAILED:
            # Stops a pending automatic retry.
            self._cancel_requested = True
            return False
        self._cancel_requested = True
        self._fail(UploadCancelled(f"{self.descriptor.name} was cancelled"), self.status)
        return True

    async def _drive(self, start: TaskStatus) -> None:
        self.attempts += 1
        self._running = asyncio.current_task()
        step = start
        try:
            if start is TaskStatus.REQUESTING_GRANT:
                self._grant = await self._negotiator.request_grant(
                    self.category,
                    self.descriptor.content_type,
                    self.descriptor.name,
                    self.metadata,
                )
                self._fsm.grant_received()
                step = TaskStatus.TRANSFERRING
                self._notify()

                await self._transfer_client.transfer(
                    self._grant, self.descriptor, self._on_bytes_sent
                )
                self._stored_key = self._grant.destination_key
                self._grant = None
                self.progress_percent = 100.0
                self._fsm.transfer_finished()
                step = TaskStatus.CONFIRMING
                self._notify()

            await self._confirm()
        except UploadError as exc:
            self._grant = None
            self._fail(exc, step)
            if step is TaskStatus.CONFIRMING:
                await self._record_unconfirmed(str(exc))
        except asyncio.CancelledError:
            self._grant = None
            if self.status not in (TaskStatus.COMPLETED, TaskStatus.FAILED):
                self._fail(UploadCancelled(f"{self.descriptor.name} was cancelled"), step)
            if self._stored_key is not None:
                await self._record_unconfirmed("cancelled before confirmation")
            raise
        finally:
            self._running = None

    async def _confirm(self) -> None:
        if self._stored_key is None:
            raise RuntimeError(f"Task {self.id} has no stored object to confirm")
        self.result = await self._handshake.confirm(
            self._stored_key, self.category, self._confirmation_metadata()
        )
        key, self._stored_key = self._stored_key, None
        self._fsm.confirmed()
        if self._ledger is not None and self.attempts > 1:
            await self._resolve_unconfirmed(key)
        logger.info(
            "Uploaded %s (%s) -> %s",
            self.descriptor.name,
            self.category.value,
            self.result.public_url,
        )
        self._notify()

    def _confirmation_metadata(self) -> dict[str, Any]:
        return {
            "originalName": self.descriptor.name,
            "size": self.descriptor.byte_size,
            "contentType": self.descriptor.content_type,
            **self.metadata,
        }

    def _on_bytes_sent(self, sent: int, total: int) -> None:
        percent = min(100.0, sent * 100.0 / total) if total else 100.0
        if percent > self.progress_percent:
            self.progress_percent = percent
            self._notify()

    def _fail(self, error: UploadError, step: TaskStatus) -> None:
        self.last_error = error
        self._failed_step = step
        self._fsm.fail()
        logger.warning(
            "Upload of %s (%s) failed at %s: %s",
            self.descriptor.name,
            self.id,
            step.value,
            error,
        )
        self._notify()

    # ------------------------------------------------------------------
    # Unconfirmed objects
    # ------------------------------------------------------------------

    async def _record_unconfirmed(self, reason: str) -> None:
        key = self._stored_key
        if key is None:
            return
        logger.warning(
            "Object %s for %s is stored but unconfirmed (%s)",
            key,
            self.descriptor.name,
            reason,
        )
        if self._ledger is None:
            return
        try:
            await self._ledger.record(
                key,
                self.category,
                self.descriptor.name,
                self._confirmation_metadata(),
                reason,
            )
        except aiosqlite.Error:
            logger.exception("Could not record unconfirmed object %s", key)

    async def _resolve_unconfirmed(self, key: str) -> None:
        if self._ledger is None:
            return
        try:
            await self._ledger.resolve(key)
        except aiosqlite.Error:
            logger.exception("Could not clear ledger entry for %s", key)
