"""Typed failures of the upload pipeline.

Every pipeline component raises a subclass of :class:`UploadError`.
:class:`~donorhub.upload.task.UploadTask` catches them and records the
instance on ``last_error``; none of them escape a session run.
"""

from __future__ import annotations


class UploadError(Exception):
    """Base class for all upload pipeline failures."""

    retryable: bool = False


# ---------------------------------------------------------------------------
# Local validation (never sent over the wire)
# ---------------------------------------------------------------------------


class ValidationError(UploadError):
    """Raised when a file is rejected before any network activity."""


class TooLarge(ValidationError):
    """The file exceeds the size ceiling of its category."""

    def __init__(self, byte_size: int, ceiling: int) -> None:
        self.byte_size = byte_size
        self.ceiling = ceiling
        super().__init__(
            f"File too large: {byte_size} bytes exceeds the "
            f"{ceiling // (1024 * 1024)} MiB limit"
        )


class UnsupportedType(ValidationError):
    """The file's content type is not allowed for its category."""

    def __init__(self, content_type: str, allowed: tuple[str, ...]) -> None:
        self.content_type = content_type
        self.allowed = allowed
        super().__init__(
            f"Invalid file type {content_type!r}. Allowed types: {', '.join(allowed)}"
        )


# ---------------------------------------------------------------------------
# Origin server
# ---------------------------------------------------------------------------


class Unauthenticated(UploadError):
    """No bearer credential, or the origin server refused it."""


class GrantDenied(UploadError):
    """The origin server refused to issue a write grant."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ConfirmationFailed(UploadError):
    """The bytes are in storage but the origin did not record them."""

    retryable = True

    def __init__(self, destination_key: str, message: str) -> None:
        self.destination_key = destination_key
        super().__init__(f"Confirmation of {destination_key} failed: {message}")


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class NetworkError(UploadError):
    """Connection-level failure (reset, DNS, refused)."""

    retryable = True


class Timeout(UploadError):
    """A request exceeded its wall-clock ceiling."""

    retryable = True


class TransferRejected(UploadError):
    """Storage answered the transfer with a non-2xx status.

    The grant is considered burned; a retry needs a fresh one.
    """

    def __init__(self, status_code: int, target: str) -> None:
        self.status_code = status_code
        self.target = target
        super().__init__(f"Upload failed with status {status_code} at {target}")


# ---------------------------------------------------------------------------
# Caller actions
# ---------------------------------------------------------------------------


class UploadCancelled(UploadError):
    """The caller dropped the task while it was running."""


class TaskNotRetryable(Exception):
    """Raised when retry() is called on a task that cannot be retried."""
