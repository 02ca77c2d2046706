"""Data models and enums for the donorhub upload pipeline."""

from __future__ import annotations

import io
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO


class LogicalCategory(str, Enum):
    """Named purpose of an uploaded file.

    Selects the size/type policy on the client and the storage namespace
    on the origin server.
    """

    PROFILE_PICTURE = "profile-picture"
    CAMPAIGN_COVER = "campaign-cover"
    CAMPAIGN_IMAGE = "campaign-image"
    CAMPAIGN_VERIFICATION = "campaign-verification"
    BLOG_COVER = "blog-cover"
    BLOG_IMAGE = "blog-image"
    DOCUMENT_CITIZENSHIP = "document-citizenship"
    DOCUMENT_LICENSE = "document-license"
    DOCUMENT_PASSPORT = "document-passport"
    BANK_DOCUMENT = "bank-document"


class TaskStatus(str, Enum):
    """Lifecycle state of a single upload task."""

    VALIDATING = "validating"
    REQUESTING_GRANT = "requesting_grant"
    TRANSFERRING = "transferring"
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class FileDescriptor:
    """A caller-supplied file: name, size, MIME type and a handle to its bytes.

    The handle is never copied; the transfer client streams from it and
    rewinds it before every attempt.
    """

    name: str
    byte_size: int
    content_type: str
    binary_handle: BinaryIO = field(repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.byte_size < 0:
            raise ValueError(f"byte_size must be >= 0, got {self.byte_size}")

    @classmethod
    def from_path(cls, path: Path | str, content_type: str | None = None) -> FileDescriptor:
        """Open *path* for reading and describe it.

        The MIME type is guessed from the file name when *content_type* is
        not given, falling back to ``application/octet-stream``.
        """
        path = Path(path)
        if content_type is None:
            guessed, _ = mimetypes.guess_type(path.name)
            content_type = guessed or "application/octet-stream"
        return cls(
            name=path.name,
            byte_size=path.stat().st_size,
            content_type=content_type,
            binary_handle=path.open("rb"),
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str) -> FileDescriptor:
        """Describe an in-memory payload."""
        return cls(
            name=name,
            byte_size=len(data),
            content_type=content_type,
            binary_handle=io.BytesIO(data),
        )

    def close(self) -> None:
        """Close the underlying handle."""
        self.binary_handle.close()


@dataclass(frozen=True)
class UploadResult:
    """Canonical outcome of a confirmed upload, as reported by the origin."""

    public_url: str
    destination_key: str
    server_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadConfig:
    """Configuration for the upload pipeline.

    Controls the origin server address, concurrency limits, timeouts,
    automatic retry behaviour and the unconfirmed-object ledger.
    """

    origin_url: str = "http://localhost:5000"
    max_concurrent_uploads: int = 4
    transfer_timeout_seconds: float = 30.0
    origin_timeout_seconds: float = 10.0
    retry_attempts: int = 1
    retry_min_wait: float = 1.0
    retry_max_wait: float = 30.0
    ledger_path: str | None = None

    def __post_init__(self) -> None:
        if self.max_concurrent_uploads < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
