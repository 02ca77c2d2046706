"""Donation platform file upload client."""

__version__ = "0.1.0"

from donorhub.models import (
    FileDescriptor,
    LogicalCategory,
    TaskStatus,
    UploadConfig,
    UploadResult,
)

__all__ = [
    "FileDescriptor",
    "LogicalCategory",
    "TaskStatus",
    "UploadConfig",
    "UploadResult",
    "__version__",
]
