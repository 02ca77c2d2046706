"""Direct-to-storage upload pipeline.

Public API
----------
.. autoclass:: UploadPolicy
.. autoclass:: GrantNegotiator
.. autoclass:: StorageTransferClient
.. autoclass:: ConfirmationHandshake
.. autoclass:: UploadTask
.. autoclass:: UploadSession
.. autoclass:: RetryPolicy
.. autoclass:: UnconfirmedObjectLedger
.. autoclass:: SessionProgressDisplay
"""

from donorhub.upload.confirmation import ConfirmationHandshake
from donorhub.upload.exceptions import (
    ConfirmationFailed,
    GrantDenied,
    NetworkError,
    TaskNotRetryable,
    Timeout,
    TooLarge,
    TransferRejected,
    Unauthenticated,
    UnsupportedType,
    UploadCancelled,
    UploadError,
    ValidationError,
)
from donorhub.upload.grants import DirectTransfer, FormPostTransfer, GrantNegotiator, WriteGrant
from donorhub.upload.ledger import ReconcileResult, UnconfirmedObjectLedger, reconcile_unconfirmed
from donorhub.upload.origin import OriginApiClient
from donorhub.upload.policy import UploadPolicy
from donorhub.upload.progress import SessionProgressDisplay
from donorhub.upload.retry import RetryPolicy
from donorhub.upload.session import SessionEntry, UploadSession
from donorhub.upload.task import UploadTask
from donorhub.upload.transfer import StorageTransferClient

__all__ = [
    "ConfirmationFailed",
    "ConfirmationHandshake",
    "DirectTransfer",
    "FormPostTransfer",
    "GrantDenied",
    "GrantNegotiator",
    "NetworkError",
    "OriginApiClient",
    "ReconcileResult",
    "RetryPolicy",
    "SessionEntry",
    "SessionProgressDisplay",
    "StorageTransferClient",
    "TaskNotRetryable",
    "Timeout",
    "TooLarge",
    "TransferRejected",
    "Unauthenticated",
    "UnconfirmedObjectLedger",
    "UnsupportedType",
    "UploadCancelled",
    "UploadError",
    "UploadPolicy",
    "UploadSession",
    "UploadTask",
    "ValidationError",
    "WriteGrant",
    "reconcile_unconfirmed",
]
