"""Write grants and the negotiator that requests them.

A grant authorises exactly one write to object storage.  The storage
protocol it expects is carried by ``transfer_method``, a tagged variant:

* :class:`DirectTransfer` -- raw-body PUT (R2-style presigned URL)
* :class:`FormPostTransfer` -- multipart POST with signed policy fields
  (S3/MinIO presigned POST)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from donorhub.models import LogicalCategory
from donorhub.upload.exceptions import GrantDenied, Unauthenticated
from donorhub.upload.origin import GRANT_PATH, OriginApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectTransfer:
    """Single PUT carrying the raw bytes."""


@dataclass(frozen=True)
class FormPostTransfer:
    """Multipart POST; ``form_fields`` precede the file, in order."""

    form_fields: tuple[tuple[str, str], ...] = ()


TransferMethod = Union[DirectTransfer, FormPostTransfer]


@dataclass(frozen=True)
class WriteGrant:
    """Short-lived, single-use permission to write one object.

    Attributes:
        destination_key: Globally unique object path chosen by the origin.
        transfer_target: URL the bytes are sent to.
        transfer_method: Which wire shape the provider expects.
        public_url: Address the origin predicts for the object.  The
            confirmation handshake returns the authoritative one.
    """

    destination_key: str
    transfer_target: str
    transfer_method: TransferMethod
    public_url: str


def parse_grant(data: dict[str, Any]) -> WriteGrant:
    """Build a :class:`WriteGrant` from the origin's grant payload.

    ``method`` defaults to ``POST`` when absent, matching the origin's own
    default.

    Raises:
        GrantDenied: A required field is missing or ``method`` is unknown.
    """
    key = data.get("key")
    upload_url = data.get("uploadUrl")
    if not key or not upload_url:
        raise GrantDenied("Malformed grant: 'key' and 'uploadUrl' are required")

    method = str(data.get("method") or "POST").upper()
    if method == "PUT":
        transfer_method: TransferMethod = DirectTransfer()
    elif method == "POST":
        fields = data.get("formData") or {}
        transfer_method = FormPostTransfer(
            form_fields=tuple((str(k), str(v)) for k, v in fields.items())
        )
    else:
        raise GrantDenied(f"Malformed grant: unsupported method {method!r}")

    return WriteGrant(
        destination_key=str(key),
        transfer_target=str(upload_url),
        transfer_method=transfer_method,
        public_url=str(data.get("publicUrl") or ""),
    )


class GrantNegotiator:
    """Requests write grants from the origin server.

    Provider-agnostic: whether storage is S3, R2 or MinIO only shows up
    in the returned grant's ``transfer_method``.
    """

    def __init__(self, origin: OriginApiClient) -> None:
        self._origin = origin

    async def request_grant(
        self,
        category: LogicalCategory,
        content_type: str,
        original_name: str,
        metadata: dict[str, str] | None = None,
    ) -> WriteGrant:
        """Ask the origin for a grant to write one object.

        Raises:
            Unauthenticated: No credential, or the origin answered 401/403.
            GrantDenied: Any other rejection, or an unusable grant payload.
            NetworkError: Transport failure talking to the origin.
            Timeout: The origin did not answer in time.
        """
        response = await self._origin.post_json(
            GRANT_PATH,
            {
                "fileType": category.value,
                "contentType": content_type,
                "originalName": original_name,
                "metadata": dict(metadata or {}),
            },
        )

        if response.status_code in (401, 403):
            raise Unauthenticated(
                self._origin.error_message(response, "Origin rejected the credential")
            )
        if not response.is_success:
            raise GrantDenied(
                self._origin.error_message(response, "Failed to generate presigned URL"),
                status_code=response.status_code,
            )

        grant = parse_grant(self._origin.unwrap(response))
        logger.debug(
            "Grant for %s (%s): key=%s method=%s",
            original_name,
            category.value,
            grant.destination_key,
            type(grant.transfer_method).__name__,
        )
        return grant
