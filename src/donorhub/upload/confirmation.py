"""Post-transfer confirmation handshake with the origin server."""

from __future__ import annotations

import logging
from typing import Any

from donorhub.models import LogicalCategory, UploadResult
from donorhub.upload.exceptions import (
    ConfirmationFailed,
    NetworkError,
    Timeout,
)
from donorhub.upload.origin import CONFIRM_PATH, OriginApiClient

logger = logging.getLogger(__name__)


class ConfirmationHandshake:
    """Tells the origin an object now exists and gets its canonical URL back.

    Any failure after the credential check surfaces as
    :class:`ConfirmationFailed` so the caller knows the bytes are already
    stored and only this step needs repeating.
    """

    def __init__(self, origin: OriginApiClient) -> None:
        self._origin = origin

    async def confirm(
        self,
        destination_key: str,
        category: LogicalCategory,
        metadata: dict[str, Any] | None = None,
    ) -> UploadResult:
        """Record *destination_key* with the origin.

        Returns:
            The origin's public URL, key and any extra fields it returned.

        Raises:
            Unauthenticated: No credential is configured.
            ConfirmationFailed: The origin could not be reached or refused.
        """
        try:
            response = await self._origin.post_json(
                CONFIRM_PATH,
                {
                    "key": destination_key,
                    "fileType": category.value,
                    "metadata": dict(metadata or {}),
                },
            )
        except (NetworkError, Timeout) as exc:
            raise ConfirmationFailed(destination_key, str(exc)) from exc

        if response.status_code in (401, 403):
            raise ConfirmationFailed(
                destination_key,
                self._origin.error_message(response, "credential rejected"),
            )
        if not response.is_success:
            raise ConfirmationFailed(
                destination_key,
                self._origin.error_message(
                    response, f"origin answered {response.status_code}"
                ),
            )

        data = self._origin.unwrap(response)
        public_url = data.get("publicUrl")
        if not public_url:
            raise ConfirmationFailed(destination_key, "response carried no publicUrl")

        server_metadata = {
            k: v for k, v in data.items() if k not in ("publicUrl", "key")
        }
        logger.debug("Confirmed %s -> %s", destination_key, public_url)
        return UploadResult(
            public_url=str(public_url),
            destination_key=str(data.get("key") or destination_key),
            server_metadata=server_metadata,
        )

