"""Authenticated JSON transport to the origin application server.

Shared by :class:`~donorhub.upload.grants.GrantNegotiator` and
:class:`~donorhub.upload.confirmation.ConfirmationHandshake`.  The bearer
token is passed in explicitly; nothing here reads ambient credentials.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from donorhub.upload.exceptions import NetworkError, Timeout, Unauthenticated

logger = logging.getLogger(__name__)

GRANT_PATH = "/api/uploads/presigned-url"
CONFIRM_PATH = "/api/uploads/confirm"


class OriginApiClient:
    """Thin wrapper around ``httpx.AsyncClient`` for the two upload endpoints.

    Usage::

        async with OriginApiClient("https://api.example.org", token) as origin:
            response = await origin.post_json(GRANT_PATH, {...})

    Args:
        base_url: Origin server root URL.
        token: Opaque bearer credential; ``None`` or empty means the caller
            is not logged in and every request raises :class:`Unauthenticated`.
        timeout: Per-request timeout in seconds.
        http_client: Optional pre-built client (tests inject one backed by
            ``httpx.MockTransport``).  Injected clients are not closed here.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
        )

    @property
    def has_credential(self) -> bool:
        return bool(self._token)

    async def post_json(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        """POST *payload* as JSON with the bearer header.

        Raises:
            Unauthenticated: No token is configured.
            Timeout: The request exceeded the client timeout.
            NetworkError: Any other transport failure.
        """
        if not self._token:
            raise Unauthenticated("Authentication token not found. Please log in.")

        try:
            response = await self._client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.TimeoutException as exc:
            raise Timeout(f"Origin request to {path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Origin request to {path} failed: {exc}") from exc

        logger.debug("POST %s -> %d", path, response.status_code)
        return response

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------

    @staticmethod
    def unwrap(response: httpx.Response) -> dict[str, Any]:
        """Return the ``data`` object of a ``{success, data, message}`` envelope.

        A bare JSON object without an envelope is returned as-is; anything
        that is not a JSON object yields an empty dict.
        """
        try:
            body = response.json()
        except ValueError:
            return {}
        if not isinstance(body, dict):
            return {}
        data = body.get("data")
        if isinstance(data, dict):
            return data
        return body

    @staticmethod
    def error_message(response: httpx.Response, default: str) -> str:
        """Extract the server's ``message`` field, falling back to *default*."""
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return default

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> OriginApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()
