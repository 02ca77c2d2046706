"""Direct-to-storage byte transfer against a write grant.

Two wire shapes, chosen by the grant's ``transfer_method``:

* **DIRECT** -- ``PUT`` with the raw body, ``Content-Type`` and
  ``Content-Length`` headers.
* **FORM** -- multipart ``POST``; the grant's policy fields come first in
  their original order and the file is appended last, because providers
  sign the policy over the preceding fields.

The request body is streamed through :class:`ProgressByteStream` so the
caller sees ``(bytes_sent, total_bytes)`` as the transport consumes it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator
from typing import BinaryIO

import httpx

from donorhub.models import FileDescriptor
from donorhub.upload.exceptions import NetworkError, Timeout, TransferRejected
from donorhub.upload.grants import DirectTransfer, FormPostTransfer, WriteGrant

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

CHUNK_SIZE = 64 * 1024
FILE_FIELD_NAME = "file"


def _read_chunks(handle: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            return
        yield chunk


class ProgressByteStream(httpx.AsyncByteStream):
    """Async request body that reports cumulative bytes handed to the transport.

    Wraps either a sync or an async iterable of ``bytes`` (httpx's own
    multipart stream is both).
    """

    def __init__(
        self,
        source: Iterable[bytes] | AsyncIterable[bytes],
        total: int,
        on_progress: ProgressCallback | None,
    ) -> None:
        self._source = source
        self._total = total
        self._on_progress = on_progress

    async def _chunks(self) -> AsyncIterator[bytes]:
        if isinstance(self._source, AsyncIterable):
            async for chunk in self._source:
                yield chunk
        else:
            for chunk in self._source:
                yield chunk

    async def __aiter__(self) -> AsyncIterator[bytes]:
        sent = 0
        async for chunk in self._chunks():
            yield chunk
            sent += len(chunk)
            if self._on_progress is not None:
                self._on_progress(sent, self._total)


class StorageTransferClient:
    """Sends one object's bytes to storage as instructed by a grant.

    No credentials are attached: the grant itself is the authorisation,
    and the origin's bearer token must never reach the storage provider.

    Args:
        timeout: Wall-clock ceiling for the whole transfer, in seconds.
        http_client: Optional pre-built client.  Injected clients are not
            closed by :meth:`aclose`.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._owns_client = http_client is None
        # The wall-clock ceiling is enforced around send(); httpx's own
        # per-phase timeouts are left at the same bound as a backstop.
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def transfer(
        self,
        grant: WriteGrant,
        descriptor: FileDescriptor,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Upload *descriptor*'s bytes to ``grant.transfer_target``.

        Raises:
            TransferRejected: Storage answered with a non-2xx status.
            Timeout: The transfer exceeded the wall-clock ceiling.
            NetworkError: Connection-level failure.
        """
        descriptor.binary_handle.seek(0)
        request = self._build_request(grant, descriptor, on_progress)

        logger.debug(
            "%s %s (%d bytes, %s)",
            request.method,
            grant.transfer_target,
            descriptor.byte_size,
            descriptor.name,
        )

        try:
            response = await asyncio.wait_for(
                self._client.send(request), timeout=self._timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise Timeout(
                f"Upload of {descriptor.name} timed out after {self._timeout:g}s"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Upload of {descriptor.name} failed: {exc}") from exc

        if not response.is_success:
            logger.debug("Storage rejected %s: %s", descriptor.name, response.text[:200])
            raise TransferRejected(response.status_code, grant.transfer_target)

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def _build_request(
        self,
        grant: WriteGrant,
        descriptor: FileDescriptor,
        on_progress: ProgressCallback | None,
    ) -> httpx.Request:
        method = grant.transfer_method
        if isinstance(method, DirectTransfer):
            return self._build_direct(grant, descriptor, on_progress)
        if isinstance(method, FormPostTransfer):
            return self._build_form(grant, method, descriptor, on_progress)
        raise TypeError(f"Unsupported transfer method: {method!r}")

    def _build_direct(
        self,
        grant: WriteGrant,
        descriptor: FileDescriptor,
        on_progress: ProgressCallback | None,
    ) -> httpx.Request:
        body = ProgressByteStream(
            _read_chunks(descriptor.binary_handle),
            descriptor.byte_size,
            on_progress,
        )
        # An explicit Content-Length keeps httpx from switching to chunked
        # encoding, which presigned PUT URLs reject.
        return self._client.build_request(
            "PUT",
            grant.transfer_target,
            content=body,
            headers={
                "Content-Type": descriptor.content_type,
                "Content-Length": str(descriptor.byte_size),
            },
        )

    def _build_form(
        self,
        grant: WriteGrant,
        method: FormPostTransfer,
        descriptor: FileDescriptor,
        on_progress: ProgressCallback | None,
    ) -> httpx.Request:
        request = self._client.build_request(
            "POST",
            grant.transfer_target,
            data=dict(method.form_fields),
            files={
                FILE_FIELD_NAME: (
                    descriptor.name,
                    descriptor.binary_handle,
                    descriptor.content_type,
                )
            },
        )
        content_length = request.headers.get("Content-Length")
        total = int(content_length) if content_length else descriptor.byte_size
        request.stream = ProgressByteStream(request.stream, total, on_progress)
        return request

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> StorageTransferClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()
