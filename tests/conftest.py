"""Shared pytest fixtures for donorhub upload tests.

Provides a fake backend that plays both the origin server and the
storage provider behind ``httpx.MockTransport``, pre-wired pipeline
components, and small file-descriptor factories.
"""

from __future__ import annotations

import io
import json
from collections.abc import Callable

import httpx
import pytest

from donorhub.models import FileDescriptor
from donorhub.upload.confirmation import ConfirmationHandshake
from donorhub.upload.grants import GrantNegotiator
from donorhub.upload.origin import CONFIRM_PATH, GRANT_PATH, OriginApiClient
from donorhub.upload.transfer import StorageTransferClient

ORIGIN_URL = "https://api.test"
STORAGE_URL = "https://storage.test/bucket"
TOKEN = "token-123"

MIB = 1024 * 1024


class FakeBackend:
    """In-memory origin + storage.

    Attributes set by tests steer the next responses:

    * ``method`` -- ``"PUT"`` or ``"POST"`` grants
    * ``form_fields`` -- policy fields for POST grants
    * ``grant_status`` -- status code for grant requests
    * ``confirm_failures`` -- number of upcoming confirmations to answer 500
    * ``reject_names`` -- original names storage answers 403 for
    * ``storage_errors`` -- queue of exceptions raised by storage, one per call
    """

    def __init__(self) -> None:
        self.method = "PUT"
        self.form_fields: dict[str, str] = {
            "key": "",
            "policy": "cG9saWN5",
            "x-amz-signature": "sig",
        }
        self.grant_status = 200
        self.confirm_failures = 0
        self.reject_names: set[str] = set()
        self.storage_errors: list[Exception] = []

        self.grant_requests: list[httpx.Request] = []
        self.storage_requests: list[httpx.Request] = []
        self.confirm_requests: list[httpx.Request] = []
        self.keys_by_name: dict[str, str] = {}
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.test" and request.url.path == GRANT_PATH:
            return self._grant(request)
        if request.url.host == "api.test" and request.url.path == CONFIRM_PATH:
            return self._confirm(request)
        if request.url.host == "storage.test":
            return self._store(request)
        return httpx.Response(404, json={"success": False, "message": "Not found"})

    def _grant(self, request: httpx.Request) -> httpx.Response:
        self.grant_requests.append(request)
        if self.grant_status != 200:
            return httpx.Response(
                self.grant_status,
                json={"success": False, "message": "Failed to generate presigned URL"},
            )
        body = json.loads(request.content)
        self._counter += 1
        key = f"{body['fileType']}/{self._counter}-{body['originalName']}"
        self.keys_by_name[body["originalName"]] = key
        data = {
            "key": key,
            "uploadUrl": f"{STORAGE_URL}/{key}" if self.method == "PUT" else STORAGE_URL,
            "method": self.method,
            "publicUrl": f"https://cdn.test/{key}",
        }
        if self.method == "POST":
            data["formData"] = {**self.form_fields, "key": key}
        return httpx.Response(200, json={"success": True, "data": data})

    def _store(self, request: httpx.Request) -> httpx.Response:
        self.storage_requests.append(request)
        if self.storage_errors:
            raise self.storage_errors.pop(0)
        if any(name in str(request.url) or name.encode() in request.content
               for name in self.reject_names):
            return httpx.Response(403, text="<Error>AccessDenied</Error>")
        return httpx.Response(200 if request.method == "PUT" else 204)

    def _confirm(self, request: httpx.Request) -> httpx.Response:
        self.confirm_requests.append(request)
        if self.confirm_failures > 0:
            self.confirm_failures -= 1
            return httpx.Response(
                500, json={"success": False, "message": "Failed to confirm upload"}
            )
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {
                    "key": body["key"],
                    "publicUrl": f"https://cdn.test/{body['key']}",
                    "fileType": body["fileType"],
                },
            },
        )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def origin(backend: FakeBackend):
    """OriginApiClient wired to the fake backend with a valid token."""
    http = httpx.AsyncClient(transport=backend.transport, base_url=ORIGIN_URL)
    client = OriginApiClient(ORIGIN_URL, TOKEN, http_client=http)
    yield client
    await http.aclose()


@pytest.fixture
async def transfer_client(backend: FakeBackend):
    http = httpx.AsyncClient(transport=backend.transport)
    client = StorageTransferClient(timeout=5.0, http_client=http)
    yield client
    await http.aclose()


@pytest.fixture
def negotiator(origin: OriginApiClient) -> GrantNegotiator:
    return GrantNegotiator(origin)


@pytest.fixture
def handshake(origin: OriginApiClient) -> ConfirmationHandshake:
    return ConfirmationHandshake(origin)


@pytest.fixture
def make_file() -> Callable[..., FileDescriptor]:
    """Factory for in-memory descriptors with real bytes."""

    def _make(
        name: str = "photo.png", size: int = 1024, content_type: str = "image/png"
    ) -> FileDescriptor:
        return FileDescriptor.from_bytes(name, b"\x89PNG" + b"\0" * max(0, size - 4), content_type)

    return _make


@pytest.fixture
def sized_file() -> Callable[..., FileDescriptor]:
    """Factory for descriptors claiming a size without allocating it (policy checks)."""

    def _make(name: str, byte_size: int, content_type: str = "image/png") -> FileDescriptor:
        return FileDescriptor(
            name=name,
            byte_size=byte_size,
            content_type=content_type,
            binary_handle=io.BytesIO(b""),
        )

    return _make
