"""Tests for the pre-signed URL storage gateway."""

from __future__ import annotations

import httpx

from clinfiles.upload.payload import InMemoryPayload, LocalFilePayload
from clinfiles.upload.storage import HttpStorageGateway, TransferResult

UPLOAD_URL = "https://bucket.test/clinical/42/abc.png?X-Amz-Signature=sig"


def _gateway(handler) -> HttpStorageGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpStorageGateway(client=client)


class TestPutObject:
    async def test_success_sends_whole_body(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        payload = InMemoryPayload("abc.png", b"\x89PNG-bytes")
        result = await _gateway(handler).put_object(UPLOAD_URL, payload, "image/png")

        assert result == TransferResult(ok=True, status_code=200)
        request = seen[0]
        assert request.method == "PUT"
        assert str(request.url) == UPLOAD_URL
        assert request.content == b"\x89PNG-bytes"
        assert request.headers["Content-Type"] == "image/png"

    async def test_no_api_credentials_sent(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        await _gateway(handler).put_object(
            UPLOAD_URL, InMemoryPayload("a.pdf", b"%PDF"), "application/pdf"
        )

        assert "Authorization" not in seen[0].headers

    async def test_forbidden_is_failure(self):
        result = await _gateway(lambda r: httpx.Response(403)).put_object(
            UPLOAD_URL, InMemoryPayload("a.png", b"x"), "image/png"
        )

        assert not result.ok
        assert result.status_code == 403
        assert result.reason == "storage returned HTTP 403"

    async def test_transport_error_is_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await _gateway(handler).put_object(
            UPLOAD_URL, InMemoryPayload("a.png", b"x"), "image/png"
        )

        assert not result.ok
        assert result.status_code is None
        assert result.reason.startswith("transport error: ReadTimeout")

    async def test_unreadable_file_is_failure(self, tmp_path):
        path = tmp_path / "gone.png"
        path.write_bytes(b"x")
        payload = LocalFilePayload.from_path(path)
        path.unlink()
        calls: list[httpx.Request] = []

        result = await _gateway(lambda r: calls.append(r) or httpx.Response(200)).put_object(
            UPLOAD_URL, payload, "image/png"
        )

        assert not result.ok
        assert "could not read file" in result.reason
        assert calls == []


class TestLifecycle:
    async def test_injected_client_left_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with HttpStorageGateway(client=client):
            pass
        assert not client.is_closed
        await client.aclose()

    async def test_owned_client_closed(self):
        gateway = HttpStorageGateway(timeout=5)
        async with gateway:
            pass
        assert gateway._client.is_closed
