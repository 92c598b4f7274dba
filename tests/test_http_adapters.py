"""Tests for the HTTP order gateway, upload sink and API client."""
import json

import httpx
import pytest

from postpay.models import DecodedFile, OrderStatus
from postpay.services.api_client import APIError, HTTPAPIClient
from postpay.services.order_gateway import HTTPOrderGateway
from postpay.services.upload_sink import HTTPUploadSink, blake3_bytes


def _client(handler, **kwargs):
    return HTTPAPIClient("http://api.test", transport=httpx.MockTransport(handler), retry_delay=0, **kwargs)


class TestHTTPAPIClient:
    @pytest.mark.asyncio
    async def test_requires_context(self):
        client = HTTPAPIClient("http://api.test")
        with pytest.raises(RuntimeError, match="not initialized"):
            await client.get("/orders")

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        statuses = iter([503, 502, 200])

        def handler(request):
            return httpx.Response(next(statuses), json={"ok": True})

        async with _client(handler) as client:
            response = await client.get("/health")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_client_error_raises(self):
        def handler(request):
            return httpx.Response(422, json={"detail": "bad status"})

        async with _client(handler) as client:
            with pytest.raises(APIError) as exc_info:
                await client.patch("/orders/1", json={"status": "nope"})

        assert exc_info.value.status_code == 422
        assert exc_info.value.detail == {"detail": "bad status"}

    @pytest.mark.asyncio
    async def test_transport_errors_retried_then_raised(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler, max_retries=2) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get("/orders")

        assert len(calls) == 2


class TestHTTPOrderGateway:
    @pytest.mark.asyncio
    async def test_get_order_from_list_payload(self):
        def handler(request):
            assert request.url.params["session_id"] == "cs_1"
            return httpx.Response(200, json=[{
                "id": 42,
                "sessionId": "cs_1",
                "customerEmail": "ana@example.com",
                "status": "pending",
            }])

        async with _client(handler) as client:
            order = await HTTPOrderGateway(client).get_order("cs_1")

        assert order.id == "42"
        assert order.session_id == "cs_1"
        assert order.customer_email == "ana@example.com"
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_get_order_from_wrapped_payload(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"id": "o1", "session_id": "cs_1", "status": "processing"}})

        async with _client(handler) as client:
            order = await HTTPOrderGateway(client).get_order("cs_1")

        assert order.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [httpx.Response(404), httpx.Response(200, json=[])])
    async def test_missing_order_is_none(self, response):
        async with _client(lambda request: response) as client:
            assert await HTTPOrderGateway(client).get_order("cs_1") is None

    @pytest.mark.asyncio
    async def test_set_order_status(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={})

        async with _client(handler) as client:
            await HTTPOrderGateway(client).set_order_status("o1", OrderStatus.PROCESSING)

        assert seen == [("PATCH", "/orders/o1", {"status": "processing"})]


class TestHTTPUploadSink:
    @pytest.fixture
    def files(self):
        return [
            DecodedFile(id="f1", data=b"first", content_type="image/png"),
            DecodedFile(id="f2", data=b"second!", content_type="text/plain"),
        ]

    @pytest.mark.asyncio
    async def test_uploads_each_file_then_commits(self, files):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        progress = []
        async with _client(handler) as client:
            result = await HTTPUploadSink(client).upload_files("o1", "ana@example.com", files, progress.append)

        assert result.success is True
        assert [(r.method, r.url.path) for r in seen] == [
            ("PUT", "/orders/o1/files/0"),
            ("PUT", "/orders/o1/files/1"),
            ("POST", "/orders/o1/files/commit"),
        ]
        assert seen[0].content == b"first"
        assert seen[0].headers["Idempotency-Key"] == f"o1:0:{blake3_bytes(b'first')}"
        assert seen[1].headers["Content-Type"] == "text/plain"
        commit = json.loads(seen[2].content)
        assert commit["customer_email"] == "ana@example.com"
        assert [f["size"] for f in commit["files"]] == [5, 7]
        assert [p.bytes_done for p in progress] == [5, 12]

    @pytest.mark.asyncio
    async def test_rejection_returns_failure(self, files):
        def handler(request):
            return httpx.Response(413, text="too large")

        async with _client(handler) as client:
            result = await HTTPUploadSink(client).upload_files("o1", "ana@example.com", files)

        assert result.success is False
        assert "413" in result.error
        assert result.error_kind == "UploadFailed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [(200, True), (404, False)])
    async def test_has_order_reads_commit_record(self, status, expected):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(status, json={"files": []})

        async with _client(handler) as client:
            assert await HTTPUploadSink(client).has_order("o1") is expected

        assert seen == [("GET", "/orders/o1/files/commit")]
