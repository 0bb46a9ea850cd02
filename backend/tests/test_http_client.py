"""Tests for the outbound HTTP client."""

import httpx
import pytest

from integrations.http_client import HttpClient


def _client(handler) -> HttpClient:
    return HttpClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestHttpClient:
    @pytest.mark.asyncio
    async def test_decodes_json(self):
        client = _client(lambda request: httpx.Response(200, json={"ok": True}))
        response = await client.call("https://api.example.com/ping")
        assert response.ok
        assert response.status_text == "OK"
        assert response.data == {"ok": True}

    @pytest.mark.asyncio
    async def test_falls_back_to_text(self):
        client = _client(lambda request: httpx.Response(404, text="nope"))
        response = await client.call("https://api.example.com/missing")
        assert not response.ok
        assert response.data == "nope"

    @pytest.mark.asyncio
    async def test_get_never_sends_body(self):
        captured = {}

        def handler(request):
            captured["content"] = request.content
            return httpx.Response(200)

        await _client(handler).call("https://api.example.com", method="get", body={"x": 1})
        assert captured["content"] == b""

    @pytest.mark.asyncio
    async def test_string_body_sent_as_content(self):
        captured = {}

        def handler(request):
            captured["content"] = request.content
            captured["method"] = request.method
            return httpx.Response(200)

        await _client(handler).call("https://api.example.com", method="put", body="raw")
        assert captured == {"content": b"raw", "method": "PUT"}

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow")

        with pytest.raises(httpx.HTTPError):
            await _client(handler).call("https://api.example.com")
