"""
Tests for the upstream completion client, using httpx.MockTransport instead of a live proxy.
"""
import asyncio
import json

import httpx
import pytest

from chat_gateway.upstream import UpstreamClient, UpstreamError


def _run(client: UpstreamClient, payload: dict):
    async def go():
        try:
            return await client.chat_completions(payload)
        finally:
            await client.close()

    return asyncio.run(go())


def test_posts_payload_to_chat_completions():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    client = UpstreamClient("http://litellm:4000/", api_key="sk-test", transport=httpx.MockTransport(handler))
    data = _run(client, {"messages": [{"role": "user", "content": "hi"}]})

    assert data["choices"][0]["message"]["content"] == "ok"
    assert seen["url"] == "http://litellm:4000/v1/chat/completions"
    assert seen["body"] == {"messages": [{"role": "user", "content": "hi"}]}
    assert seen["auth"] == "Bearer sk-test"


def test_no_auth_header_without_api_key():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "authorization" not in request.headers
        return httpx.Response(200, json={})

    _run(UpstreamClient("http://litellm:4000", transport=httpx.MockTransport(handler)), {"messages": []})


def test_non_2xx_is_raised_with_status_and_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text='{"error": {"message": "model not found"}}')

    with pytest.raises(UpstreamError) as exc_info:
        _run(UpstreamClient("http://litellm:4000", transport=httpx.MockTransport(handler)), {"messages": []})
    assert exc_info.value.status_code == 400
    assert "model not found" in exc_info.value.body


def test_transport_failure_is_bad_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError) as exc_info:
        _run(UpstreamClient("http://litellm:4000", transport=httpx.MockTransport(handler)), {"messages": []})
    assert exc_info.value.status_code == 502
    assert "connection refused" in exc_info.value.body


def test_invalid_json_is_bad_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy page</html>")

    with pytest.raises(UpstreamError) as exc_info:
        _run(UpstreamClient("http://litellm:4000", transport=httpx.MockTransport(handler)), {"messages": []})
    assert exc_info.value.status_code == 502
