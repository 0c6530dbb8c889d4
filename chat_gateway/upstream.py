"""
Async client for the upstream OpenAI-compatible completion service (LiteLLM proxy).
"""
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


class UpstreamError(Exception):
    """Non-2xx reply or transport failure. status_code/body are forwarded to the caller as-is."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"upstream returned {status_code}")
        self.status_code = status_code
        self.body = body


class UpstreamClient:
    """Thin async HTTP client for the upstream chat completions endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        timeout = httpx.Timeout(connect=10.0, read=timeout_seconds, write=120.0, pool=10.0)
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def chat_completions(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(CHAT_COMPLETIONS_PATH, json=payload, headers=self._headers())
        except httpx.TransportError as e:
            logger.warning("Upstream transport error: %s", e)
            raise UpstreamError(502, f"Could not reach upstream at {self.base_url}: {e}") from e

        if not response.is_success:
            logger.warning("Upstream returned %s for chat completion", response.status_code)
            raise UpstreamError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(502, f"Upstream returned invalid JSON: {e}") from e
