"""OpenAI-compatible completion provider.

Works with the OpenAI API and any endpoint exposing the same
``/chat/completions`` contract (Azure OpenAI, local servers).
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chatgate.app.core.logging import get_logger
from chatgate.app.exceptions import UpstreamFailureError
from chatgate.app.providers.base import CompletionProvider, Message

logger = get_logger(__name__)


def parse_stream_line(line: str) -> Optional[str]:
    """Extract the token from one SSE line of a streaming completion.

    Returns None for blank lines, comments, ``[DONE]`` and chunks without
    content. Malformed JSON is skipped.
    """
    if not line.startswith("data:"):
        return None
    data = line[5:].strip()
    if not data or data == "[DONE]":
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream chunk")
        return None

    choices = chunk.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return content if isinstance(content, str) else None


class OpenAIProvider(CompletionProvider):
    """OpenAI API provider with support for shared HTTP client connection pooling."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        super().__init__(base_url, api_key, http_client, timeout)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def _payload(self, messages: List[Message], max_tokens: int, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": self.temperature,
            "stream": stream,
        }

    async def open_stream(self, messages: List[Message]) -> AsyncIterator[str]:
        url = self._get_endpoint_url("/chat/completions")
        payload = self._payload(messages, self.max_tokens, stream=True)

        # Streaming needs the client to outlive this call
        client = self._get_client()
        is_shared = self._http_client is not None

        request = client.build_request("POST", url, headers=self.headers, json=payload)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            if not is_shared:
                await client.aclose()
            logger.error(f"Completion service unreachable: {type(e).__name__}")
            raise UpstreamFailureError("completion") from e

        if response.status_code >= 400:
            await response.aclose()
            if not is_shared:
                await client.aclose()
            logger.error(f"Completion service returned HTTP {response.status_code}")
            raise UpstreamFailureError(
                "completion",
                status_code=503 if response.status_code == 503 else None,
            )

        return self._iter_tokens(response, None if is_shared else client)

    async def _iter_tokens(
        self,
        response: httpx.Response,
        owned_client: Optional[httpx.AsyncClient],
    ) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                if line.strip() == "data: [DONE]":
                    break
                token = parse_stream_line(line)
                if token is not None:
                    yield token
        finally:
            await response.aclose()
            if owned_client is not None:
                await owned_client.aclose()

    async def complete(self, messages: List[Message], max_tokens: int) -> str:
        url = self._get_endpoint_url("/chat/completions")
        payload = self._payload(messages, max_tokens, stream=False)

        async with self._client_context() as client:
            try:
                resp = await client.post(url, headers=self.headers, json=payload)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise UpstreamFailureError("completion") from e
            data = resp.json()

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamFailureError("completion", "Malformed completion response") from e

    async def health_check(self, timeout: float = 2.0) -> bool:
        """Calls the /models endpoint with a short timeout."""
        try:
            url = self._get_endpoint_url("/models")
            async with self._client_context() as client:
                resp = await client.get(url, headers=self.headers, timeout=timeout)
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
