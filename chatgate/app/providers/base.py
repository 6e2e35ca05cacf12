from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

import httpx

Message = Dict[str, str]


class CompletionProvider(ABC):
    """Base class for completion services.

    Providers accept the shared httpx.AsyncClient for connection pooling,
    or create their own if not provided.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """Initialize the provider.

        Args:
            base_url: The API base URL
            api_key: The API key for authentication
            http_client: Optional shared HTTP client for connection pooling
            timeout: Request timeout in seconds
        """
        self._http_client = http_client
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.headers = self._build_headers()

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        return self._http_client

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        # Fallback: a private client, closed by the caller
        return httpx.AsyncClient(timeout=self.timeout)

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a per-call client that is closed after."""
        client = self._get_client()
        is_shared = self._http_client is not None
        try:
            yield client
        finally:
            if not is_shared:
                await client.aclose()

    def _get_endpoint_url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    @abstractmethod
    async def open_stream(self, messages: List[Message]) -> AsyncIterator[str]:
        """Start a streaming completion and return its token iterator.

        The upstream connection is established (and its status checked)
        before this returns, so connection failures surface to the caller
        rather than inside the stream.

        Raises:
            UpstreamFailureError: If the service cannot be reached or refuses
        """

    @abstractmethod
    async def complete(self, messages: List[Message], max_tokens: int) -> str:
        """Send a non-streaming completion request and return the text.

        Raises:
            UpstreamFailureError: If the request fails
        """

    @abstractmethod
    async def health_check(self, timeout: float = 2.0) -> bool:
        """Return True if the service answers a lightweight request."""
