"""Global completion provider instance."""

from typing import Optional

import httpx

from chatgate.app.core.config import settings
from chatgate.app.core.http_client import get_http_client
from chatgate.app.core.logging import get_logger
from chatgate.app.providers.base import CompletionProvider
from chatgate.app.providers.mock import MockProvider
from chatgate.app.providers.openai import OpenAIProvider

logger = get_logger(__name__)

_provider: Optional[CompletionProvider] = None


def create_provider(http_client: Optional[httpx.AsyncClient] = None) -> CompletionProvider:
    """Build a provider from settings."""
    if settings.mock_provider:
        logger.warning("Using mock completion provider")
        return MockProvider(delay=0.05)

    if not settings.completion_api_key:
        logger.warning("COMPLETION_API_KEY is not set; upstream calls will be rejected")

    return OpenAIProvider(
        base_url=settings.completion_base_url,
        api_key=settings.completion_api_key,
        model=settings.completion_model,
        max_tokens=settings.completion_max_tokens,
        temperature=settings.completion_temperature,
        http_client=http_client,
        timeout=settings.httpx_read_timeout,
    )


def get_completion_provider() -> CompletionProvider:
    """Get the global provider, bound to the shared HTTP client."""
    global _provider
    if _provider is None:
        _provider = create_provider(
            None if settings.mock_provider else get_http_client()
        )
    return _provider


def reset_completion_provider() -> None:
    """Reset the global instance (for testing)."""
    global _provider
    _provider = None
