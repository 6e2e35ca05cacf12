"""Shared HTTP client for outbound calls.

One httpx.AsyncClient is opened in the application lifespan and shared by
the completion provider, the summarizer and the transcription pass-through,
so every upstream call draws from the same connection pool.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from chatgate.app.core.config import settings

USER_AGENT = "chatgate/1.0"

_shared_http_client: httpx.AsyncClient | None = None


def build_timeout() -> httpx.Timeout:
    # Token streams can pause between chunks; only the read timeout bounds that
    return httpx.Timeout(
        connect=settings.httpx_connect_timeout,
        read=settings.httpx_read_timeout,
        write=settings.httpx_write_timeout,
        pool=settings.httpx_pool_timeout,
    )


def build_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )


def get_http_client() -> httpx.AsyncClient:
    """Get the shared client.

    Raises:
        RuntimeError: Outside the application lifespan
    """
    if _shared_http_client is None:
        raise RuntimeError("HTTP client not initialized. Ensure lifespan context is active.")
    return _shared_http_client


@asynccontextmanager
async def init_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Open the shared client for the lifespan and close it on exit."""
    global _shared_http_client

    _shared_http_client = httpx.AsyncClient(
        timeout=build_timeout(),
        limits=build_limits(),
        headers={"User-Agent": USER_AGENT},
    )
    try:
        yield _shared_http_client
    finally:
        client, _shared_http_client = _shared_http_client, None
        if client is not None:
            await client.aclose()
