"""Keyed storage for rate window state.

A store partitions state by client identity and grants single-writer
ownership per identity through ``exclusive()``. The admission controller
only assumes that discipline; each backend provides it its own way.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from redis.exceptions import LockError

from chatgate.app.core.config import settings
from chatgate.app.core.locks import KeyedLock
from chatgate.app.core.logging import get_logger
from chatgate.app.services.admission.models import DAY, RateWindowState

logger = get_logger(__name__)


class RateStoreError(Exception):
    """Raised when rate state cannot be locked, read or written."""


class RateWindowStore(ABC):
    """Abstract base class for rate state backends."""

    @abstractmethod
    def exclusive(self, identity: str) -> Any:
        """Async context manager holding single-writer ownership of identity."""

    @abstractmethod
    async def load(self, identity: str) -> RateWindowState:
        """Return the stored state (a copy; empty when unknown)."""

    @abstractmethod
    async def save(self, identity: str, state: RateWindowState) -> None:
        """Replace the stored state for identity."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryRateWindowStore(RateWindowStore):
    """Single-instance backend.

    Each identity owns its own lock and state record, so checks for one
    identity queue behind each other while other identities proceed.
    """

    def __init__(self) -> None:
        self._states: Dict[str, RateWindowState] = {}
        self._locks = KeyedLock()

    def exclusive(self, identity: str) -> Any:
        return self._locks.hold(identity)

    async def load(self, identity: str) -> RateWindowState:
        state = self._states.get(identity)
        return state.copy() if state is not None else RateWindowState()

    async def save(self, identity: str, state: RateWindowState) -> None:
        self._states[identity] = state.copy()


class RedisRateWindowStore(RateWindowStore):
    """Redis backend shared by every gateway instance.

    Layout per identity: a hash with fields ``minute``, ``hour`` and ``day``,
    each a JSON list of millisecond timestamps. Ownership is a Redis lock on
    ``<identity>:lock``. The hash expires one day after its last write; by
    then every entry in it is outside all windows.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        lock_timeout: Optional[float] = None,
        lock_wait: Optional[float] = None,
    ):
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        self.lock_timeout = lock_timeout or settings.redis_lock_timeout
        self.lock_wait = lock_wait or settings.redis_lock_wait
        self.ttl_seconds = DAY.duration_ms // 1000

    async def _get_redis(self) -> Any:
        """Get or create Redis connection."""
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    @asynccontextmanager
    async def exclusive(self, identity: str) -> AsyncIterator[None]:
        client = await self._get_redis()
        lock = client.lock(
            f"{identity}:lock",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_wait,
        )
        if not await lock.acquire():
            raise RateStoreError(f"Timed out waiting for rate state lock on {identity}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lock expired while held; the next owner already took over.
                logger.warning(
                    "Rate state lock expired before release",
                    extra={"client_id": identity, "category": "rate_limit"},
                )

    async def load(self, identity: str) -> RateWindowState:
        client = await self._get_redis()
        raw = await client.hgetall(identity)
        return RateWindowState.from_mapping(raw or {})

    async def save(self, identity: str, state: RateWindowState) -> None:
        client = await self._get_redis()
        pipe = client.pipeline(transaction=True)
        pipe.hset(identity, mapping=state.to_mapping())
        pipe.expire(identity, self.ttl_seconds)
        await pipe.execute()

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_rate_store(use_redis: Optional[bool] = None) -> RateWindowStore:
    """Select the backend from settings (or force one with use_redis)."""
    should_use_redis = use_redis if use_redis is not None else settings.redis_enabled
    if should_use_redis:
        logger.info("Using Redis rate state backend")
        return RedisRateWindowStore()
    logger.debug("Using in-memory rate state backend")
    return InMemoryRateWindowStore()
