"""Per-client multi-window admission control."""

import math
import time
from typing import Callable, Optional

from chatgate.app.core.config import settings
from chatgate.app.core.logging import get_log_context, get_logger
from chatgate.app.services.admission.models import (
    WINDOWS,
    AdmissionDecision,
    RateLimitConfig,
    RateStats,
)
from chatgate.app.services.admission.store import RateWindowStore, create_rate_store

logger = get_logger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class AdmissionController:
    """Sliding-window limiter over minute, hour and day windows.

    Rejected attempts are not recorded, so a rejected check leaves the
    stored state exactly as it was. Storage errors are not handled here:
    they propagate and the caller decides (the HTTP layer fails closed).
    """

    def __init__(
        self,
        store: RateWindowStore,
        limits: Optional[RateLimitConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.limits = limits or RateLimitConfig()
        self._clock = clock or _wall_clock_ms

    async def check(self, identity: str) -> AdmissionDecision:
        """Admit or reject one request for identity.

        Args:
            identity: Client identity key

        Returns:
            AdmissionDecision; on rejection ``retry_after`` is the number of
            seconds until the exhausted window frees a slot.
        """
        async with self.store.exclusive(identity):
            now = self._clock()
            state = (await self.store.load(identity)).pruned(now)

            for window in WINDOWS:
                timestamps = state.timestamps(window)
                limit = self.limits.limit_for(window)
                if len(timestamps) >= limit:
                    retry_after = math.ceil(
                        (timestamps[0] + window.duration_ms - now) / 1000
                    )
                    logger.warning(
                        f"Rate limit exceeded: {len(timestamps)} requests in last {window.name}",
                        extra=get_log_context(
                            client_id=identity, category="rate_limit", window=window.name
                        ),
                    )
                    return AdmissionDecision(
                        allowed=False,
                        counts=state.counts(),
                        retry_after=max(1, retry_after),
                        window=window.name,
                    )

            state.record(now)
            await self.store.save(identity, state)
            return AdmissionDecision(allowed=True, counts=state.counts())

    async def stats(self, identity: str) -> RateStats:
        """Current per-window counts for identity. Never writes."""
        state = (await self.store.load(identity)).pruned(self._clock())
        return RateStats(counts=state.counts(), limits=self.limits.as_dict())


_admission_controller: AdmissionController | None = None


def get_admission_controller() -> AdmissionController:
    """Get or create the global admission controller."""
    global _admission_controller
    if _admission_controller is None:
        _admission_controller = AdmissionController(
            store=create_rate_store(),
            limits=RateLimitConfig(
                requests_per_minute=settings.rate_limit_per_minute,
                requests_per_hour=settings.rate_limit_per_hour,
                requests_per_day=settings.rate_limit_per_day,
            ),
        )
    return _admission_controller


def reset_admission_controller() -> None:
    """Reset the global instance (for testing)."""
    global _admission_controller
    _admission_controller = None
