"""Admission control package.

Per-client sliding-window rate limiting with pluggable keyed state stores.
"""

from chatgate.app.services.admission.controller import (
    AdmissionController,
    get_admission_controller,
    reset_admission_controller,
)
from chatgate.app.services.admission.models import (
    DAY,
    HOUR,
    MINUTE,
    WINDOWS,
    AdmissionDecision,
    RateLimitConfig,
    RateStats,
    RateWindow,
    RateWindowState,
)
from chatgate.app.services.admission.store import (
    InMemoryRateWindowStore,
    RateStoreError,
    RateWindowStore,
    RedisRateWindowStore,
    create_rate_store,
)

__all__ = [
    # Models
    "RateWindow",
    "MINUTE",
    "HOUR",
    "DAY",
    "WINDOWS",
    "RateLimitConfig",
    "RateWindowState",
    "AdmissionDecision",
    "RateStats",
    # Stores
    "RateWindowStore",
    "InMemoryRateWindowStore",
    "RedisRateWindowStore",
    "RateStoreError",
    "create_rate_store",
    # Controller
    "AdmissionController",
    "get_admission_controller",
    "reset_admission_controller",
]
