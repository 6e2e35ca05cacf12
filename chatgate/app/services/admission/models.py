"""Admission control data models.

Rate state is kept as raw millisecond timestamps per window rather than
pre-aggregated counters, which gives exact sliding-window semantics.
"""

import bisect
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class RateWindow:
    """A trailing time window."""
    name: str
    duration_ms: int


MINUTE = RateWindow("minute", 60 * 1000)
HOUR = RateWindow("hour", 60 * 60 * 1000)
DAY = RateWindow("day", 24 * 60 * 60 * 1000)

# Evaluation order matters: the first exhausted window is reported.
WINDOWS = (MINUTE, HOUR, DAY)


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-identity request limits for each window."""
    requests_per_minute: int = 10
    requests_per_hour: int = 100
    requests_per_day: int = 500

    def limit_for(self, window: RateWindow) -> int:
        return {
            MINUTE.name: self.requests_per_minute,
            HOUR.name: self.requests_per_hour,
            DAY.name: self.requests_per_day,
        }[window.name]

    def as_dict(self) -> Dict[str, int]:
        return {w.name: self.limit_for(w) for w in WINDOWS}


@dataclass
class RateWindowState:
    """Timestamps (ms, ascending) of admitted requests for one identity."""
    minute: List[int] = field(default_factory=list)
    hour: List[int] = field(default_factory=list)
    day: List[int] = field(default_factory=list)

    def timestamps(self, window: RateWindow) -> List[int]:
        return getattr(self, window.name)

    def pruned(self, now_ms: int) -> "RateWindowState":
        """Return a copy keeping only entries inside each trailing window."""
        kept = {
            w.name: [ts for ts in self.timestamps(w) if ts > now_ms - w.duration_ms]
            for w in WINDOWS
        }
        return RateWindowState(**kept)

    def record(self, now_ms: int) -> None:
        """Add one admitted request to every window, keeping order."""
        for window in WINDOWS:
            bisect.insort(self.timestamps(window), now_ms)

    def counts(self) -> Dict[str, int]:
        return {w.name: len(self.timestamps(w)) for w in WINDOWS}

    def copy(self) -> "RateWindowState":
        return RateWindowState(
            minute=list(self.minute), hour=list(self.hour), day=list(self.day)
        )

    def to_mapping(self) -> Dict[str, str]:
        """Serialize to the persisted layout: one JSON list per window name."""
        return {w.name: json.dumps(self.timestamps(w)) for w in WINDOWS}

    @classmethod
    def from_mapping(cls, raw: Mapping[Any, Any]) -> "RateWindowState":
        """Build from a persisted mapping; keys and values may be bytes."""
        decoded: Dict[str, List[int]] = {}
        for key, value in raw.items():
            name = key.decode() if isinstance(key, bytes) else str(key)
            if isinstance(value, bytes):
                value = value.decode()
            decoded[name] = sorted(int(ts) for ts in json.loads(value or "[]"))
        return cls(**{w.name: decoded.get(w.name, []) for w in WINDOWS})


@dataclass
class AdmissionDecision:
    """Result of an admission check."""
    allowed: bool
    counts: Dict[str, int] = field(default_factory=dict)
    retry_after: Optional[int] = None
    window: Optional[str] = None


@dataclass
class RateStats:
    """Read-only view of an identity's current usage."""
    counts: Dict[str, int]
    limits: Dict[str, int]

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {"counts": dict(self.counts), "limits": dict(self.limits)}
