import pytest
from pydantic import ValidationError

from chatgate.app.core.config import Settings


def test_cors_origins_accepts_host_without_json(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "43.163.94.63")

    settings = Settings(_env_file=None)
    assert settings.cors_origins == ["http://43.163.94.63", "https://43.163.94.63"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["http://localhost:5173"]', ["http://localhost:5173"]),
        ("*", ["*"]),
        ('"*"', ["*"]),
        ("[]", []),
        ("", []),
        (
            "http://a.example.com, https://b.example.com",
            ["http://a.example.com", "https://b.example.com"],
        ),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected


def test_defaults(monkeypatch) -> None:
    for name in ("RATE_LIMIT_PER_MINUTE", "SUMMARIZE_THRESHOLD", "DATABASE_URL", "REDIS_ENABLED"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)
    assert (settings.rate_limit_per_minute, settings.rate_limit_per_hour, settings.rate_limit_per_day) == (
        10,
        100,
        500,
    )
    assert settings.summarize_threshold == 10
    assert settings.database_url == ""
    assert settings.redis_enabled is False


@pytest.mark.parametrize("name", ["RATE_LIMIT_PER_MINUTE", "SUMMARIZE_THRESHOLD", "HISTORY_MAX_TURNS"])
def test_limits_must_be_positive(monkeypatch, name: str) -> None:
    monkeypatch.setenv(name, "0")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_threat_scores_must_be_in_range(monkeypatch) -> None:
    monkeypatch.setenv("THREAT_REJECT_SCORE", "101")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_timeouts_must_be_positive(monkeypatch) -> None:
    monkeypatch.setenv("REDIS_LOCK_WAIT", "0")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_monitor_band_must_sit_below_reject_line(monkeypatch) -> None:
    monkeypatch.setenv("THREAT_MONITOR_SCORE", "90")
    monkeypatch.setenv("THREAT_REJECT_SCORE", "80")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_forwarded_headers_untrusted_by_default(monkeypatch) -> None:
    monkeypatch.delenv("TRUST_FORWARDED_HEADERS", raising=False)

    assert Settings(_env_file=None).trust_forwarded_headers is False
