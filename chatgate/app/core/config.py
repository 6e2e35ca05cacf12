import json
import re
from typing import Annotated, Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # JSON is the documented format, bare hosts and comma lists are tolerated.
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()
            if raw == "*":
                return ["*"]

    origins: list[str] = []
    for part in (p for p in re.split(r"[,\s]+", raw) if p):
        if part == "*":
            return ["*"]
        if "://" in part:
            origins.append(part)
        else:
            # Browsers send the scheme in Origin, so accept both.
            origins.append(f"http://{part}")
            origins.append(f"https://{part}")

    return list(dict.fromkeys(origins))


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Admission control (sliding windows, per client identity)
    rate_limit_per_minute: int = 10
    rate_limit_per_hour: int = 100
    rate_limit_per_day: int = 500

    # Redis settings (optional, shared rate state across instances)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_lock_timeout: float = 5.0  # Seconds a per-identity lock may be held
    redis_lock_wait: float = 5.0  # Seconds to wait for a per-identity lock

    # Conversation store. Empty = in-memory store.
    database_url: str = ""
    db_pool_size: int = 20
    db_max_overflow: int = 10
    history_max_turns: int = 20

    # Summarization trigger
    summarize_threshold: int = 10
    summary_max_tokens: int = 256

    # Input screening
    max_message_length: int = 4000
    threat_reject_score: int = 80
    threat_monitor_score: int = 50

    # Completion service (OpenAI-compatible)
    completion_base_url: str = "https://api.openai.com/v1"
    completion_api_key: str = ""
    completion_model: str = "gpt-4o-mini"
    completion_max_tokens: int = 1024
    completion_temperature: float = 0.7
    mock_provider: bool = False

    # Transcription pass-through
    transcription_url: str = ""
    transcription_api_key: str = ""
    max_audio_size_mb: int = 10

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 60.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Client identity. Only enable behind a proxy that overwrites these headers
    # (CF-Connecting-IP, X-Forwarded-For, X-Real-IP); otherwise clients pick
    # their own rate limit key.
    trust_forwarded_headers: bool = False

    # CORS settings. NoDecode keeps bare hosts from breaking JSON parsing.
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator(
        "rate_limit_per_minute",
        "rate_limit_per_hour",
        "rate_limit_per_day",
        "summarize_threshold",
        "history_max_turns",
        "max_message_length",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limits and thresholds are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("threat_reject_score", "threat_monitor_score")
    @classmethod
    def validate_score_range(cls, v: int) -> int:
        """Validate threat score thresholds fall inside the score range."""
        if not 0 <= v <= 100:
            raise ValueError("threat score thresholds must be between 0 and 100")
        return v

    @field_validator(
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "redis_lock_timeout",
        "redis_lock_wait",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @model_validator(mode="after")
    def validate_threat_bands(self) -> "Settings":
        """The monitoring band must sit below the rejection line."""
        if self.threat_monitor_score >= self.threat_reject_score:
            raise ValueError("threat_monitor_score must be lower than threat_reject_score")
        return self

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
