"""Runtime configuration for the messaging engine."""

import os
from typing import Optional

import structlog
from pydantic import BaseModel, field_validator

logger = structlog.get_logger()

DEFAULT_API_URL = "http://localhost:3001/api"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class SyncSettings(BaseModel):
    """Tunables for polling, transport and input handling."""

    api_url: str = DEFAULT_API_URL
    api_token: Optional[str] = None
    poll_interval_ms: int = 10000
    request_timeout: float = 30.0  # seconds
    typing_timeout_ms: int = 2000
    max_message_length: int = 2000
    auto_refresh: bool = True

    @field_validator("poll_interval_ms", "typing_timeout_ms", "max_message_length")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("request_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from ``CONSULT_SYNC_*`` environment variables."""
        settings = cls(
            api_url=os.getenv("CONSULT_SYNC_API_URL", DEFAULT_API_URL),
            api_token=os.getenv("CONSULT_SYNC_API_TOKEN") or None,
            poll_interval_ms=int(os.getenv("CONSULT_SYNC_POLL_INTERVAL_MS", "10000")),
            request_timeout=float(os.getenv("CONSULT_SYNC_REQUEST_TIMEOUT", "30")),
            typing_timeout_ms=int(os.getenv("CONSULT_SYNC_TYPING_TIMEOUT_MS", "2000")),
            max_message_length=int(os.getenv("CONSULT_SYNC_MAX_MESSAGE_LENGTH", "2000")),
            auto_refresh=_env_bool("CONSULT_SYNC_AUTO_REFRESH", True),
        )
        logger.info(
            "settings_loaded",
            api_url=settings.api_url,
            poll_interval_ms=settings.poll_interval_ms,
            auto_refresh=settings.auto_refresh,
            using_token=settings.api_token is not None,
        )
        return settings
