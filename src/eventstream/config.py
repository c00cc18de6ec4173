"""Library-wide defaults.

Values can be overridden through environment variables:

- EVENTSTREAM_KEEP_ALIVE: keep-alive interval in seconds (0 disables)
- EVENTSTREAM_RETRY: reconnection hint in milliseconds (0 disables)
- EVENTSTREAM_DEFAULT_HOST: host used when a request has no Host header
  (empty string means no fallback)
- EVENTSTREAM_TRUST_CLIENT_EVENT_ID: read Last-Event-ID from requests
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_HOST = "localhost"
DEFAULT_REQUEST_METHOD = "GET"
DEFAULT_RESPONSE_CODE = 200
DEFAULT_KEEP_ALIVE = 10.0
DEFAULT_RETRY = 2000

DEFAULT_RESPONSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _env_number(name: str, default: float, cast: type) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


@dataclass
class Settings:
    """Resolved library defaults."""

    keep_alive: float = DEFAULT_KEEP_ALIVE
    retry: int = DEFAULT_RETRY
    default_host: str | None = DEFAULT_REQUEST_HOST
    trust_client_event_id: bool = True

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from EVENTSTREAM_* environment variables."""
        default_host = os.environ.get("EVENTSTREAM_DEFAULT_HOST", DEFAULT_REQUEST_HOST)
        return cls(
            keep_alive=_env_number("EVENTSTREAM_KEEP_ALIVE", DEFAULT_KEEP_ALIVE, float),
            retry=int(_env_number("EVENTSTREAM_RETRY", DEFAULT_RETRY, int)),
            default_host=default_host or None,
            trust_client_event_id=_env_flag("EVENTSTREAM_TRUST_CLIENT_EVENT_ID", True),
        )


# Lazy singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
