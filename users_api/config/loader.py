"""Env var config loading with pydantic-settings."""

from __future__ import annotations

import signal
from pathlib import Path

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from users_api.config import guard_defaults

logger = structlog.get_logger()

_SEED_PATH = Path(__file__).parent / "seed_users.yaml"


class ServiceSettings(BaseSettings):
    """Service configuration; env vars override model defaults."""

    model_config = SettingsConfigDict(
        env_prefix="USERS_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    listen_host: str = "0.0.0.0"
    listen_port: int = 3000
    log_level: str = "info"
    log_json: bool = True

    # Request guard
    max_body_bytes: int = guard_defaults.MAX_BODY_BYTES
    max_depth: int = guard_defaults.MAX_DEPTH
    max_string_length: int = guard_defaults.MAX_STRING_LENGTH
    allowed_content_types: list[str] = Field(
        default_factory=lambda: list(guard_defaults.ALLOWED_CONTENT_TYPES)
    )
    rate_limit_header: int = guard_defaults.RATE_LIMIT_HEADER_VALUE

    # Users
    seed_file: str = str(_SEED_PATH)
    random_user_cap: int = 20


_settings: ServiceSettings | None = None


def get_settings() -> ServiceSettings:
    """Get or create the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings() -> ServiceSettings:
    """Load settings from env vars (env vars override model defaults)."""
    global _settings
    _settings = ServiceSettings()
    logger.info("config_loaded", port=_settings.listen_port, max_body_bytes=_settings.max_body_bytes)
    return _settings


def register_reload_handler() -> None:
    """Register SIGHUP handler for hot-reload of configuration."""
    import threading

    if threading.current_thread() is not threading.main_thread():
        logger.debug("skipping_sighup_handler", reason="not main thread")
        return

    def _reload(signum, frame):
        logger.info("config_reload_triggered")
        load_settings()

    try:
        signal.signal(signal.SIGHUP, _reload)
    except (ValueError, AttributeError):
        logger.debug("skipping_sighup_handler", reason="signal not supported")
