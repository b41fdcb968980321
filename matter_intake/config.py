"""
Centralized configuration with environment variable overrides.

Model settings, session retention, webhook delivery policy and team
configuration sources are all configurable here. Nothing is hardcoded
in the dialogue or delivery logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from matter_intake.logging_context import LOG_FORMAT, install_context_filter

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SERVICES = (
    "Family Law",
    "Small Business and Nonprofits",
    "Employment Law",
    "Tenant Rights Law",
    "Probate and Estate Planning",
    "Special Education and IEP Advocacy",
)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag from an env var (true/false, yes/no, 1/0)."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class ModelConfig:
    """Language model settings for the extraction pass."""

    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.1")
    llm_max_tokens: int = _safe_int("LLM_MAX_TOKENS", "300")
    extraction_enabled: bool = _safe_bool("EXTRACTION_ENABLED", "true")
    extraction_timeout_sec: float = _safe_float("EXTRACTION_TIMEOUT", "10.0")


@dataclass(frozen=True)
class SessionConfig:
    """Intake session retention."""

    ttl_seconds: int = _safe_int("SESSION_TTL_SECONDS", str(24 * 60 * 60))


@dataclass(frozen=True)
class WebhookSettings:
    """Outbound webhook delivery policy."""

    timeout_sec: float = _safe_float("WEBHOOK_TIMEOUT", "30.0")
    default_max_retries: int = _safe_int("WEBHOOK_MAX_RETRIES", "3")
    default_retry_delay_sec: int = _safe_int("WEBHOOK_RETRY_DELAY", "60")
    user_agent: str = os.getenv("WEBHOOK_USER_AGENT", "MatterIntake-Webhook/1.0")
    auto_retry: bool = _safe_bool("WEBHOOK_AUTO_RETRY", "true")
    retry_poll_interval_sec: float = _safe_float("WEBHOOK_RETRY_POLL_INTERVAL", "30.0")
    manual_retry_batch: int = _safe_int("WEBHOOK_MANUAL_RETRY_BATCH", "10")


@dataclass(frozen=True)
class TeamSettings:
    """Where team configuration comes from and how long it is cached."""

    teams_file: str = os.getenv("TEAMS_FILE", "teams.json")
    cache_ttl_seconds: float = _safe_float("TEAM_CACHE_TTL", "300")
    default_services: tuple[str, ...] = DEFAULT_SERVICES


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    model: ModelConfig = field(default_factory=ModelConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    webhooks: WebhookSettings = field(default_factory=WebhookSettings)
    teams: TeamSettings = field(default_factory=TeamSettings)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    database_url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./matter_intake.db")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = _safe_int("PORT", "8000")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not 0.0 <= config.model.llm_temperature <= 2.0:
        raise ValueError(
            f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {config.model.llm_temperature}"
        )
    if config.model.llm_max_tokens < 1:
        raise ValueError(f"LLM_MAX_TOKENS must be >= 1, got {config.model.llm_max_tokens}")
    if config.model.extraction_timeout_sec <= 0:
        raise ValueError(
            f"EXTRACTION_TIMEOUT must be > 0, got {config.model.extraction_timeout_sec}"
        )
    if config.sessions.ttl_seconds < 60:
        raise ValueError(
            f"SESSION_TTL_SECONDS must be >= 60, got {config.sessions.ttl_seconds}"
        )
    if config.webhooks.timeout_sec <= 0:
        raise ValueError(f"WEBHOOK_TIMEOUT must be > 0, got {config.webhooks.timeout_sec}")
    if config.webhooks.default_max_retries < 0:
        raise ValueError(
            f"WEBHOOK_MAX_RETRIES must be >= 0, got {config.webhooks.default_max_retries}"
        )
    if config.webhooks.default_retry_delay_sec < 1:
        raise ValueError(
            f"WEBHOOK_RETRY_DELAY must be >= 1, got {config.webhooks.default_retry_delay_sec}"
        )
    if config.webhooks.retry_poll_interval_sec <= 0:
        raise ValueError(
            "WEBHOOK_RETRY_POLL_INTERVAL must be > 0, "
            f"got {config.webhooks.retry_poll_interval_sec}"
        )
    if config.teams.cache_ttl_seconds < 0:
        raise ValueError(f"TEAM_CACHE_TTL must be >= 0, got {config.teams.cache_ttl_seconds}")
    if not 1 <= config.port <= 65535:
        raise ValueError(f"PORT must be between 1 and 65535, got {config.port}")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_context_filter()
    logger.info("Configuration loaded (model=%s)", config.model.llm_model)
    return config


# Singleton instance
settings = load_config()
