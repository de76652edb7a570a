"""
Centralized configuration with environment variable overrides.

Business profile, model provider credentials, chat limits, lease timing and
external calendar settings all live here. Nothing is hardcoded in tool or
orchestrator logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from chat_orchestrator.logging_context import install_conversation_filter

load_dotenv()

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "gemini", "openrouter")

LOG_FORMAT = "%(asctime)s [%(name)s] [%(conversation_id)s] %(levelname)s: %(message)s"


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
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class BusinessConfig:
    """Company profile used in prompts and booking rules."""

    name: str = os.getenv("BUSINESS_NAME", "Skleanings")
    industry: str = os.getenv("BUSINESS_INDUSTRY", "upholstery cleaning")
    phone: str = os.getenv("BUSINESS_PHONE", "")
    email: str = os.getenv("BUSINESS_EMAIL", "")
    address: str = os.getenv("BUSINESS_ADDRESS", "")
    timezone: str = os.getenv("BUSINESS_TIMEZONE", "America/New_York")
    minimum_booking_value: float = _safe_float("MINIMUM_BOOKING_VALUE", "0")


@dataclass(frozen=True)
class ModelConfig:
    """Language-model provider settings (OpenAI-compatible chat completions)."""

    active_provider: str = os.getenv("CHAT_PROVIDER", "openai")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o")
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", os.getenv("GOOGLE_API_KEY", ""))
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    openrouter_api_key: str = os.getenv("OPENROUTER_API_KEY", "")
    openrouter_model: str = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini")
    openrouter_referer: str = os.getenv("OPENROUTER_HTTP_REFERER", "")
    openrouter_title: str = os.getenv("OPENROUTER_APP_TITLE", "Skleanings")
    temperature: float = _safe_float("LLM_TEMPERATURE", "0.7")
    max_completion_tokens: int = _safe_int("LLM_MAX_COMPLETION_TOKENS", "800")
    timeout_seconds: float = _safe_float("LLM_TIMEOUT_SECONDS", "30")

    def env_key_for(self, provider: str) -> str:
        """Return the environment-provided API key for a provider, if any."""
        return {
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
            "openrouter": self.openrouter_api_key,
        }.get(provider, "")

    def default_model_for(self, provider: str) -> str:
        return {
            "openai": self.openai_model,
            "gemini": self.gemini_model,
            "openrouter": self.openrouter_model,
        }.get(provider, self.openai_model)


@dataclass(frozen=True)
class ChatConfig:
    """Admission limits and conversation housekeeping thresholds."""

    rate_limit: int = _safe_int("CHAT_RATE_LIMIT", "8")
    rate_window_seconds: float = _safe_float("CHAT_RATE_WINDOW_SECONDS", "60")
    max_conversation_messages: int = _safe_int("MAX_CONVERSATION_MESSAGES", "100")
    history_window: int = _safe_int("HISTORY_WINDOW", "24")
    min_history_for_name: int = _safe_int("MIN_HISTORY_FOR_NAME", "3")
    max_bookings_per_conversation: int = _safe_int("MAX_BOOKINGS_PER_CONVERSATION", "3")
    booking_limit_window_seconds: float = _safe_float("BOOKING_LIMIT_WINDOW_SECONDS", "3600")
    cache_ttl_seconds: float = _safe_float("CACHE_TTL_SECONDS", "300")
    inactive_close_hours: float = _safe_float("INACTIVE_CLOSE_HOURS", "24")


@dataclass(frozen=True)
class LeaseConfig:
    """Time-slot lease timing."""

    ttl_seconds: float = _safe_float("LEASE_TTL_SECONDS", "30")
    sweep_interval_seconds: float = _safe_float("LEASE_SWEEP_INTERVAL_SECONDS", "300")


@dataclass(frozen=True)
class CalendarConfig:
    """External calendar / CRM integration."""

    enabled: bool = _safe_bool("CALENDAR_ENABLED", "false")
    base_url: str = os.getenv("CALENDAR_BASE_URL", "https://services.leadconnectorhq.com")
    api_key: str = os.getenv("CALENDAR_API_KEY", "")
    location_id: str = os.getenv("CALENDAR_LOCATION_ID", "")
    calendar_id: str = os.getenv("CALENDAR_ID", "")
    timeout_seconds: float = _safe_float("CALENDAR_TIMEOUT_SECONDS", "10")

    @property
    def usable(self) -> bool:
        return bool(self.enabled and self.api_key and self.calendar_id)


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    lease: LeaseConfig = field(default_factory=LeaseConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "chat-booking-orchestrator")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not 0.0 <= config.model.temperature <= 2.0:
        raise ValueError(
            f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {config.model.temperature}"
        )
    if config.model.active_provider not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"CHAT_PROVIDER must be one of {', '.join(SUPPORTED_PROVIDERS)}, "
            f"got {config.model.active_provider!r}"
        )
    if config.model.max_completion_tokens < 1:
        raise ValueError(
            "LLM_MAX_COMPLETION_TOKENS must be >= 1, "
            f"got {config.model.max_completion_tokens}"
        )
    if config.model.timeout_seconds <= 0:
        raise ValueError(
            f"LLM_TIMEOUT_SECONDS must be > 0, got {config.model.timeout_seconds}"
        )
    if config.business.minimum_booking_value < 0:
        raise ValueError(
            "MINIMUM_BOOKING_VALUE must be >= 0, "
            f"got {config.business.minimum_booking_value}"
        )

    for name, value in [
        ("CHAT_RATE_LIMIT", config.chat.rate_limit),
        ("MAX_CONVERSATION_MESSAGES", config.chat.max_conversation_messages),
        ("HISTORY_WINDOW", config.chat.history_window),
        ("MAX_BOOKINGS_PER_CONVERSATION", config.chat.max_bookings_per_conversation),
    ]:
        if value < 1:
            raise ValueError(f"{name} must be >= 1, got {value}")

    for name, value in [
        ("CHAT_RATE_WINDOW_SECONDS", config.chat.rate_window_seconds),
        ("BOOKING_LIMIT_WINDOW_SECONDS", config.chat.booking_limit_window_seconds),
        ("LEASE_TTL_SECONDS", config.lease.ttl_seconds),
        ("LEASE_SWEEP_INTERVAL_SECONDS", config.lease.sweep_interval_seconds),
        ("INACTIVE_CLOSE_HOURS", config.chat.inactive_close_hours),
    ]:
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")

    if config.chat.min_history_for_name < 0:
        raise ValueError(
            f"MIN_HISTORY_FOR_NAME must be >= 0, got {config.chat.min_history_for_name}"
        )
    if config.chat.cache_ttl_seconds < 0:
        raise ValueError(
            f"CACHE_TTL_SECONDS must be >= 0, got {config.chat.cache_ttl_seconds}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_conversation_filter()
    logger.info("Configuration loaded for '%s'", config.business.name)
    return config


# Singleton instance
settings = load_config()
