from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError


load_dotenv()

PROVIDER_CHOICES = ("openai", "gemini", "trinity")
MEMORY_BACKENDS = ("sqlite", "postgres", "memory")


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _clean_key(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bearer "):
        cleaned = cleaned[7:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


@dataclass(slots=True)
class Settings:
    openai_api_key: str
    openai_base_url: str
    openai_model_decision: str
    openai_model_reply: str

    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    gemini_model_reply: str

    provider_timeout_seconds: float
    decision_primary_attempts: int
    default_provider: str

    live_context_timeout_seconds: float
    openweather_api_key: str
    openweather_base_url: str
    news_context_limit: int

    memory_backend: str
    sqlite_path: Path
    memory_postgres_dsn: str
    memory_recent_limit: int

    behavior_ema_alpha: float
    voice_profile_refresh_days: int
    proactive_cooldown_minutes: int

    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=_clean_key(_env_lookup("OPENAI_API_KEY") or ""),
            openai_base_url=_env_str("OPENAI_BASE_URL", "https://api.openai.com"),
            openai_model_decision=_env_str("OPENAI_MODEL_DECISION", "gpt-4o-mini", aliases=("OPENAI_MODEL",)),
            openai_model_reply=_env_str("OPENAI_MODEL_REPLY", "gpt-4o-mini", aliases=("OPENAI_MODEL",)),
            gemini_api_key=_clean_key(_env_lookup("GEMINI_API_KEY") or ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_model_reply=_env_str("GEMINI_MODEL_REPLY", "gemini-2.5-flash", aliases=("GEMINI_MODEL",)),
            provider_timeout_seconds=_env_float("PROVIDER_TIMEOUT_SECONDS", 20.0),
            decision_primary_attempts=_env_int("DECISION_PRIMARY_ATTEMPTS", 3),
            default_provider=_env_str("DEFAULT_PROVIDER", "trinity").lower(),
            live_context_timeout_seconds=_env_float("LIVE_CONTEXT_TIMEOUT_SECONDS", 8.0),
            openweather_api_key=_clean_key(_env_lookup("OPENWEATHER_API_KEY") or ""),
            openweather_base_url=_env_str("OPENWEATHER_BASE_URL", "https://api.openweathermap.org"),
            news_context_limit=_env_int("NEWS_CONTEXT_LIMIT", 5),
            memory_backend=_env_str("MEMORY_BACKEND", "sqlite").lower(),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/lxt_state.db")).expanduser(),
            memory_postgres_dsn=_env_str("MEMORY_POSTGRES_DSN", "", aliases=("DATABASE_URL",)),
            memory_recent_limit=_env_int("MEMORY_RECENT_LIMIT", 20),
            behavior_ema_alpha=_env_float("BEHAVIOR_EMA_ALPHA", 0.15),
            voice_profile_refresh_days=_env_int("VOICE_PROFILE_REFRESH_DAYS", 7),
            proactive_cooldown_minutes=_env_int("PROACTIVE_COOLDOWN_MINUTES", 30),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def configured_providers(self) -> tuple[str, ...]:
        names: list[str] = []
        if self.openai_api_key:
            names.append("openai")
        if self.gemini_api_key:
            names.append("gemini")
        return tuple(names)

    def validate(self) -> None:
        for name, value in (("OPENAI_API_KEY", self.openai_api_key), ("GEMINI_API_KEY", self.gemini_api_key)):
            if value.startswith("put_your_"):
                raise ConfigurationError(f"{name} is still placeholder")
        if not self.configured_providers:
            raise ConfigurationError("At least one of OPENAI_API_KEY / GEMINI_API_KEY is required")
        if self.default_provider not in PROVIDER_CHOICES:
            raise ConfigurationError("DEFAULT_PROVIDER must be one of openai, gemini, trinity")

        if self.provider_timeout_seconds < 1:
            raise ConfigurationError("PROVIDER_TIMEOUT_SECONDS must be >= 1")
        if self.decision_primary_attempts < 1 or self.decision_primary_attempts > 5:
            raise ConfigurationError("DECISION_PRIMARY_ATTEMPTS must be in [1, 5]")
        if self.live_context_timeout_seconds < 1:
            raise ConfigurationError("LIVE_CONTEXT_TIMEOUT_SECONDS must be >= 1")
        if self.news_context_limit < 1 or self.news_context_limit > 20:
            raise ConfigurationError("NEWS_CONTEXT_LIMIT must be in [1, 20]")

        if self.memory_backend not in MEMORY_BACKENDS:
            raise ConfigurationError("MEMORY_BACKEND must be 'sqlite', 'postgres' or 'memory'")
        if self.memory_backend == "postgres" and not self.memory_postgres_dsn:
            raise ConfigurationError("MEMORY_POSTGRES_DSN is required when MEMORY_BACKEND=postgres")
        if self.memory_recent_limit < 1:
            raise ConfigurationError("MEMORY_RECENT_LIMIT must be >= 1")

        if self.behavior_ema_alpha <= 0.0 or self.behavior_ema_alpha >= 1.0:
            raise ConfigurationError("BEHAVIOR_EMA_ALPHA must be in (0, 1)")
        if self.voice_profile_refresh_days < 1:
            raise ConfigurationError("VOICE_PROFILE_REFRESH_DAYS must be >= 1")
        if self.proactive_cooldown_minutes < 0:
            raise ConfigurationError("PROACTIVE_COOLDOWN_MINUTES must be >= 0")
