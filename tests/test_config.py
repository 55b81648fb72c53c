from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lxt_core.config import Settings  # noqa: E402
from lxt_core.errors import ConfigurationError  # noqa: E402

_ENV_KEYS = (
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "DEFAULT_PROVIDER",
    "MEMORY_BACKEND",
    "MEMORY_POSTGRES_DSN",
    "DATABASE_URL",
    "DECISION_PRIMARY_ATTEMPTS",
    "BEHAVIOR_EMA_ALPHA",
    "OPENAI_MODEL",
    "OPENAI_MODEL_DECISION",
    "PROVIDER_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_requires_at_least_one_provider_key() -> None:
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY / GEMINI_API_KEY"):
        Settings.from_env().validate()


def test_keys_are_cleaned_and_defaults_apply(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", '  Bearer "sk-test"  ')
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4.1-mini")
    monkeypatch.setenv("PROVIDER_TIMEOUT_SECONDS", "not-a-number")
    settings = Settings.from_env()
    settings.validate()

    assert settings.openai_api_key == "sk-test"
    assert settings.configured_providers == ("openai",)
    assert settings.openai_model_decision == "gpt-4.1-mini"
    assert settings.default_provider == "trinity"
    assert settings.decision_primary_attempts == 3
    assert settings.provider_timeout_seconds == 20.0


def test_placeholder_key_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "put_your_gemini_key_here")
    with pytest.raises(ConfigurationError, match="placeholder"):
        Settings.from_env().validate()


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("DEFAULT_PROVIDER", "claude", "DEFAULT_PROVIDER"),
        ("DECISION_PRIMARY_ATTEMPTS", "9", "DECISION_PRIMARY_ATTEMPTS"),
        ("BEHAVIOR_EMA_ALPHA", "1.5", "BEHAVIOR_EMA_ALPHA"),
        ("MEMORY_BACKEND", "redis", "MEMORY_BACKEND"),
    ],
)
def test_out_of_range_settings_fail_fast(monkeypatch: pytest.MonkeyPatch, key: str, value: str, message: str) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigurationError, match=message):
        Settings.from_env().validate()


def test_postgres_backend_needs_dsn(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")
    monkeypatch.setenv("MEMORY_BACKEND", "postgres")
    with pytest.raises(ConfigurationError, match="MEMORY_POSTGRES_DSN"):
        Settings.from_env().validate()

    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/lxt")
    settings = Settings.from_env()
    settings.validate()
    assert settings.memory_postgres_dsn == "postgresql://localhost/lxt"
