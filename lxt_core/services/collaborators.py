"""Capability interfaces the engine consumes, plus inert defaults.

Concrete implementations (mail providers, market data, push alerts) live
outside this package and are injected through ``Collaborators``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from .signals import HeuristicSignalsService


class EmailService(Protocol):
    async def get_connected_providers(self, user_id: str) -> list[str]: ...

    async def list_messages(
        self,
        *,
        provider: str,
        user_id: str,
        query: str | None = None,
        max_results: int = 6,
    ) -> list[dict[str, Any]]: ...

    async def send(self, *, provider: str, user_id: str, to: str, subject: str, body: str) -> dict[str, Any]: ...

    async def reply_latest(self, *, provider: str, user_id: str, body: str) -> dict[str, Any]: ...

    async def reply_by_id(self, *, provider: str, user_id: str, message_id: str, body: str) -> dict[str, Any]: ...


class WeatherService(Protocol):
    async def get_live(
        self,
        *,
        user_id: str | None,
        text: str,
        lat: float | None,
        lon: float | None,
        state: dict[str, Any] | None,
    ) -> dict[str, Any] | None: ...


class NewsService(Protocol):
    async def get_recent_for_user(self, *, user_id: str, limit: int) -> list[dict[str, Any]]: ...

    async def summarize_for_chat(
        self,
        *,
        user_id: str | None,
        memory: Sequence[str],
        items: Sequence[dict[str, Any]],
    ) -> str: ...


class StocksService(Protocol):
    async def quote(self, *, user_id: str | None, ticker: str) -> dict[str, Any] | None: ...


class PersonaService(Protocol):
    async def summarize_voice_profile(self, *, user_id: str, memory: Sequence[str]) -> str: ...


class SignalsService(Protocol):
    async def scan(self, *, user_id: str | None, live_context: dict[str, Any]) -> dict[str, Any]: ...

    async def proactive(
        self,
        *,
        user_id: str,
        live_context: dict[str, Any],
        state: dict[str, Any],
    ) -> dict[str, Any] | None: ...


class EmailNotConnectedError(LookupError):
    pass


class NullEmailService:
    async def get_connected_providers(self, user_id: str) -> list[str]:
        return []

    async def list_messages(
        self,
        *,
        provider: str,
        user_id: str,
        query: str | None = None,
        max_results: int = 6,
    ) -> list[dict[str, Any]]:
        return []

    async def send(self, *, provider: str, user_id: str, to: str, subject: str, body: str) -> dict[str, Any]:
        raise EmailNotConnectedError(f"{provider} is not connected")

    async def reply_latest(self, *, provider: str, user_id: str, body: str) -> dict[str, Any]:
        raise EmailNotConnectedError(f"{provider} is not connected")

    async def reply_by_id(self, *, provider: str, user_id: str, message_id: str, body: str) -> dict[str, Any]:
        raise EmailNotConnectedError(f"{provider} is not connected")


class NullWeatherService:
    async def get_live(
        self,
        *,
        user_id: str | None,
        text: str,
        lat: float | None,
        lon: float | None,
        state: dict[str, Any] | None,
    ) -> dict[str, Any] | None:
        return None


class NullNewsService:
    async def get_recent_for_user(self, *, user_id: str, limit: int) -> list[dict[str, Any]]:
        return []

    async def summarize_for_chat(
        self,
        *,
        user_id: str | None,
        memory: Sequence[str],
        items: Sequence[dict[str, Any]],
    ) -> str:
        titles = [str(item.get("title") or "").strip() for item in items if isinstance(item, dict)]
        titles = [title for title in titles if title][:3]
        if not titles:
            return "Nothing urgent on your radar right now."
        return "Latest on your radar: " + "; ".join(titles) + "."


class NullStocksService:
    async def quote(self, *, user_id: str | None, ticker: str) -> dict[str, Any] | None:
        return None


class NullPersonaService:
    async def summarize_voice_profile(self, *, user_id: str, memory: Sequence[str]) -> str:
        return ""


@dataclass(slots=True)
class Collaborators:
    email: EmailService = field(default_factory=NullEmailService)
    weather: WeatherService = field(default_factory=NullWeatherService)
    news: NewsService = field(default_factory=NullNewsService)
    stocks: StocksService = field(default_factory=NullStocksService)
    persona: PersonaService = field(default_factory=NullPersonaService)
    signals: SignalsService = field(default_factory=HeuristicSignalsService)
