"""Fan-out over weather, news and stocks; every branch degrades to None on its own."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

from ..common import as_number_or_none
from ..services.collaborators import Collaborators
from ..services.weather import weather_signals

logger = logging.getLogger("lxt_core.live_context")

COMPACT_NEWS_LIMIT = 5
_DOLLAR_TICKER_RE = re.compile(r"\$([A-Za-z]{1,5})\b")
_CAPS_TICKER_RE = re.compile(r"\b([A-Z]{2,5})\b")
_STOCK_CONTEXT_RE = re.compile(r"\b(stock|stocks|share|shares|ticker|quote|price|trading|market)\b", re.IGNORECASE)
_NOT_TICKERS = frozenset({"I", "A", "OK", "US", "USA", "AI", "CEO", "CFO", "IPO", "ETF", "FAQ", "PM", "AM", "UTC", "LXT"})


def extract_ticker(text: str) -> str | None:
    raw = str(text or "")
    match = _DOLLAR_TICKER_RE.search(raw)
    if match is not None:
        return match.group(1).upper()
    if not _STOCK_CONTEXT_RE.search(raw):
        return None
    for candidate in _CAPS_TICKER_RE.findall(raw):
        if candidate not in _NOT_TICKERS:
            return candidate
    return None


def _pick(source: Dict[str, Any] | None, keys: tuple[str, ...]) -> Dict[str, Any] | None:
    if not isinstance(source, dict):
        return None
    return {key: source.get(key) for key in keys}


@dataclass(slots=True)
class LiveContext:
    weather: Dict[str, Any] | None = None
    weather_geo: Dict[str, Any] | None = None
    news: List[Dict[str, Any]] = field(default_factory=list)
    stock: Dict[str, Any] | None = None
    ticker: str | None = None
    errors: Dict[str, str] = field(default_factory=dict)

    def weather_signals(self) -> List[Dict[str, Any]]:
        return weather_signals(self.weather)

    def compact(self, news_limit: int = COMPACT_NEWS_LIMIT) -> Dict[str, Any]:
        """Bounded, decision-prompt sized view."""
        news = [
            {
                "title": str(item.get("title") or ""),
                "region": item.get("region"),
                "severity": item.get("severity"),
                "action": item.get("action"),
                "created_at": item.get("created_at"),
            }
            for item in self.news[: max(0, int(news_limit))]
            if isinstance(item, dict)
        ]
        weather_geo = _pick(self.weather_geo, ("name", "country", "lat", "lon"))
        if weather_geo is not None:
            weather_geo["lat"] = as_number_or_none(weather_geo["lat"])
            weather_geo["lon"] = as_number_or_none(weather_geo["lon"])
        return {
            "weather": _pick(
                self.weather,
                ("city", "temp_c", "feels_like_c", "clouds_pct", "main", "description", "at"),
            ),
            "weather_geo": weather_geo,
            "news": news,
            "stock": _pick(self.stock, ("ticker", "price", "change_pct", "currency")),
        }

    def for_reply(
        self,
        *,
        state: Dict[str, Any] | None = None,
        lat: float | None = None,
        lon: float | None = None,
    ) -> Dict[str, Any]:
        state = state or {}
        return {
            "weather": self.weather,
            "location": {
                "lat": lat,
                "lon": lon,
                "city": state.get("last_city"),
                "country": state.get("last_country"),
                "timezone": state.get("last_timezone"),
            },
            "news": list(self.news),
            "stock": self.stock,
        }


class LiveContextAdapter:
    def __init__(self, collaborators: Collaborators, *, timeout_seconds: float, news_limit: int = COMPACT_NEWS_LIMIT) -> None:
        self.collaborators = collaborators
        self.timeout_seconds = timeout_seconds
        self.news_limit = news_limit

    async def _guarded(self, name: str, factory: Callable[[], Awaitable[Any]], errors: Dict[str, str]) -> Any:
        try:
            return await asyncio.wait_for(factory(), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            errors[name] = f"{name} timed out after {self.timeout_seconds:.0f}s"
        except Exception as exc:
            errors[name] = str(exc) or exc.__class__.__name__
        logger.warning("Live context %s unavailable: %s", name, errors[name])
        return None

    async def build(
        self,
        *,
        user_id: str | None,
        text: str,
        lat: float | None = None,
        lon: float | None = None,
        state: Dict[str, Any] | None = None,
    ) -> LiveContext:
        errors: Dict[str, str] = {}
        ticker = extract_ticker(text)

        async def fetch_weather() -> Any:
            return await self.collaborators.weather.get_live(user_id=user_id, text=text, lat=lat, lon=lon, state=state)

        async def fetch_news() -> Any:
            if not user_id:
                return []
            return await self.collaborators.news.get_recent_for_user(user_id=user_id, limit=self.news_limit)

        async def fetch_stock() -> Any:
            if not ticker:
                return None
            return await self.collaborators.stocks.quote(user_id=user_id, ticker=ticker)

        weather, news, stock = await asyncio.gather(
            self._guarded("weather", fetch_weather, errors),
            self._guarded("news", fetch_news, errors),
            self._guarded("stocks", fetch_stock, errors),
        )

        weather_geo = None
        if isinstance(weather, dict):
            weather = dict(weather)
            geo = weather.pop("geo", None)
            weather_geo = geo if isinstance(geo, dict) else None
        else:
            weather = None
        if weather_geo is None and lat is not None and lon is not None:
            weather_geo = {"lat": lat, "lon": lon, "name": None, "country": None}

        news_items = [item for item in news if isinstance(item, dict)] if isinstance(news, list) else []
        return LiveContext(
            weather=weather,
            weather_geo=weather_geo,
            news=news_items[: self.news_limit],
            stock=stock if isinstance(stock, dict) else None,
            ticker=ticker,
            errors=errors,
        )
