from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List

import aiohttp

from ..common import as_number_or_none, collapse_spaces, iso_utc, utc_now

logger = logging.getLogger("lxt_core.weather")

_CITY_RE = re.compile(r"\b(?:weather|forecast|temperature|temp)\s+(?:in|for)\s+([a-zA-Z\s.'-]{2,})$", re.IGNORECASE)

HEAVY_CLOUD_PCT = 90
COLD_TEMP_C = 3.5
HOT_TEMP_C = 28.0


def extract_city(text: str) -> str | None:
    """``weather in Edmonton`` / ``forecast for Paris`` -> the trailing place name."""
    cleaned = collapse_spaces(str(text or "")).rstrip("?!. ")
    match = _CITY_RE.search(cleaned)
    if match is None:
        return None
    city = match.group(1).strip(" .'-")
    return city if len(city) >= 2 else None


def normalize_weather(raw: Dict[str, Any] | None, *, now: datetime | None = None) -> Dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    main = raw.get("main") if isinstance(raw.get("main"), dict) else {}
    clouds = raw.get("clouds") if isinstance(raw.get("clouds"), dict) else {}
    wind = raw.get("wind") if isinstance(raw.get("wind"), dict) else {}
    conditions = raw.get("weather") if isinstance(raw.get("weather"), list) else []
    first = conditions[0] if conditions and isinstance(conditions[0], dict) else {}
    return {
        "city": raw.get("name") or None,
        "temp_c": as_number_or_none(main.get("temp")),
        "feels_like_c": as_number_or_none(main.get("feels_like")),
        "humidity_pct": as_number_or_none(main.get("humidity")),
        "clouds_pct": as_number_or_none(clouds.get("all")),
        "wind_mps": as_number_or_none(wind.get("speed")),
        "main": first.get("main") or None,
        "description": first.get("description") or None,
        "at": iso_utc(now or utc_now()),
    }


def weather_signals(weather: Dict[str, Any] | None) -> List[Dict[str, Any]]:
    if not weather:
        return []
    signals: List[Dict[str, Any]] = []
    clouds = as_number_or_none(weather.get("clouds_pct")) or 0.0
    temp = as_number_or_none(weather.get("temp_c"))

    if clouds >= HEAVY_CLOUD_PCT:
        signals.append(
            {
                "name": "Heavy cloud cover",
                "direction": "down",
                "weight": 0.15,
                "why": "Overcast conditions can correlate with travel delays.",
            }
        )
    if temp is not None and temp <= COLD_TEMP_C:
        signals.append(
            {
                "name": "Low temperature",
                "direction": "down",
                "weight": 0.2,
                "why": f"It's cold ({temp:.1f}°C), plan layers.",
            }
        )
    if temp is not None and temp >= HOT_TEMP_C:
        signals.append(
            {
                "name": "High temperature",
                "direction": "down",
                "weight": 0.12,
                "why": f"It's hot ({temp:.1f}°C), hydrate and dress light.",
            }
        )
    return signals


def format_weather_one_liner(weather: Dict[str, Any] | None, fallback_place: str | None = None) -> str | None:
    if not weather:
        return None
    parts: List[str] = []
    place = weather.get("city") or fallback_place
    if place:
        parts.append(f"{place}:")

    temp_raw = as_number_or_none(weather.get("temp_c"))
    feels_raw = as_number_or_none(weather.get("feels_like_c"))
    temp = round(temp_raw) if temp_raw is not None else None
    feels = round(feels_raw) if feels_raw is not None else None
    desc = weather.get("description") or weather.get("main")

    if temp is not None and desc:
        parts.append(f"{temp}°C and {desc}.")
    elif temp is not None:
        parts.append(f"{temp}°C right now.")
    elif desc:
        parts.append(f"{desc}.")

    if feels is not None and temp is not None and feels != temp:
        parts.append(f"Feels like {feels}°C.")
    line = collapse_spaces(" ".join(parts))
    return line or None


class OpenWeatherService:
    """Weather collaborator backed by OpenWeather geocoding + current conditions."""

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float,
        base_url: str = "https://api.openweathermap.org",
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None
        query = {**params, "appid": self.api_key}
        async with self._session.get(f"{self.base_url}{path}", params=query) as response:
            if response.status != 200:
                logger.warning("OpenWeather %s returned %s", path, response.status)
                return None
            return await response.json(content_type=None)

    async def geocode(self, city: str) -> Dict[str, Any] | None:
        if not self.api_key or not city:
            return None
        data = await self._get_json("/geo/1.0/direct", {"q": city, "limit": 1})
        hit = data[0] if isinstance(data, list) and data else None
        if not isinstance(hit, dict):
            return None
        lat = as_number_or_none(hit.get("lat"))
        lon = as_number_or_none(hit.get("lon"))
        if lat is None or lon is None:
            return None
        return {"lat": lat, "lon": lon, "name": hit.get("name") or city, "country": hit.get("country") or None}

    async def current(self, lat: float, lon: float) -> Dict[str, Any] | None:
        if not self.api_key:
            return None
        data = await self._get_json("/data/2.5/weather", {"lat": lat, "lon": lon, "units": "metric"})
        return data if isinstance(data, dict) else None

    async def get_live(
        self,
        *,
        user_id: str | None,
        text: str,
        lat: float | None,
        lon: float | None,
        state: Dict[str, Any] | None,
    ) -> Dict[str, Any] | None:
        if not self.api_key:
            return None
        geo: Dict[str, Any] | None
        if lat is not None and lon is not None:
            geo = {"lat": lat, "lon": lon, "name": None, "country": None}
        else:
            city = extract_city(text)
            if not city:
                return None
            geo = await self.geocode(city)
            if geo is None:
                return None

        raw = await self.current(geo["lat"], geo["lon"])
        weather = normalize_weather(raw)
        if weather is None:
            return None
        weather["geo"] = geo
        return weather
