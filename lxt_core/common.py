from __future__ import annotations

import contextlib
import hashlib
import json
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]

    window = text[:limit]
    cut = max(window.rfind(". "), window.rfind("! "), window.rfind("? "), window.rfind("; "))
    if cut >= int(limit * 0.62):
        return window[: cut + 1].strip()

    cut = window.rfind(" ")
    if cut >= int(limit * 0.7):
        return window[:cut].strip()

    return (window[: limit - 3].rstrip() + "...").strip()


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def as_float(value: object, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else default
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            number = float(value.strip())
            return number if math.isfinite(number) else default
    return default


def as_number_or_none(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def iso_in(now: datetime, *, hours: float) -> str:
    return iso_utc(now + timedelta(hours=hours))


def parse_iso(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def sha1_hex(text: str) -> str:
    return hashlib.sha1(str(text).encode("utf-8", errors="ignore")).hexdigest()


def strip_json_fences(text: str) -> str:
    cleaned = (text or "").strip()
    cleaned = re.sub(r"<think>.*?</think>\s*", "", cleaned, flags=re.IGNORECASE | re.DOTALL).strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?", "", cleaned, flags=re.IGNORECASE).strip()
        cleaned = re.sub(r"```$", "", cleaned).strip()
    return cleaned


def extract_first_json_object(text: str) -> dict[str, Any] | None:
    """Best-effort lookup of one JSON object embedded in free text."""
    cleaned = strip_json_fences(text)
    if not cleaned:
        return None
    with contextlib.suppress(json.JSONDecodeError):
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
