"""LXT1 verdict object: schema, sanitizer and deterministic fallback.

The sanitizer is the only place that turns provider output into a verdict.
Whatever comes in (dict, list, None, junk), what comes out always has the
seven LXT1 fields with their enum values and bounds.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Iterable

from ..common import as_float, clamp, collapse_spaces, iso_in, parse_iso, utc_now

VERDICTS = ("HOLD", "PREPARE", "MOVE", "AVOID")
DIRECTIONS = ("up", "down", "neutral")
ACTION_TIMES = ("today", "this_week", "this_month")
EFFORTS = ("low", "med", "high")

DEFAULT_NEXT_CHECK_HOURS = 6.0
FALLBACK_NEXT_CHECK_HOURS = 1.0
FALLBACK_CONFIDENCE = 0.55
MAX_SIGNALS = 12
MAX_ACTIONS = 8
MAX_WATCHOUTS = 8

LXT1_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["verdict", "confidence", "one_liner", "signals", "actions", "watchouts", "next_check"],
    "properties": {
        "verdict": {"type": "string", "enum": list(VERDICTS)},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "one_liner": {"type": "string"},
        "signals": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["name", "direction", "weight", "why"],
                "properties": {
                    "name": {"type": "string"},
                    "direction": {"type": "string", "enum": list(DIRECTIONS)},
                    "weight": {"type": "number"},
                    "why": {"type": "string"},
                },
            },
        },
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["now", "time", "effort"],
                "properties": {
                    "now": {"type": "string"},
                    "time": {"type": "string", "enum": list(ACTION_TIMES)},
                    "effort": {"type": "string", "enum": list(EFFORTS)},
                },
            },
        },
        "watchouts": {"type": "array", "items": {"type": "string"}},
        "next_check": {"type": "string"},
    },
}


def lxt1_schema() -> dict[str, Any]:
    return copy.deepcopy(LXT1_SCHEMA)


def _text(value: object, default: str = "") -> str:
    if value is None or isinstance(value, (dict, list)):
        return default
    cleaned = collapse_spaces(str(value))
    return cleaned or default


def _enum(value: object, allowed: tuple[str, ...], default: str, *, upper: bool = False) -> str:
    raw = _text(value)
    raw = raw.upper() if upper else raw.lower()
    return raw if raw in allowed else default


def sanitize_signal(item: object) -> dict[str, Any] | None:
    if not isinstance(item, dict):
        return None
    name = _text(item.get("name"))
    if not name:
        return None
    return {
        "name": name,
        "direction": _enum(item.get("direction"), DIRECTIONS, "neutral"),
        "weight": round(clamp(as_float(item.get("weight"), 0.0), -1.0, 1.0), 2),
        "why": _text(item.get("why")),
    }


def sanitize_action(item: object) -> dict[str, Any] | None:
    if not isinstance(item, dict):
        return None
    now = _text(item.get("now"))
    if not now:
        return None
    return {
        "now": now,
        "time": _enum(item.get("time"), ACTION_TIMES, "today"),
        "effort": _enum(item.get("effort"), EFFORTS, "low"),
    }


def sanitize_signals(items: object, *, limit: int = MAX_SIGNALS) -> list[dict[str, Any]]:
    if not isinstance(items, list):
        return []
    cleaned = [sig for sig in (sanitize_signal(item) for item in items) if sig is not None]
    return cleaned[:limit]


def _sanitize_actions(items: object) -> list[dict[str, Any]]:
    if not isinstance(items, list):
        return []
    cleaned = [act for act in (sanitize_action(item) for item in items) if act is not None]
    return cleaned[:MAX_ACTIONS]


def _sanitize_watchouts(items: object) -> list[str]:
    if not isinstance(items, list):
        return []
    cleaned = [_text(item) for item in items]
    return [item for item in cleaned if item][:MAX_WATCHOUTS]


def sanitize_verdict(raw: object, *, now: datetime | None = None) -> dict[str, Any]:
    """Coerce anything into a schema-valid LXT1 object.

    Unknown verdicts become HOLD, non-numeric confidence becomes 0.6, missing
    arrays become empty. ``next_check`` is always reset to now + 6 hours; a
    model-supplied value is discarded on purpose.
    """
    moment = now or utc_now()
    data = raw if isinstance(raw, dict) else {}

    confidence_raw = data.get("confidence")
    if isinstance(confidence_raw, bool) or not isinstance(confidence_raw, (int, float, str)):
        confidence = 0.6
    else:
        confidence = as_float(confidence_raw, 0.6)

    return {
        "verdict": _enum(data.get("verdict"), VERDICTS, "HOLD", upper=True),
        "confidence": clamp(round(confidence, 2), 0.0, 1.0),
        "one_liner": _text(data.get("one_liner"), "OK"),
        "signals": sanitize_signals(data.get("signals")),
        "actions": _sanitize_actions(data.get("actions")),
        "watchouts": _sanitize_watchouts(data.get("watchouts")),
        "next_check": iso_in(moment, hours=DEFAULT_NEXT_CHECK_HOURS),
    }


def safe_fallback_verdict(now: datetime | None = None) -> dict[str, Any]:
    moment = now or utc_now()
    return {
        "verdict": "PREPARE",
        "confidence": FALLBACK_CONFIDENCE,
        "one_liner": "Providers are unavailable right now. Retry shortly.",
        "signals": [],
        "actions": [{"now": "Retry in 30-60 seconds", "time": "today", "effort": "low"}],
        "watchouts": ["Temporary provider outage"],
        "next_check": iso_in(moment, hours=FALLBACK_NEXT_CHECK_HOURS),
    }


def hold_verdict(one_liner: str, *, confidence: float = 0.8, signals: Iterable[dict[str, Any]] = (), now: datetime | None = None) -> dict[str, Any]:
    return sanitize_verdict(
        {
            "verdict": "HOLD",
            "confidence": confidence,
            "one_liner": one_liner,
            "signals": list(signals),
            "actions": [],
            "watchouts": [],
        },
        now=now,
    )


def merge_signals(verdict: dict[str, Any], extra: list[dict[str, Any]]) -> dict[str, Any]:
    """Prepend locally derived signals, keeping the list within bounds."""
    if not extra:
        return verdict
    merged = dict(verdict)
    merged["signals"] = sanitize_signals([*extra, *verdict.get("signals", [])])
    return merged


def is_valid_verdict(obj: object, *, now: datetime | None = None) -> bool:
    """Structural check used by tests and diagnostics."""
    if not isinstance(obj, dict):
        return False
    if obj.get("verdict") not in VERDICTS:
        return False
    confidence = obj.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return False
    if not 0.0 <= float(confidence) <= 1.0:
        return False
    for key in ("signals", "actions", "watchouts"):
        if not isinstance(obj.get(key), list):
            return False
    for sig in obj["signals"]:
        if not isinstance(sig, dict) or sig.get("direction") not in DIRECTIONS:
            return False
    for act in obj["actions"]:
        if not isinstance(act, dict) or act.get("time") not in ACTION_TIMES or act.get("effort") not in EFFORTS:
            return False
    next_check = parse_iso(obj.get("next_check"))
    if next_check is None:
        return False
    return next_check > (now or utc_now())
