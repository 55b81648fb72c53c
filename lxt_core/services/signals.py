from __future__ import annotations

from typing import Any, Dict, List

from ..common import as_number_or_none, collapse_spaces, sha1_hex, truncate
from .weather import weather_signals

_SEVERITY_WEIGHTS = {"critical": 0.35, "high": 0.25, "medium": 0.1}
STOCK_MOVE_PCT = 2.0
MAX_SCAN_SIGNALS = 8


def _news_signals(items: Any) -> List[Dict[str, Any]]:
    signals: List[Dict[str, Any]] = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        severity = str(item.get("severity") or "").strip().lower()
        weight = _SEVERITY_WEIGHTS.get(severity)
        title = collapse_spaces(str(item.get("title") or ""))
        if weight is None or not title:
            continue
        why = collapse_spaces(str(item.get("action") or "")) or f"{severity.capitalize()} severity in your area."
        signals.append({"name": truncate(title, 90), "direction": "down", "weight": weight, "why": why})
    return signals


def _stock_signals(stock: Any) -> List[Dict[str, Any]]:
    if not isinstance(stock, dict):
        return []
    change = as_number_or_none(stock.get("change_pct"))
    ticker = str(stock.get("ticker") or "").upper()
    if change is None or not ticker or abs(change) < STOCK_MOVE_PCT:
        return []
    direction = "up" if change > 0 else "down"
    return [
        {
            "name": f"{ticker} moved {change:+.1f}%",
            "direction": direction,
            "weight": round(min(0.4, abs(change) / 20.0), 2),
            "why": "Large daily move; check exposure before acting.",
        }
    ]


class HeuristicSignalsService:
    """Rule-based signal scan over the live context; no model calls."""

    async def scan(self, *, user_id: str | None, live_context: Dict[str, Any]) -> Dict[str, Any]:
        context = live_context or {}
        signals = [
            *_news_signals(context.get("news")),
            *weather_signals(context.get("weather")),
            *_stock_signals(context.get("stock")),
        ]
        signals.sort(key=lambda sig: abs(float(sig["weight"])), reverse=True)
        signals = signals[:MAX_SCAN_SIGNALS]
        if not signals:
            summary = "No strong signals right now. Nothing needs your attention."
        else:
            top = signals[0]
            summary = f"{len(signals)} signal(s). Top: {top['name']}. {top['why']}"
        return {"signals": signals, "summary": summary}

    async def proactive(
        self,
        *,
        user_id: str,
        live_context: Dict[str, Any],
        state: Dict[str, Any],
    ) -> Dict[str, Any] | None:
        result = await self.scan(user_id=user_id, live_context=live_context)
        signals = result["signals"]
        if not signals:
            return None
        top = signals[0]
        message = f"Heads up: {top['name']}. {top['why']}"
        alert_hash = sha1_hex(message)
        if alert_hash == str((state or {}).get("last_alert_hash") or ""):
            return None
        return {"message": message, "hash": alert_hash, "signals": signals}
