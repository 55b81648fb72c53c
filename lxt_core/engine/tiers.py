from __future__ import annotations

from dataclasses import dataclass

TIERS = ("core", "plus", "pro")
_TIER_RANK = {name: rank for rank, name in enumerate(TIERS)}

FEATURE_MIN_TIER: dict[str, str] = {
    "daily_brief": "plus",
    "inbox_summarize": "plus",
    "signal_scan": "pro",
    "proactive_alerts": "pro",
}

FEATURE_LABELS: dict[str, str] = {
    "daily_brief": "Daily brief",
    "inbox_summarize": "Inbox summaries",
    "signal_scan": "Signal scan",
    "proactive_alerts": "Proactive alerts",
}


@dataclass(frozen=True, slots=True)
class GateResult:
    allowed: bool
    feature: str
    required_tier: str
    teaser: str = ""


def normalize_tier(value: object) -> str:
    raw = str(value or "").strip().lower()
    return raw if raw in _TIER_RANK else "core"


def tier_at_least(tier: object, minimum: str) -> bool:
    return _TIER_RANK[normalize_tier(tier)] >= _TIER_RANK[normalize_tier(minimum)]


def require_feature_or_tease(tier: object, feature: str) -> GateResult:
    # Features missing from the table are open to everyone.
    required = FEATURE_MIN_TIER.get(feature, "core")
    if tier_at_least(tier, required):
        return GateResult(allowed=True, feature=feature, required_tier=required)

    label = FEATURE_LABELS.get(feature, feature.replace("_", " ").capitalize())
    plan = f"Loravo {required.capitalize()}"
    teaser = f"{label} is a {plan} feature. Upgrade to {required.capitalize()} to unlock it."
    return GateResult(allowed=False, feature=feature, required_tier=required, teaser=teaser)
