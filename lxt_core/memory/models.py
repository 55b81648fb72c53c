from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..engine.tiers import normalize_tier
from ..engine.topic import normalize_topic
from ..persona.behavior import BehaviorProfile

# Columns a patch may touch. Anything else in a patch is ignored.
STATE_FIELDS = (
    "behavior_profile",
    "voice_profile",
    "voice_profile_updated_at",
    "last_topic",
    "plan_tier",
    "preferred_email_provider",
    "last_city",
    "last_country",
    "last_timezone",
    "last_alert_hash",
    "last_proactive_at",
)
JSON_FIELDS = frozenset({"behavior_profile", "last_topic"})


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _maybe_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="ignore")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


@dataclass(slots=True)
class UserState:
    user_id: str
    behavior_profile: BehaviorProfile = field(default_factory=BehaviorProfile)
    voice_profile: str = ""
    voice_profile_updated_at: str | None = None
    last_topic: dict[str, str] | None = None
    plan_tier: str = "core"
    preferred_email_provider: str | None = None
    last_city: str | None = None
    last_country: str | None = None
    last_timezone: str | None = None
    last_alert_hash: str | None = None
    last_proactive_at: str | None = None

    @classmethod
    def from_row(cls, user_id: str, row: dict[str, Any] | None) -> "UserState":
        data = dict(row or {})
        return cls(
            user_id=user_id,
            behavior_profile=BehaviorProfile.from_dict(_maybe_json(data.get("behavior_profile"))),
            voice_profile=str(data.get("voice_profile") or "").strip(),
            voice_profile_updated_at=_optional_text(data.get("voice_profile_updated_at")),
            last_topic=normalize_topic(_maybe_json(data.get("last_topic"))),
            plan_tier=normalize_tier(data.get("plan_tier")),
            preferred_email_provider=_optional_text(data.get("preferred_email_provider")),
            last_city=_optional_text(data.get("last_city")),
            last_country=_optional_text(data.get("last_country")),
            last_timezone=_optional_text(data.get("last_timezone")),
            last_alert_hash=_optional_text(data.get("last_alert_hash")),
            last_proactive_at=_optional_text(data.get("last_proactive_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "behavior_profile": self.behavior_profile.to_dict(),
            "voice_profile": self.voice_profile,
            "voice_profile_updated_at": self.voice_profile_updated_at,
            "last_topic": dict(self.last_topic) if self.last_topic else None,
            "plan_tier": self.plan_tier,
            "preferred_email_provider": self.preferred_email_provider,
            "last_city": self.last_city,
            "last_country": self.last_country,
            "last_timezone": self.last_timezone,
            "last_alert_hash": self.last_alert_hash,
            "last_proactive_at": self.last_proactive_at,
        }


def normalize_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Whitelist and coerce a state patch so stores never persist out-of-range values."""
    cleaned: dict[str, Any] = {}
    for key, value in (patch or {}).items():
        if key not in STATE_FIELDS:
            continue
        if key == "behavior_profile":
            cleaned[key] = BehaviorProfile.from_dict(value).to_dict()
        elif key == "last_topic":
            cleaned[key] = normalize_topic(value)
        elif key == "plan_tier":
            cleaned[key] = normalize_tier(value)
        elif key == "voice_profile":
            cleaned[key] = str(value or "").strip()
        else:
            cleaned[key] = _optional_text(value)
    return cleaned


def encode_column(key: str, value: Any) -> Any:
    if key in JSON_FIELDS and value is not None:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return value
