from __future__ import annotations

import re
from typing import Any

from ..common import collapse_spaces, truncate

TOPICS = ("weather", "email", "stocks", "news", "daily_brief", "signal_scan", "plan", "chat")

CONTINUATION_PHRASES = frozenset(
    {
        "more",
        "go deeper",
        "deeper",
        "details",
        "more details",
        "tell me more",
        "go on",
    }
)

_PLAN_RE = re.compile(r"\b(plan|strategy|steps|roadmap|schedule|should i|decide|pros and cons)\b", re.IGNORECASE)

_INTENT_TOPIC = {
    "weather": "weather",
    "email": "email",
    "stocks": "stocks",
    "news": "news",
    "daily_brief": "daily_brief",
    "signal_scan": "signal_scan",
    "decision": "plan",
}

TOPIC_EXCERPT_CHARS = 160


def tag_topic(intent: str, text: str) -> str:
    topic = _INTENT_TOPIC.get(intent)
    if topic is not None:
        return topic
    if _PLAN_RE.search(str(text or "")):
        return "plan"
    return "chat"


def make_topic(intent: str, text: str) -> dict[str, str]:
    return {
        "kind": tag_topic(intent, text),
        "text": truncate(collapse_spaces(str(text or "")), TOPIC_EXCERPT_CHARS),
    }


def normalize_topic(value: Any) -> dict[str, str] | None:
    """Accept stored topics as dicts or bare tag strings. Unknown tags are dropped."""
    if isinstance(value, str):
        value = {"kind": value}
    if not isinstance(value, dict):
        return None
    kind = str(value.get("kind") or "").strip().lower()
    if kind not in TOPICS:
        return None
    return {"kind": kind, "text": collapse_spaces(str(value.get("text") or ""))}


def is_continuation(text: str) -> bool:
    cleaned = re.sub(r"[^\w\s]", "", str(text or "").lower())
    return collapse_spaces(cleaned) in CONTINUATION_PHRASES


def expand_continuation(topic: dict[str, str]) -> str:
    kind = topic.get("kind", "chat")
    prompt = f"Continue deeper on the last topic ({kind})."
    excerpt = topic.get("text", "")
    if excerpt:
        prompt += f" Last time the user said: {excerpt}"
    return prompt + " Add new detail instead of repeating."
