from __future__ import annotations

import json
from typing import Any, Dict, List

from .json_loader import load_prompt_json, prompt_text

_DEFAULTS = {
    "reply_system_prompt": (
        "You are LORAVO, a calm, intelligent assistant in a chat UI. "
        "Write naturally, calm and sharp.\n\n"
        "Voice:\n"
        "- Vary length naturally. short -> 1-2 sentences, normal -> 2-6 short sentences, "
        "deep -> up to ~10 short sentences.\n"
        "- Sound human, clear, modern.\n"
        "- Never say \"I'm an AI\", \"as an AI\", \"I don't have access\" or any model name.\n"
        "- Ask ONE short clarifying question only if truly needed.\n"
        "- If weather is requested and live_context.weather exists, use it.\n"
        "- If weather is requested and live_context.weather is missing, ask ONE short question "
        "(city or allow location).\n\n"
        "Hard rule: if asked what you are powered by, reply exactly \"Powered by LXT-1.\"\n"
        "Return ONLY the reply text. Never return JSON."
    ),
    "reply_voice_prefix": "Adapt to this user:",
    "reply_voice_profile_prefix": "Their usual tone:",
    "news_summary_prompt": (
        "Summarize the user's recent news items like a human.\n"
        "- 1 to 3 short sentences max.\n"
        "- No hype, no sources, no headlines list.\n"
        "- If severity is high or critical, include one next step."
    ),
    "inbox_summary_prompt": (
        "Summarize these emails into 3-6 short bullets. Highlight anything urgent."
    ),
    "daily_brief_prompt": (
        "Write the user's daily brief from the live context: weather first, then anything from "
        "their news that needs attention, then one suggested focus for today. 3-6 short sentences."
    ),
    "signal_scan_prompt": (
        "Explain these signals in plain words: which ones matter today and what to do about them. "
        "2-5 short sentences."
    ),
    "apology_reply": "Sorry, I couldn't put a reply together just now. Try again in a moment.",
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("reply.json", _DEFAULTS)


def reply_text(key: str) -> str:
    return prompt_text(_cfg(), key, _DEFAULTS)


def _verdict_summary(verdict: Dict[str, Any] | None) -> Dict[str, Any]:
    if not verdict:
        return {}
    return {
        "verdict": verdict.get("verdict"),
        "confidence": verdict.get("confidence"),
        "one_liner": verdict.get("one_liner"),
        "top_actions": list(verdict.get("actions") or [])[:3],
        "top_watchouts": list(verdict.get("watchouts") or [])[:3],
        "top_signals": list(verdict.get("signals") or [])[:4],
    }


def build_reply_messages(
    *,
    text: str,
    verdict: Dict[str, Any] | None,
    live_context: Dict[str, Any] | None,
    voice_line: str = "",
    voice_profile: str = "",
    rephrase_hint: str = "",
    depth: str = "normal",
    style: str = "human",
    instruction: str = "",
) -> List[Dict[str, str]]:
    cfg = _cfg()
    system_parts = [prompt_text(cfg, "reply_system_prompt", _DEFAULTS)]
    if voice_line:
        system_parts.append(f"{prompt_text(cfg, 'reply_voice_prefix', _DEFAULTS)} {voice_line}")
    if voice_profile:
        system_parts.append(f"{prompt_text(cfg, 'reply_voice_profile_prefix', _DEFAULTS)} {voice_profile}")
    if instruction:
        system_parts.append(instruction)

    payload = {
        "userText": str(text or ""),
        **_verdict_summary(verdict),
        "live_context": live_context or {},
        "style": style or "human",
        "last_reply_hint": rephrase_hint,
        "_length_hint": depth,
    }
    return [
        {"role": "system", "content": "\n\n".join(system_parts)},
        {"role": "user", "content": json.dumps(payload, ensure_ascii=False, separators=(",", ":"))},
    ]
