from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

from .json_loader import load_prompt_json, prompt_text

_DEFAULTS = {
    "decision_system_prompt": (
        "You are LXT-1 (Loravo decision engine).\n"
        "Return ONLY valid JSON that matches the schema. No extra text.\n\n"
        "Grounding rules:\n"
        "- Use ONLY: user message + memory + provided live context (if present).\n"
        "- Do NOT invent breaking news or facts.\n"
        "- If greeting/small talk: verdict=HOLD, signals=[], watchouts=[], actions simple.\n"
        "- Prefer calm, realistic outputs. If uncertain: confidence ~0.6 and verdict=HOLD."
    ),
    "decision_memory_prefix": "Memory (most recent first):",
    "decision_live_context_prefix": "Live context (trusted):",
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("decision.json", _DEFAULTS)


def format_memory(memory: Sequence[str], limit: int = 12) -> str:
    lines = [str(item).strip() for item in memory[:limit] if str(item or "").strip()]
    return "\n".join(f"- {line}" for line in lines)


def build_decision_messages(
    text: str,
    memory: Sequence[str],
    live_context: Dict[str, Any] | None,
) -> List[Dict[str, str]]:
    cfg = _cfg()
    messages = [{"role": "system", "content": prompt_text(cfg, "decision_system_prompt", _DEFAULTS)}]
    memory_block = format_memory(memory)
    if memory_block:
        prefix = prompt_text(cfg, "decision_memory_prefix", _DEFAULTS)
        messages.append({"role": "system", "content": f"{prefix}\n{memory_block}"})
    if live_context:
        prefix = prompt_text(cfg, "decision_live_context_prefix", _DEFAULTS)
        encoded = json.dumps(live_context, ensure_ascii=False, separators=(",", ":"))
        messages.append({"role": "system", "content": f"{prefix}\n{encoded}"})
    messages.append({"role": "user", "content": str(text or "")})
    return messages
