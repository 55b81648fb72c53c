from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .json_loader import load_prompt_json, prompt_text

_DEFAULTS = {
    "voice_profile_system_prompt": (
        "You describe how a person writes so an assistant can mirror their tone. "
        "Read their recent messages and return ONE short paragraph (max 2 sentences) covering "
        "register, length preference and directness. "
        "No names, no facts about their life, no quotes. Plain text only."
    ),
    "voice_profile_user_prefix": "Recent messages (most recent first):",
}

VOICE_PROFILE_MAX_CHARS = 280


def _cfg() -> dict[str, Any]:
    return load_prompt_json("persona.json", _DEFAULTS)


def build_voice_profile_messages(memory: Sequence[str], limit: int = 30) -> List[Dict[str, str]]:
    cfg = _cfg()
    lines = [str(item).strip() for item in memory[:limit] if str(item or "").strip()]
    body = "\n".join(f"- {line}" for line in lines)
    return [
        {"role": "system", "content": prompt_text(cfg, "voice_profile_system_prompt", _DEFAULTS)},
        {"role": "user", "content": f"{prompt_text(cfg, 'voice_profile_user_prefix', _DEFAULTS)}\n{body}"},
    ]
