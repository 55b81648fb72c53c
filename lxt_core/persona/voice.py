from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from ..common import collapse_spaces, iso_utc, parse_iso, truncate
from ..prompts.persona import VOICE_PROFILE_MAX_CHARS

logger = logging.getLogger("lxt_core.persona")


def voice_profile_due(updated_at: object, *, now: datetime, refresh_days: int) -> bool:
    last = parse_iso(updated_at)
    if last is None:
        return True
    return now - last >= timedelta(days=max(1, int(refresh_days)))


async def refresh_voice_profile(
    persona: Any,
    *,
    user_id: str,
    updated_at: object,
    memory: Sequence[str],
    now: datetime,
    refresh_days: int,
    timeout_seconds: float | None = None,
) -> dict[str, Any]:
    """Return a state patch with a fresh tone summary, or ``{}`` when nothing is due.

    Runs at most once per ``refresh_days`` and never on an empty memory log.
    ``timeout_seconds`` bounds the persona call; ``None`` waits indefinitely. An
    empty summary leaves the stored profile alone but still moves the timestamp
    so a quiet persona backend is not asked again on every turn.
    """
    if not memory or not voice_profile_due(updated_at, now=now, refresh_days=refresh_days):
        return {}
    summary = await asyncio.wait_for(
        persona.summarize_voice_profile(user_id=user_id, memory=list(memory)),
        timeout=timeout_seconds,
    )
    patch: dict[str, Any] = {"voice_profile_updated_at": iso_utc(now)}
    cleaned = truncate(collapse_spaces(str(summary or "")), VOICE_PROFILE_MAX_CHARS)
    if cleaned:
        patch["voice_profile"] = cleaned
    logger.info("Voice profile refreshed user=%s updated=%s", user_id, bool(cleaned))
    return patch
