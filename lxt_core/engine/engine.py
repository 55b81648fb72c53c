"""Request-scoped pipeline: classify, shortcut or decide, reply, persist once."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping

from ..common import collapse_spaces, iso_utc, parse_iso, utc_now
from ..errors import UserInputError
from ..memory.base import StateStore
from ..memory.models import UserState
from ..persona.behavior import DEFAULT_ALPHA, extract_signals, merge_profile, voice_line
from ..persona.voice import refresh_voice_profile
from ..services.collaborators import Collaborators
from ..services.weather import format_weather_one_liner
from .decision import DecisionOrchestrator, DecisionResult
from .fastpath import FASTPATH_INTENTS, FastPathHandlers, FastPathResult, Turn
from .intent import classify_intent, is_identity_question, is_weather_question
from .live_context import LiveContext, LiveContextAdapter
from .mode import select_mode
from .providers import normalize_provider_choice
from .reply import ReplyOrchestrator
from .tiers import require_feature_or_tease
from .topic import expand_continuation, is_continuation, make_topic
from .verdict import merge_signals

logger = logging.getLogger("lxt_core.engine")

DEFAULT_IMAGE_PROMPT = "Take a look at the attached image(s) and tell me what matters."
REPHRASE_HINT = "Rephrase; avoid repeating last wording."
WEATHER_MIN_CONFIDENCE = 0.75
# Intents whose handlers never read the live context.
_NO_LIVE_CONTEXT = frozenset({"greeting", "email"})


def _coordinate(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass(slots=True)
class LXTRequest:
    text: str = ""
    user_id: str | None = None
    lat: float | None = None
    lon: float | None = None
    mode: str | None = None
    provider: str | None = None
    images: tuple[str, ...] = ()
    style: str | None = None
    force_decision: bool = False

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LXTRequest":
        images = payload.get("images") or ()
        if isinstance(images, str):
            images = (images,)
        return cls(
            text=str(payload.get("text") or ""),
            user_id=str(payload.get("user_id") or "").strip() or None,
            lat=_coordinate(payload.get("lat")),
            lon=_coordinate(payload.get("lon")),
            mode=payload.get("mode"),
            provider=payload.get("provider"),
            images=tuple(str(item) for item in images if str(item or "").strip()),
            style=payload.get("style"),
            force_decision=bool(payload.get("force_decision", False)),
        )


def _same_utterance(a: str, b: str) -> bool:
    return collapse_spaces(a).casefold() == collapse_spaces(b).casefold()


class LXTEngine:
    def __init__(
        self,
        *,
        store: StateStore,
        decision: DecisionOrchestrator,
        replies: ReplyOrchestrator,
        live: LiveContextAdapter,
        collaborators: Collaborators | None = None,
        default_provider: str = "trinity",
        memory_limit: int = 20,
        ema_alpha: float = DEFAULT_ALPHA,
        voice_refresh_days: int = 7,
        persona_timeout_seconds: float = 20.0,
        proactive_cooldown_minutes: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.decision = decision
        self.replies = replies
        self.live = live
        self.collaborators = collaborators or live.collaborators
        self.fastpath = FastPathHandlers(self.collaborators, replies)
        self.default_provider = normalize_provider_choice(default_provider)
        self.memory_limit = memory_limit
        self.ema_alpha = ema_alpha
        self.voice_refresh_days = voice_refresh_days
        self.persona_timeout_seconds = persona_timeout_seconds
        self.proactive_cooldown = timedelta(minutes=max(0, int(proactive_cooldown_minutes)))
        self.clock = clock

    async def start(self) -> None:
        await self.store.init()

    async def close(self) -> None:
        await self.store.close()

    async def _load(self, user_id: str | None, errors: Dict[str, str]) -> tuple[UserState, List[str]]:
        if not user_id:
            return UserState(user_id=""), []
        try:
            state, memory = await asyncio.gather(
                self.store.load_user_state(user_id),
                self.store.load_memory(user_id, limit=self.memory_limit),
            )
        except Exception as exc:
            logger.warning("State load failed for user=%s: %s", user_id, exc)
            errors["persistence"] = str(exc) or exc.__class__.__name__
            return UserState(user_id=user_id), []
        return state, list(memory)

    async def run(self, request: LXTRequest | Mapping[str, Any]) -> Dict[str, Any]:
        req = request if isinstance(request, LXTRequest) else LXTRequest.from_dict(request)
        raw_text = str(req.text or "").strip()
        if not raw_text and not req.images:
            raise UserInputError("Missing 'text' in request")
        if not raw_text:
            raw_text = DEFAULT_IMAGE_PROMPT

        now = self.clock()
        choice = normalize_provider_choice(req.provider, self.default_provider)
        errors: Dict[str, str] = {}
        user_id = req.user_id
        state, memory = await self._load(user_id, errors)

        # "more" on its own means: keep going on whatever we talked about last.
        more_mode = bool(state.last_topic) and is_continuation(raw_text)
        text = expand_continuation(state.last_topic) if more_mode and state.last_topic else raw_text
        intent = "chat" if more_mode else classify_intent(raw_text)
        mode, budget = select_mode(text, req.mode)

        if req.force_decision:
            intent = "decision"
        needs_live = not is_identity_question(raw_text) and intent not in _NO_LIVE_CONTEXT
        live = LiveContext()
        if needs_live:
            live = await self.live.build(
                user_id=user_id,
                text=raw_text,
                lat=req.lat,
                lon=req.lon,
                state=state.to_dict(),
            )
            errors.update(live.errors)

        turn = Turn(
            text=text,
            raw_text=raw_text,
            user_id=user_id,
            choice=choice,
            mode=mode,
            state=state,
            memory=memory,
            live=live,
            now=now,
            style=str(req.style or "human"),
            images=req.images,
            lat=req.lat,
            lon=req.lon,
            voice_line=voice_line(state.behavior_profile),
            rephrase_hint=REPHRASE_HINT if memory and _same_utterance(memory[0], raw_text) else "",
        )

        state_patch: Dict[str, Any] = {}
        if is_identity_question(raw_text):
            result = await self.fastpath.identity(turn)
            envelope = self._fastpath_envelope(result, mode, errors)
        elif not req.force_decision and intent in FASTPATH_INTENTS:
            result = await self.fastpath.handle(intent, turn)
            state_patch = result.state_patch
            envelope = self._fastpath_envelope(result, mode, errors)
        else:
            envelope = await self._decide_and_reply(turn, budget, errors, skip_reply=req.force_decision)

        logger.info(
            "Turn user=%s intent=%s mode=%s route=%s reply=%s",
            user_id or "-",
            intent,
            envelope["mode"],
            envelope["providers"]["decision"],
            envelope["providers"]["reply"],
        )
        if user_id:
            await self._persist(
                turn,
                intent=intent,
                more_mode=more_mode,
                extra_patch=state_patch,
                errors=envelope["_errors"],
            )
        return envelope

    def _fastpath_envelope(self, result: FastPathResult, mode: str, errors: Dict[str, str]) -> Dict[str, Any]:
        return {
            "provider": result.provider,
            "mode": result.mode or mode,
            "reply": result.reply,
            "lxt1": result.lxt1,
            "providers": {
                "decision": result.route,
                "reply": result.reply_provider,
                "triedDecision": [result.route],
                "triedReply": list(result.tried_reply),
            },
            "_errors": {**errors, **result.errors},
        }

    def _apply_live_context(self, decision: DecisionResult, turn: Turn) -> Dict[str, Any]:
        verdict = decision.verdict
        # The outage verdict is returned untouched.
        if decision.is_fallback:
            return verdict
        verdict = merge_signals(verdict, turn.live.weather_signals())
        if is_weather_question(turn.raw_text):
            geo = turn.live.weather_geo or {}
            line = format_weather_one_liner(turn.live.weather, geo.get("name"))
            if line:
                verdict = {
                    **verdict,
                    "one_liner": line,
                    "verdict": "HOLD",
                    "confidence": max(float(verdict["confidence"]), WEATHER_MIN_CONFIDENCE),
                }
        return verdict

    async def _decide_and_reply(
        self,
        turn: Turn,
        budget: int,
        errors: Dict[str, str],
        *,
        skip_reply: bool,
    ) -> Dict[str, Any]:
        decision = await self.decision.decide(
            choice=turn.choice,
            text=turn.text,
            memory=turn.memory,
            live_context=turn.live.compact(),
            max_tokens=budget,
            now=turn.now,
        )
        errors.update(decision.errors)
        verdict = self._apply_live_context(decision, turn)

        providers: Dict[str, Any] = {
            "decision": decision.provider,
            "reply": "skipped",
            "triedDecision": list(decision.tried),
            "triedReply": [],
        }
        reply: str | None = None
        if not skip_reply:
            result = await self.replies.reply(
                choice=turn.choice,
                text=turn.text,
                verdict=verdict,
                live_context=turn.reply_context(),
                voice_line=turn.voice_line,
                voice_profile=turn.state.voice_profile,
                rephrase_hint=turn.rephrase_hint,
                style=turn.style,
                images=turn.images,
                length_text=turn.raw_text,
            )
            reply = result.reply
            providers["reply"] = result.provider
            providers["triedReply"] = list(result.tried)
            errors.update(result.error_entries())

        return {
            "provider": turn.choice,
            "mode": turn.mode,
            "reply": reply,
            "lxt1": verdict,
            "providers": providers,
            "_errors": errors,
        }

    async def _persist(
        self,
        turn: Turn,
        *,
        intent: str,
        more_mode: bool,
        extra_patch: Dict[str, Any],
        errors: Dict[str, str],
    ) -> None:
        user_id = str(turn.user_id)
        patch: Dict[str, Any] = {}
        profile = merge_profile(
            turn.state.behavior_profile,
            extract_signals(turn.raw_text),
            alpha=self.ema_alpha,
            now=turn.now,
        )
        patch["behavior_profile"] = profile.to_dict()
        if not more_mode:
            patch["last_topic"] = make_topic(intent, turn.raw_text)

        try:
            patch.update(
                await refresh_voice_profile(
                    self.collaborators.persona,
                    user_id=user_id,
                    updated_at=turn.state.voice_profile_updated_at,
                    memory=turn.memory,
                    now=turn.now,
                    refresh_days=self.voice_refresh_days,
                    timeout_seconds=self.persona_timeout_seconds,
                )
            )
        except Exception as exc:
            logger.warning("Voice profile refresh failed for user=%s: %s", user_id, exc)
            errors["persona"] = str(exc) or exc.__class__.__name__
        patch.update(extra_patch)

        try:
            await self.store.append_memory(user_id, turn.raw_text)
            await self.store.upsert_user_state(user_id, patch)
        except Exception as exc:
            logger.warning("State persist failed for user=%s: %s", user_id, exc)
            errors["persistence"] = str(exc) or exc.__class__.__name__

    async def run_proactive(self, user_id: str) -> Dict[str, Any]:
        """Out-of-band insight check for one user; gated to Pro and rate limited."""
        now = self.clock()
        state = await self.store.load_user_state(user_id)
        gate = require_feature_or_tease(state.plan_tier, "proactive_alerts")
        if not gate.allowed:
            return {"status": "gated", "message": gate.teaser, "signals": []}

        last = parse_iso(state.last_proactive_at)
        if last is not None and now - last < self.proactive_cooldown:
            return {"status": "cooldown", "message": None, "signals": [], "next_at": iso_utc(last + self.proactive_cooldown)}

        live = await self.live.build(user_id=user_id, text="", state=state.to_dict())
        try:
            insight = await self.collaborators.signals.proactive(
                user_id=user_id,
                live_context={"weather": live.weather, "news": live.news, "stock": live.stock},
                state=state.to_dict(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Proactive signals failed for user=%s: %s", user_id, exc)
            errors = {**live.errors, "signals": str(exc) or exc.__class__.__name__}
            return {"status": "error", "message": None, "signals": [], "_errors": errors}

        patch: Dict[str, Any] = {"last_proactive_at": iso_utc(now)}
        if insight:
            patch["last_alert_hash"] = insight.get("hash")
        try:
            await self.store.upsert_user_state(user_id, patch)
        except Exception as exc:
            logger.warning("Proactive state persist failed for user=%s: %s", user_id, exc)
            live.errors["persistence"] = str(exc) or exc.__class__.__name__

        if not insight:
            return {"status": "quiet", "message": None, "signals": [], "_errors": dict(live.errors)}
        logger.info("Proactive insight for user=%s: %s", user_id, insight.get("message"))
        return {
            "status": "alert",
            "message": insight.get("message"),
            "signals": list(insight.get("signals") or []),
            "_errors": dict(live.errors),
        }
