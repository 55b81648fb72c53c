"""Per-intent shortcuts that answer without the decision pipeline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from ..common import as_number_or_none
from ..memory.models import UserState
from ..prompts.reply import reply_text
from ..services.collaborators import Collaborators, EmailNotConnectedError
from ..services.weather import extract_city, format_weather_one_liner
from .email_commands import (
    EMAIL_LIST_LIMIT,
    NOT_CONNECTED_HINT,
    SEND_FORMAT_HINT,
    USAGE_HINT,
    EmailCommand,
    format_email_list,
    parse_email_command,
)
from .live_context import LiveContext
from .reply import IDENTITY_REPLY, ReplyOrchestrator, ReplyResult
from .tiers import require_feature_or_tease
from .verdict import hold_verdict, sanitize_verdict

logger = logging.getLogger("lxt_core.fastpath")

GREETING_REPLY = "Hey, what's on your mind?"
NO_SIGNALS_REPLY = "No strong signals right now."
FASTPATH_INTENTS = frozenset({"greeting", "weather", "news", "stocks", "email", "daily_brief", "signal_scan", "chat"})


@dataclass(slots=True)
class Turn:
    """Everything a handler may read about the current request."""

    text: str
    raw_text: str
    user_id: str | None
    choice: str
    mode: str
    state: UserState
    memory: List[str]
    live: LiveContext
    now: datetime
    style: str = "human"
    images: tuple[str, ...] = ()
    lat: float | None = None
    lon: float | None = None
    voice_line: str = ""
    rephrase_hint: str = ""

    def reply_context(self) -> Dict[str, Any]:
        return self.live.for_reply(state=self.state.to_dict(), lat=self.lat, lon=self.lon)


@dataclass(slots=True)
class FastPathResult:
    reply: str
    provider: str
    route: str
    reply_provider: str = ""
    tried_reply: List[str] = field(default_factory=list)
    lxt1: Dict[str, Any] | None = None
    mode: str | None = "instant"
    errors: Dict[str, str] = field(default_factory=dict)
    state_patch: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.reply_provider:
            self.reply_provider = self.route
        if not self.tried_reply:
            self.tried_reply = [self.reply_provider]


def format_quote(stock: Dict[str, Any]) -> str | None:
    ticker = str(stock.get("ticker") or "").upper()
    price = as_number_or_none(stock.get("price"))
    if not ticker or price is None:
        return None
    currency = str(stock.get("currency") or "").strip()
    line = f"{ticker}: {price:,.2f}" + (f" {currency}" if currency else "")
    change = as_number_or_none(stock.get("change_pct"))
    if change is not None:
        line += f" ({change:+.2f}% today)"
    return line + "."


class FastPathHandlers:
    def __init__(self, collaborators: Collaborators, replies: ReplyOrchestrator) -> None:
        self.collaborators = collaborators
        self.replies = replies

    async def handle(self, intent: str, turn: Turn) -> FastPathResult | None:
        handler = getattr(self, intent, None) if intent in FASTPATH_INTENTS else None
        if handler is None:
            return None
        return await handler(turn)

    async def _compose(
        self,
        turn: Turn,
        *,
        verdict: Dict[str, Any] | None,
        instruction: str = "",
        text: str | None = None,
    ) -> ReplyResult:
        return await self.replies.reply(
            choice=turn.choice,
            text=turn.text if text is None else text,
            verdict=verdict,
            live_context=turn.reply_context(),
            voice_line=turn.voice_line,
            voice_profile=turn.state.voice_profile,
            rephrase_hint=turn.rephrase_hint,
            style=turn.style,
            instruction=instruction,
            images=turn.images,
            length_text=turn.raw_text,
        )

    def _composed(self, result: ReplyResult, *, provider: str, route: str, **extra: Any) -> FastPathResult:
        return FastPathResult(
            reply=result.reply,
            provider=provider,
            route=route,
            reply_provider=result.provider,
            tried_reply=list(result.tried),
            errors=result.error_entries(),
            **extra,
        )

    def _gate(self, turn: Turn, feature: str) -> FastPathResult | None:
        gate = require_feature_or_tease(turn.state.plan_tier, feature)
        if gate.allowed:
            return None
        logger.info("Feature %s gated for user=%s tier=%s", feature, turn.user_id, turn.state.plan_tier)
        return FastPathResult(reply=gate.teaser, provider="loravo_fastpath", route="tier_gate")

    async def identity(self, turn: Turn) -> FastPathResult:
        verdict = sanitize_verdict(
            {
                "verdict": "HOLD",
                "confidence": 0.85,
                "one_liner": "Identity request.",
                "actions": [{"now": "Ask what they want to do", "time": "today", "effort": "low"}],
            },
            now=turn.now,
        )
        return FastPathResult(reply=IDENTITY_REPLY, provider="loravo_fastpath", route="fastpath", lxt1=verdict)

    async def greeting(self, turn: Turn) -> FastPathResult:
        return FastPathResult(reply=GREETING_REPLY, provider="loravo_fastpath", route="fastpath")

    async def weather(self, turn: Turn) -> FastPathResult:
        geo = turn.live.weather_geo or {}
        if turn.live.weather:
            line = format_weather_one_liner(turn.live.weather, geo.get("name"))
            reply = line or "I have your weather. Do you want current conditions or the next 24 hours?"
            patch = {}
            if geo.get("name"):
                patch = {"last_city": geo.get("name"), "last_country": geo.get("country")}
            return FastPathResult(reply=reply, provider="loravo_weather", route="weather_fast", state_patch=patch)

        city = extract_city(turn.text)
        if city:
            ask = f"I can't reach live weather for {city} right now. Should I retry, or would you rather share your location?"
        else:
            ask = "Which city are you in (or can I use your location), and do you want current conditions or the next 24 hours?"
        return FastPathResult(reply=ask, provider="loravo_weather", route="weather_fast")

    async def news(self, turn: Turn) -> FastPathResult:
        try:
            summary = await self.collaborators.news.summarize_for_chat(
                user_id=turn.user_id,
                memory=turn.memory,
                items=turn.live.news,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("News summary failed for user=%s: %s", turn.user_id, exc)
            result = await self._compose(
                turn,
                verdict=hold_verdict("News summary.", now=turn.now),
                instruction=reply_text("news_summary_prompt"),
            )
            fallback = self._composed(result, provider="loravo_news", route="news_fast", mode=turn.mode)
            fallback.errors["news"] = str(exc) or exc.__class__.__name__
            return fallback

        reply = str(summary or "").strip() or "Nothing urgent on your radar right now."
        return FastPathResult(reply=reply, provider="loravo_news", route="news_fast", mode=turn.mode)

    async def stocks(self, turn: Turn) -> FastPathResult:
        stock = turn.live.stock
        line = format_quote(stock) if stock else None
        if line:
            reply = line
        elif turn.live.ticker:
            reply = f"I couldn't get a quote for {turn.live.ticker} right now. Try again in a minute."
        else:
            reply = "Which ticker should I check? Something like $AAPL works."
        result = FastPathResult(reply=reply, provider="loravo_stocks", route="stocks_fast")
        if "stocks" in turn.live.errors:
            result.errors["stocks"] = turn.live.errors["stocks"]
        return result

    async def daily_brief(self, turn: Turn) -> FastPathResult:
        gated = self._gate(turn, "daily_brief")
        if gated is not None:
            return gated
        verdict = hold_verdict("Daily brief.", signals=turn.live.weather_signals(), now=turn.now)
        result = await self._compose(turn, verdict=verdict, instruction=reply_text("daily_brief_prompt"))
        return self._composed(result, provider="loravo_brief", route="brief_fast", mode=turn.mode)

    async def signal_scan(self, turn: Turn) -> FastPathResult:
        gated = self._gate(turn, "signal_scan")
        if gated is not None:
            return gated
        try:
            scan = await self.collaborators.signals.scan(
                user_id=turn.user_id,
                live_context={"weather": turn.live.weather, "news": turn.live.news, "stock": turn.live.stock},
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Signal scan failed for user=%s: %s", turn.user_id, exc)
            degraded = FastPathResult(
                reply=NO_SIGNALS_REPLY,
                provider="loravo_signals",
                route="signal_fast",
                lxt1=hold_verdict(NO_SIGNALS_REPLY, now=turn.now),
                mode=turn.mode,
            )
            degraded.errors["signals"] = str(exc) or exc.__class__.__name__
            return degraded

        scan = scan if isinstance(scan, dict) else {}
        signals = list(scan.get("signals") or [])
        summary = str(scan.get("summary") or "").strip() or NO_SIGNALS_REPLY
        verdict = hold_verdict(summary, signals=signals, now=turn.now)
        result = await self._compose(turn, verdict=verdict, instruction=reply_text("signal_scan_prompt"))
        composed = self._composed(result, provider="loravo_signals", route="signal_fast", lxt1=verdict, mode=turn.mode)
        if result.failed:
            composed.reply = summary
        return composed

    async def chat(self, turn: Turn) -> FastPathResult:
        verdict = hold_verdict("General chat.", signals=turn.live.weather_signals(), now=turn.now)
        result = await self._compose(turn, verdict=verdict)
        return self._composed(result, provider=result.provider, route="chat_fast", mode=turn.mode)

    async def email(self, turn: Turn) -> FastPathResult:
        if not turn.user_id:
            return self._email_result("To use email, I need your user_id (the same one you connected your mailbox with).")

        command = parse_email_command(turn.raw_text)
        if command.kind == "unknown":
            return self._email_result(USAGE_HINT)
        if command.kind == "summarize":
            gated = self._gate(turn, "inbox_summarize")
            if gated is not None:
                return gated

        try:
            connected = await self.collaborators.email.get_connected_providers(turn.user_id)
            if not connected:
                return self._email_result(NOT_CONNECTED_HINT)
            preferred = turn.state.preferred_email_provider
            mailbox = preferred if preferred in connected else connected[0]
            return await self._run_email_command(turn, command, mailbox)
        except asyncio.CancelledError:
            raise
        except EmailNotConnectedError as exc:
            logger.info("Email not connected for user=%s: %s", turn.user_id, exc)
            result = self._email_result(NOT_CONNECTED_HINT)
            result.errors["email"] = str(exc) or exc.__class__.__name__
            return result
        except Exception as exc:
            logger.warning("Email command %s failed for user=%s: %s", command.kind, turn.user_id, exc)
            result = self._email_result(f"Email error: {exc}")
            result.errors["email"] = str(exc) or exc.__class__.__name__
            return result

    def _email_result(self, reply: str) -> FastPathResult:
        return FastPathResult(reply=reply, provider="loravo_email", route="email_fast")

    async def _run_email_command(self, turn: Turn, command: EmailCommand, mailbox: str) -> FastPathResult:
        email = self.collaborators.email
        user_id = str(turn.user_id)

        if command.kind == "important":
            items = await email.list_messages(
                provider=mailbox,
                user_id=user_id,
                query="newer_than:7d (is:unread OR category:primary)",
                max_results=EMAIL_LIST_LIMIT,
            )
            if not items:
                return self._email_result("No unread or important emails in the last 7 days.")
            return self._email_result(
                f"Here are your top unread/important emails:\n\n{format_email_list(items)}\n\n"
                "Tell me \"summarize my inbox\" or \"reply to latest email: ...\""
            )

        if command.kind == "search":
            query = command.query
            items = await email.list_messages(
                provider=mailbox,
                user_id=user_id,
                query=f"newer_than:180d {query}" if query else "newer_than:30d",
                max_results=EMAIL_LIST_LIMIT,
            )
            if not items:
                return self._email_result(f"No matches for: \"{query}\".")
            return self._email_result(
                f"Top matches:\n\n{format_email_list(items)}\n\nTo answer one, say \"reply to id <id>: ...\""
            )

        if command.kind == "summarize":
            items = await email.list_messages(
                provider=mailbox,
                user_id=user_id,
                query="newer_than:7d",
                max_results=EMAIL_LIST_LIMIT,
            )
            if not items:
                return self._email_result("No emails found in the last 7 days.")
            listing = format_email_list(items)
            result = await self._compose(
                turn,
                verdict=hold_verdict("Inbox summary.", now=turn.now),
                instruction=reply_text("inbox_summary_prompt"),
                text=f"{turn.raw_text}\n\n{listing}",
            )
            composed = self._composed(result, provider="loravo_email", route="email_fast")
            if result.failed:
                composed.reply = listing
            return composed

        if command.kind == "send":
            if not command.to or not command.body:
                return self._email_result(SEND_FORMAT_HINT)
            sent = await email.send(
                provider=mailbox,
                user_id=user_id,
                to=command.to,
                subject=command.subject or "Loravo",
                body=command.body,
            )
            return self._email_result(f"Sent.\nMessage id: {sent.get('id')}")

        if command.kind == "reply_latest":
            sent = await email.reply_latest(provider=mailbox, user_id=user_id, body=command.body)
            return self._email_result(f"Replied to your latest email.\nMessage id: {sent.get('id')}")

        sent = await email.reply_by_id(
            provider=mailbox,
            user_id=user_id,
            message_id=command.message_id,
            body=command.body,
        )
        return self._email_result(f"Replied to {command.message_id}.\nMessage id: {sent.get('id')}")
