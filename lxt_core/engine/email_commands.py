"""Parse chat-style mail commands and render message lists for replies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable

from ..common import collapse_spaces

EMAIL_LIST_LIMIT = 6
SNIPPET_CHARS = 120

_SEND_RE = re.compile(
    r"(?:send (?:an )?email to|email)\s+(?P<to>[^\s]+@[^\s]+)\s+subject\s+(?P<subject>.+?)\s+body\s+(?P<body>[\s\S]+)",
    re.IGNORECASE,
)
_REPLY_LATEST_RE = re.compile(r"reply to (?:the )?(?:latest|last) email[:\-]?\s*(?P<body>[\s\S]+)", re.IGNORECASE)
_REPLY_ID_RE = re.compile(
    r"reply to (?:message )?id\s+(?P<id>[a-zA-Z0-9_\-]+)[:\-]?\s*(?P<body>[\s\S]+)",
    re.IGNORECASE,
)
_SUMMARIZE_RE = re.compile(r"summari[sz]e.*(inbox|emails|email)", re.IGNORECASE)
_IMPORTANT_RE = re.compile(
    r"(important|urgent).*(email|emails)|new important emails|unread emails|check my inbox",
    re.IGNORECASE,
)
_SEARCH_RE = re.compile(r"search (?:my )?(?:email|gmail|inbox|mail) for\s+(?P<query>[\s\S]+)", re.IGNORECASE)

USAGE_HINT = (
    "Tell me what you want:\n"
    "- \"new important emails\"\n"
    "- \"summarize my inbox\"\n"
    "- \"search my email for paypal\"\n"
    "- \"send email to a@b.com subject Hi body Hello...\"\n"
    "- \"reply to latest email: ...\""
)
SEND_FORMAT_HINT = "Send format: send email to someone@email.com subject Your subject body Your message"
NOT_CONNECTED_HINT = "No email account is connected for this user yet. Connect Gmail, Outlook or Yahoo first, then try again."


@dataclass(frozen=True, slots=True)
class EmailCommand:
    kind: str
    to: str = ""
    subject: str = ""
    body: str = ""
    message_id: str = ""
    query: str = ""


def parse_email_command(text: str) -> EmailCommand:
    raw = str(text or "").strip()

    match = _SEND_RE.search(raw)
    if match:
        return EmailCommand(
            kind="send",
            to=match.group("to").strip(),
            subject=match.group("subject").strip(),
            body=match.group("body").strip(),
        )

    match = _REPLY_LATEST_RE.search(raw)
    if match:
        return EmailCommand(kind="reply_latest", body=match.group("body").strip())

    match = _REPLY_ID_RE.search(raw)
    if match:
        return EmailCommand(kind="reply_id", message_id=match.group("id").strip(), body=match.group("body").strip())

    if _SUMMARIZE_RE.search(raw):
        return EmailCommand(kind="summarize")
    if _IMPORTANT_RE.search(raw):
        return EmailCommand(kind="important")

    match = _SEARCH_RE.search(raw)
    if match:
        return EmailCommand(kind="search", query=match.group("query").strip())

    return EmailCommand(kind="unknown")


def format_email_list(items: Iterable[Dict[str, Any]], limit: int = EMAIL_LIST_LIMIT) -> str:
    lines: list[str] = []
    for index, item in enumerate(list(items)[:limit], start=1):
        subject = str(item.get("subject") or "").strip() or "(no subject)"
        sender = str(item.get("from") or "").strip() or "(unknown sender)"
        snippet = collapse_spaces(str(item.get("snippet") or ""))[:SNIPPET_CHARS]
        entry = f"{index}) {subject}\n   From: {sender}\n   id: {item.get('id')}"
        if snippet:
            entry += f" - {snippet}"
        lines.append(entry)
    return "\n".join(lines) if lines else "No emails found."
