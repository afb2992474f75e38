"""Markers embedded in comment bodies.

Every comment the bot writes carries ``REVIEW_MARKER`` so a comment event
caused by the bot itself can never start another review.
"""

from __future__ import annotations

import re

BOT_HANDLE = "@reviewrelay"
REVIEW_MARKER = "<!-- reviewrelay-codereview -->"
SUGGESTION_MARKER = "<!-- reviewrelay-suggestion:{id} -->"

_COMMAND_RE = re.compile(r"@reviewrelay\s+start[-_ ]review\b", re.IGNORECASE)
_MENTION_RE = re.compile(r"(?<![\w-])@reviewrelay\b", re.IGNORECASE)
_SUGGESTION_ID_RE = re.compile(r"<!-- reviewrelay-suggestion:([^\s>]+) -->")


def is_bot_mention(body: str | None) -> bool:
    return bool(body) and bool(_MENTION_RE.search(body))


def is_review_command(body: str | None) -> bool:
    return bool(body) and bool(_COMMAND_RE.search(body))


def has_review_marker(body: str | None) -> bool:
    return bool(body) and REVIEW_MARKER in body


def suggestion_id_from_body(body: str | None) -> str | None:
    match = _SUGGESTION_ID_RE.search(body or "")
    return match.group(1) if match else None
