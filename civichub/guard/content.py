"""Deterministic content heuristics flagging messages not worth a model call."""

from __future__ import annotations

import re

MIN_LENGTH = 2
MAX_LENGTH = 3000

_SPAM_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("repeated_characters", re.compile(r"(.)\1{30,}")),
    ("symbols_only", re.compile(r"^[^\w\s]+$")),
    ("link", re.compile(r"(https?://|www\.|bit\.ly|t\.co/|tinyurl)", re.I)),
    ("gambling_or_adult", re.compile(r"\b(viagra|casino|poker|judi|togel|slot|xxx|porn)\b", re.I)),
    ("call_to_action", re.compile(r"\b(click\s+here|klik\s+disini|download\s+now|claim\s+now)\b", re.I)),
    ("scam", re.compile(r"\b(menang\s+jutaan|hadiah\s+milyar|transfer\s+sekarang|bonus\s+besar)\b", re.I)),
)


def detect_spam_content(text: str) -> str | None:
    """Return the label of the first heuristic ``text`` trips, if any."""

    stripped = (text or "").strip()
    if len(stripped) < MIN_LENGTH:
        return "too_short"
    if len(stripped) > MAX_LENGTH:
        return "too_long"
    for label, pattern in _SPAM_PATTERNS:
        if pattern.search(stripped):
            return label
    return None
