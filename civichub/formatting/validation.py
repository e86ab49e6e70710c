"""Final sanitation applied to every reply before it leaves the service."""

from __future__ import annotations

import re

MAX_REPLY_LENGTH = 4000
TRUNCATE_AT = 3950
TRUNCATION_NOTICE = "...\n\nPesan terpotong karena terlalu panjang."
EMPTY_REPLY = "Ada yang bisa saya bantu lagi?"
BROKEN_REPLY = "Maaf, terjadi kesalahan. Silakan ulangi pertanyaan Anda."

_PROFANITY = (
    re.compile(
        r"\b(anjing|babi|bangsat|kontol|memek|ngentot|jancok|kampret|tai|asu|bajingan|keparat)\b",
        re.I,
    ),
    re.compile(r"\b(bodoh|tolol|idiot|goblok|bego|dungu)\b", re.I),
)
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_RAW_JSON = re.compile(r"\{\"[\s\S]*?\}")


def mask_profanity(text: str) -> str:
    for pattern in _PROFANITY:
        text = pattern.sub("***", text)
    return text


def validate_response(text: str | None) -> str:
    """Sanitise a model reply for citizens.

    Empty replies become a neutral prompt, profanity is masked, overly long
    replies are truncated with a notice, and leaked code blocks or raw JSON
    are stripped (a generic apology replaces replies left nearly empty).
    """

    if not text or not text.strip():
        return EMPTY_REPLY
    cleaned = mask_profanity(text.strip())
    if len(cleaned) > MAX_REPLY_LENGTH:
        cleaned = cleaned[:TRUNCATE_AT] + TRUNCATION_NOTICE
    if "```" in cleaned or '{"' in cleaned:
        cleaned = _RAW_JSON.sub("", _CODE_BLOCK.sub("", cleaned)).strip()
        if len(cleaned) < 10:
            return BROKEN_REPLY
    return cleaned


def validate_optional(text: str | None) -> str | None:
    """Like :func:`validate_response` but keeps absent text absent."""

    if not text or not text.strip():
        return None
    return validate_response(text)
