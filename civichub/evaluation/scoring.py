"""Scoring rules for golden-set replies.

Keyword scoring is plain case-insensitive substring matching: the score is
the fraction of expected keywords found in the reply, and the reply counts as
a keyword match when at least :data:`KEYWORD_MATCH_RATIO` of them appear.
Items without keywords score 1. An item's score is the mean of the checks it
defines (intent match as 0/1, keyword score); an item defining neither
scores 1.
"""

from __future__ import annotations

from collections.abc import Sequence
from statistics import fmean

from .schemas import GoldenSetItem, GoldenSetItemResult

KEYWORD_MATCH_RATIO = 0.6


def keyword_score(reply_text: str, keywords: Sequence[str]) -> tuple[bool, float]:
    if not keywords:
        return True, 1.0
    reply = (reply_text or "").lower()
    found = sum(1 for keyword in keywords if keyword.lower() in reply)
    score = found / len(keywords)
    return score >= KEYWORD_MATCH_RATIO, score


def score_item(
    item: GoldenSetItem, predicted_intent: str, reply_text: str, latency_ms: float
) -> GoldenSetItemResult:
    intent_match = (
        predicted_intent == item.expected_intent if item.expected_intent else None
    )
    parts: list[float] = []
    if intent_match is not None:
        parts.append(1.0 if intent_match else 0.0)
    keyword_match = None
    kw_score = None
    if item.expected_keywords:
        keyword_match, kw_score = keyword_score(reply_text, item.expected_keywords)
        parts.append(kw_score)
    return GoldenSetItemResult(
        id=item.id,
        query=item.query,
        expected_intent=item.expected_intent,
        predicted_intent=predicted_intent,
        reply_text=reply_text,
        intent_match=intent_match,
        keyword_match=keyword_match,
        keyword_score=kw_score,
        score=fmean(parts) if parts else 1.0,
        latency_ms=latency_ms,
    )


def aggregate(results: Sequence[GoldenSetItemResult]) -> tuple[float, float, float]:
    """Return ``(intent_accuracy, keyword_accuracy, overall_accuracy)``.

    Each accuracy only considers items that define the corresponding check and
    defaults to 1 when none do.
    """

    intent_checks = [r.intent_match for r in results if r.intent_match is not None]
    keyword_checks = [r.keyword_score for r in results if r.keyword_score is not None]
    intent_accuracy = sum(intent_checks) / len(intent_checks) if intent_checks else 1.0
    keyword_accuracy = fmean(keyword_checks) if keyword_checks else 1.0
    overall = fmean(r.score for r in results) if results else 0.0
    return round(intent_accuracy, 3), round(keyword_accuracy, 3), round(overall, 3)
