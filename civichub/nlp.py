"""Lightweight sentiment and language tagging for citizen messages.

Models are asked to report sentiment and language themselves; these
deterministic fallbacks fill the gaps when they do not.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from langdetect import DetectorFactory, LangDetectException, detect

DetectorFactory.seed = 0

_POSITIVE = {
    "terima kasih", "makasih", "mantap", "bagus", "baik", "puas", "membantu",
    "thanks", "great", "good", "helpful",
}
_NEGATIVE = {
    "kecewa", "lambat", "buruk", "rusak", "marah", "parah", "tidak puas", "lama sekali",
    "bad", "terrible", "angry", "upset", "complain",
}

_SENTIMENT_LABELS = {"positive", "neutral", "negative"}


@dataclass
class TextSignals:
    """Deterministic tagger used across the pipeline."""

    default_language: str = "id"

    def sentiment(self, text: str) -> str:
        lowered = (text or "").lower()
        positives = sum(1 for token in _POSITIVE if token in lowered)
        negatives = sum(1 for token in _NEGATIVE if token in lowered)
        if positives > negatives:
            return "positive"
        if negatives > positives:
            return "negative"
        return "neutral"

    def language(self, text: str) -> Optional[str]:
        # langdetect is unreliable on one or two words
        if not text or len(text.split()) < 3:
            return self.default_language
        try:
            return detect(text)
        except LangDetectException:
            return self.default_language

    def normalize_sentiment(self, value: str | None, text: str) -> str:
        if value and value.lower() in _SENTIMENT_LABELS:
            return value.lower()
        return self.sentiment(text)
