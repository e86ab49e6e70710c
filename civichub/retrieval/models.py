"""Value objects returned by the knowledge retriever."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from statistics import fmean, pvariance


class SourceType(str, Enum):
    KNOWLEDGE = "knowledge"
    DOCUMENT = "document"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


@dataclass(frozen=True)
class RetrievalHit:
    source_id: str
    source_type: SourceType
    score: float
    content: str
    category: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class RetrievalConfidence:
    level: ConfidenceLevel
    score: float
    reason: str


def calculate_confidence(scores: list[float]) -> RetrievalConfidence:
    """Blend top score, mean, result count and spread into one confidence value.

    ``score = top*0.5 + mean*0.25 + min(n/3, 1)*0.15 + consistency*0.1`` where
    ``consistency = 1 - min(variance*2, 1)``.
    """

    if not scores:
        return RetrievalConfidence(ConfidenceLevel.NONE, 0.0, "no results")
    top = max(scores)
    mean = fmean(scores)
    count_factor = min(len(scores) / 3, 1.0)
    consistency = 1 - min(pvariance(scores) * 2, 1.0) if len(scores) > 1 else 1.0
    score = round(top * 0.5 + mean * 0.25 + count_factor * 0.15 + consistency * 0.1, 3)
    if score >= 0.8 and top >= 0.85:
        level = ConfidenceLevel.HIGH
    elif score >= 0.6 and top >= 0.7:
        level = ConfidenceLevel.MEDIUM
    elif score >= 0.4 or top >= 0.6:
        level = ConfidenceLevel.LOW
    else:
        level = ConfidenceLevel.NONE
    return RetrievalConfidence(
        level, score, f"top={top:.2f} mean={mean:.2f} n={len(scores)}"
    )


@dataclass(frozen=True)
class RetrievalResult:
    """Ordered hits for one query plus the degradation flag.

    ``degraded`` is set when the search service failed and the empty result
    stands in for a real answer; ``warning`` explains why.
    """

    hits: tuple[RetrievalHit, ...] = ()
    total: int = 0
    search_time_ms: float = 0.0
    degraded: bool = False
    warning: str | None = None
    confidence: RetrievalConfidence = field(
        default_factory=lambda: calculate_confidence([])
    )

    @classmethod
    def empty(cls, *, degraded: bool = False, warning: str | None = None) -> "RetrievalResult":
        return cls(degraded=degraded, warning=warning)

    @property
    def has_knowledge(self) -> bool:
        return bool(self.hits)

    def context_text(self, max_chars: int = 4000) -> str:
        """Render hits as prompt context, stopping before ``max_chars``."""

        parts: list[str] = []
        used = 0
        for index, hit in enumerate(self.hits, start=1):
            header = f"[{index}] {hit.title or hit.category or hit.source_type.value}"
            block = f"{header}\n{hit.content.strip()}"
            if used + len(block) > max_chars:
                remaining = max_chars - used
                if remaining > len(header) + 20:
                    parts.append(block[:remaining].rstrip() + "...")
                break
            parts.append(block)
            used += len(block) + 2
        return "\n\n".join(parts)
