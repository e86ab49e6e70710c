"""Knowledge retrieval client used to ground model replies."""

from .client import DEFAULT_SOURCE_TYPES, KnowledgeRetriever
from .models import (
    ConfidenceLevel,
    RetrievalConfidence,
    RetrievalHit,
    RetrievalResult,
    SourceType,
    calculate_confidence,
)
from .policy import classify_query, should_retrieve

__all__ = [
    "DEFAULT_SOURCE_TYPES",
    "ConfidenceLevel",
    "KnowledgeRetriever",
    "RetrievalConfidence",
    "RetrievalHit",
    "RetrievalResult",
    "SourceType",
    "calculate_confidence",
    "classify_query",
    "should_retrieve",
]
