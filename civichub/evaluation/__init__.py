"""Golden-set regression evaluation."""

from .evaluator import GoldenSetEvaluator, load_items
from .repository import (
    GoldenSetRepository,
    InMemoryGoldenSetRepository,
    PostgresGoldenSetRepository,
)
from .schemas import (
    GoldenSetItem,
    GoldenSetItemResult,
    GoldenSetRun,
    GoldenSetRunRequest,
    GoldenSetSummary,
)
from .scoring import aggregate, keyword_score, score_item

__all__ = [
    "GoldenSetEvaluator",
    "GoldenSetItem",
    "GoldenSetItemResult",
    "GoldenSetRepository",
    "GoldenSetRun",
    "GoldenSetRunRequest",
    "GoldenSetSummary",
    "InMemoryGoldenSetRepository",
    "PostgresGoldenSetRepository",
    "aggregate",
    "keyword_score",
    "load_items",
    "score_item",
]
