"""Golden-set items, per-item results and run records."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class GoldenSetItem(_Frozen):
    id: str = Field(min_length=1)
    query: str = Field(min_length=1)
    expected_intent: str | None = None
    expected_keywords: tuple[str, ...] = ()
    village_id: str | None = None

    @field_validator("expected_intent", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or None
        return value

    @field_validator("expected_keywords", mode="before")
    @classmethod
    def _drop_blank(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(kw).strip() for kw in value if str(kw).strip())
        return value


class GoldenSetItemResult(_Frozen):
    id: str
    query: str
    expected_intent: str | None = None
    predicted_intent: str
    reply_text: str
    intent_match: bool | None = None
    keyword_match: bool | None = None
    keyword_score: float | None = None
    score: float
    latency_ms: float


class GoldenSetThresholds(_Frozen):
    overall: float
    intent: float
    keyword: float
    regression_delta: float


class GoldenSetStatus(_Frozen):
    overall_pass: bool
    intent_pass: bool
    keyword_pass: bool
    regression_detected: bool = False

    @property
    def passed(self) -> bool:
        return self.overall_pass and self.intent_pass and self.keyword_pass


class GoldenSetRun(_Frozen):
    """One completed evaluation; never modified after it is stored."""

    run_id: str
    total: int
    intent_accuracy: float
    keyword_accuracy: float
    overall_accuracy: float
    thresholds: GoldenSetThresholds
    status: GoldenSetStatus
    started_at: datetime
    completed_at: datetime
    results: tuple[GoldenSetItemResult, ...] = ()


class GoldenSetSummary(_Frozen):
    latest: GoldenSetRun | None = None
    history: tuple[GoldenSetRun, ...] = ()


class GoldenSetRunRequest(BaseModel):
    items: list[GoldenSetItem] | None = None
    village_id: str | None = None
