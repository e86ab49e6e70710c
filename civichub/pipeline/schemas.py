"""Wire schemas for the message processing entry point.

Field names are snake_case in Python and camelCase on the wire
(``userId``, ``villageId``, ``processingTimeMs``...), matching what channel
adapters and the dashboard send and expect.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..llm.schemas import ContactInfo, ExtractedFields

Channel = Literal["whatsapp", "webchat", "other"]

_KNOWN_CHANNELS = {"whatsapp", "webchat"}


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class HistoryTurn(_WireModel):
    role: Literal["user", "assistant"]
    content: str


class ProcessMessageInput(_WireModel):
    """Normalized inbound message handed over by a channel adapter."""

    user_id: str = Field(min_length=1, max_length=128)
    village_id: str | None = None
    message: str = Field(max_length=10_000)
    channel: Channel = "other"
    conversation_history: tuple[HistoryTurn, ...] = ()
    media_url: str | None = None
    media_type: str | None = None
    is_evaluation: bool = False

    @field_validator("channel", mode="before")
    @classmethod
    def _normalize_channel(cls, value: object) -> str:
        name = str(value or "").strip().lower()
        return name if name in _KNOWN_CHANNELS else "other"


class ResultMetadata(_WireModel):
    processing_time_ms: float
    model: str | None = None
    has_knowledge: bool = False
    knowledge_confidence: str | None = None
    sentiment: str | None = None
    language: str | None = None
    trace_id: str | None = None
    cache_hit: bool = False
    fallback_used: bool = False
    guard_reason: str | None = None
    is_takeover: bool = False
    operator_id: str | None = None
    knowledge_degraded: bool = False


class ProcessMessageResult(_WireModel):
    success: bool
    response: str
    guidance_text: str | None = None
    intent: str
    fields: ExtractedFields | None = None
    contacts: tuple[ContactInfo, ...] | None = None
    metadata: ResultMetadata
    error: str | None = None
