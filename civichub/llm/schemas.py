"""Typed structures exchanged with language models."""

from __future__ import annotations

from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Intent(str, Enum):
    # Produced by the model
    GREETING = "GREETING"
    QUESTION = "QUESTION"
    KNOWLEDGE_QUERY = "KNOWLEDGE_QUERY"
    SERVICE_INFO = "SERVICE_INFO"
    CREATE_COMPLAINT = "CREATE_COMPLAINT"
    UPDATE_COMPLAINT = "UPDATE_COMPLAINT"
    CANCEL_COMPLAINT = "CANCEL_COMPLAINT"
    CREATE_SERVICE_REQUEST = "CREATE_SERVICE_REQUEST"
    CANCEL_SERVICE_REQUEST = "CANCEL_SERVICE_REQUEST"
    CHECK_STATUS = "CHECK_STATUS"
    HISTORY = "HISTORY"
    UNKNOWN = "UNKNOWN"
    # Pipeline outcomes
    SPAM = "SPAM"
    RATE_LIMITED = "RATE_LIMITED"
    BLACKLISTED = "BLACKLISTED"
    TAKEOVER = "TAKEOVER"
    AI_DISABLED = "AI_DISABLED"
    ERROR = "ERROR"


MODEL_INTENTS: frozenset[Intent] = frozenset(
    {
        Intent.GREETING,
        Intent.QUESTION,
        Intent.KNOWLEDGE_QUERY,
        Intent.SERVICE_INFO,
        Intent.CREATE_COMPLAINT,
        Intent.UPDATE_COMPLAINT,
        Intent.CANCEL_COMPLAINT,
        Intent.CREATE_SERVICE_REQUEST,
        Intent.CANCEL_SERVICE_REQUEST,
        Intent.CHECK_STATUS,
        Intent.HISTORY,
        Intent.UNKNOWN,
    }
)


def coerce_model_intent(value: object) -> Intent:
    """Map free-form model output onto a model intent, defaulting to UNKNOWN."""

    try:
        intent = Intent(str(value).strip().upper())
    except ValueError:
        return Intent.UNKNOWN
    return intent if intent in MODEL_INTENTS else Intent.UNKNOWN


class ContactInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    phone: str = Field(min_length=3)
    organization: str | None = None
    title: str | None = None


class ExtractedFields(BaseModel):
    """Structured data pulled out of the citizen's message.

    Keys are accepted in English or in the Indonesian spelling models tend to
    produce for local deployments.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    category: str | None = Field(default=None, validation_alias=AliasChoices("category", "kategori"))
    address: str | None = Field(default=None, validation_alias=AliasChoices("address", "alamat"))
    description: str | None = Field(
        default=None, validation_alias=AliasChoices("description", "deskripsi")
    )
    rt_rw: str | None = None
    service_type: str | None = Field(
        default=None, validation_alias=AliasChoices("service_type", "jenis", "service_slug")
    )
    knowledge_category: str | None = None
    complaint_id: str | None = None
    request_number: str | None = Field(
        default=None, validation_alias=AliasChoices("request_number", "ticket_id")
    )
    cancel_reason: str | None = None
    missing_info: tuple[str, ...] = ()

    @field_validator(
        "category",
        "address",
        "description",
        "rt_rw",
        "service_type",
        "knowledge_category",
        "complaint_id",
        "request_number",
        "cancel_reason",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def is_empty(self) -> bool:
        return not any(self.model_dump(exclude_defaults=True).values())


class ModelOutput(BaseModel):
    """JSON object every model is instructed to return."""

    model_config = ConfigDict(extra="ignore")

    intent: Intent = Intent.UNKNOWN
    fields: ExtractedFields = Field(default_factory=ExtractedFields)
    reply_text: str = ""
    guidance_text: str | None = None
    contacts: list[ContactInfo] = Field(default_factory=list)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    sentiment: str | None = None
    language: str | None = None
    needs_knowledge: bool = False

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, value: object) -> Intent:
        return coerce_model_intent(value)

    @field_validator("contacts", mode="before")
    @classmethod
    def _drop_invalid_contacts(cls, value: object) -> list[object]:
        if not isinstance(value, list):
            return []
        return [
            item
            for item in value
            if isinstance(item, dict) and item.get("name") and item.get("phone")
        ]


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class InvocationAttempt(BaseModel):
    """Usage and outcome of one call to one model."""

    model_config = ConfigDict(frozen=True)

    model: str
    success: bool
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: float = 0.0
    cost_usd: float = 0.0
    estimated_usage: bool = False
    error: str | None = None


class GenerationResult(BaseModel):
    """One processed reply with everything analytics needs to account for it."""

    model_config = ConfigDict(frozen=True)

    response_text: str
    guidance_text: str | None = None
    intent: Intent = Intent.UNKNOWN
    fields: ExtractedFields = Field(default_factory=ExtractedFields)
    contacts: tuple[ContactInfo, ...] = ()
    confidence: float | None = None
    sentiment: str | None = None
    language: str | None = None
    model: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost_usd: float = 0.0
    latency_ms: float = 0.0
    trace_id: str | None = None
    attempts: tuple[InvocationAttempt, ...] = ()
    fallback_used: bool = False
    format_degraded: bool = False
    from_cache: bool = False
