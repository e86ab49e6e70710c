"""Service configuration.

Two layers are kept apart:

- :class:`Settings` is read once from environment variables (``.env`` files
  are honoured through ``python-dotenv``) and grouped by concern. It is frozen;
  changing it requires a restart.
- :class:`RuntimeSettings` holds the knobs operators toggle while the service
  is running (AI on/off, cache on/off, model selection, reject mode). A
  :class:`SettingsStore` owns the current snapshot and swaps it atomically, so
  a message in flight always sees one consistent set of values.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

RejectMode = Literal["warn", "silent"]

# USD per one million tokens: (input, output)
_DEFAULT_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-3.5-turbo": (0.50, 1.50),
}


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else default


def _env_int(name: str, default: int) -> int:
    return int(_env_str(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env_str(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return _env_str(name, "true" if default else "false").lower() in {"1", "true", "yes", "on"}


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class RateLimitSettings(_FrozenModel):
    max_per_window: int = Field(default=10, ge=1)
    window_ms: int = Field(default=10_000, ge=1)
    cooldown_ms: int = Field(default=30_000, ge=0)
    auto_blacklist_violations: int = Field(default=10, ge=1)


class SpamGuardSettings(_FrozenModel):
    max_identical: int = Field(default=5, ge=1)
    window_ms: int = Field(default=10_000, ge=1)
    ban_duration_ms: int = Field(default=60_000, ge=0)
    supersede_in_flight: bool = False


class RetrievalSettings(_FrozenModel):
    search_url: str | None = None
    timeout: float = Field(default=5.0, gt=0)
    top_k: int = Field(default=5, ge=1)
    min_score: float = Field(default=0.55, ge=0.0, le=1.0)
    max_context_chars: int = Field(default=4000, ge=1)
    api_key: str | None = None


class ModelSettings(_FrozenModel):
    provider: str = "openai"
    primary_model: str = "gpt-4o-mini"
    fallback_model: str | None = "gpt-3.5-turbo"
    timeout: float = Field(default=30.0, gt=0)
    pricing: dict[str, tuple[float, float]] = Field(
        default_factory=lambda: dict(_DEFAULT_PRICING)
    )


class WhatsAppSettings(_FrozenModel):
    webhook_secret: str | None = None
    verify_token: str | None = None
    access_token: str | None = None
    phone_number_id: str | None = None
    api_base: str | None = None


class GoldenSetSettings(_FrozenModel):
    threshold_overall: float = Field(default=0.75, ge=0.0, le=1.0)
    threshold_intent: float = Field(default=0.75, ge=0.0, le=1.0)
    threshold_keyword: float = Field(default=0.7, ge=0.0, le=1.0)
    regression_delta: float = Field(default=0.05, ge=0.0)
    history_limit: int = Field(default=10, ge=1)
    items_path: str = "data/golden_set.json"


class Settings(_FrozenModel):
    """Static configuration resolved at start-up."""

    default_tenant_id: str = "default"
    database_url: str | None = None
    admin_ui_origins: tuple[str, ...] = ()
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    spam_guard: SpamGuardSettings = Field(default_factory=SpamGuardSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    golden_set: GoldenSetSettings = Field(default_factory=GoldenSetSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)
    reject_mode: RejectMode = "warn"
    cache_enabled: bool = True

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        """Build settings from the process environment."""

        if dotenv:
            load_dotenv()
        pricing = dict(_DEFAULT_PRICING)
        raw_pricing = os.getenv("AI_MODEL_PRICING")
        if raw_pricing:
            try:
                pricing.update(
                    {name: (float(v[0]), float(v[1])) for name, v in json.loads(raw_pricing).items()}
                )
            except (ValueError, TypeError, IndexError, AttributeError):
                logger.warning("Ignoring malformed AI_MODEL_PRICING value")
        fallback_model = _env_str("AI_MODEL_FALLBACK", "gpt-3.5-turbo")
        origins = os.getenv("ADMIN_UI_ORIGINS", "")
        return cls(
            default_tenant_id=_env_str("DEFAULT_TENANT_ID", "default"),
            database_url=os.getenv("DATABASE_URL") or None,
            admin_ui_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            rate_limit=RateLimitSettings(
                max_per_window=_env_int("RATE_LIMIT_MAX_PER_WINDOW", 10),
                window_ms=_env_int("RATE_LIMIT_WINDOW_MS", 10_000),
                cooldown_ms=_env_int("RATE_LIMIT_COOLDOWN_MS", 30_000),
                auto_blacklist_violations=_env_int(
                    "RATE_LIMIT_AUTO_BLACKLIST_VIOLATIONS", 10
                ),
            ),
            spam_guard=SpamGuardSettings(
                max_identical=_env_int("SPAM_GUARD_MAX_IDENTICAL", 5),
                window_ms=_env_int("SPAM_GUARD_WINDOW_MS", 10_000),
                ban_duration_ms=_env_int("SPAM_GUARD_BAN_DURATION_MS", 60_000),
                supersede_in_flight=_env_bool("SPAM_GUARD_SUPERSEDE_IN_FLIGHT", False),
            ),
            retrieval=RetrievalSettings(
                search_url=os.getenv("KNOWLEDGE_SEARCH_URL") or None,
                timeout=_env_float("KNOWLEDGE_SEARCH_TIMEOUT", 5.0),
                top_k=_env_int("KNOWLEDGE_TOP_K", 5),
                min_score=_env_float("KNOWLEDGE_MIN_SCORE", 0.55),
                max_context_chars=_env_int("KNOWLEDGE_MAX_CONTEXT_CHARS", 4000),
                api_key=os.getenv("KNOWLEDGE_SEARCH_API_KEY") or None,
            ),
            model=ModelSettings(
                provider=_env_str("AI_PROVIDER", "openai"),
                primary_model=_env_str("AI_MODEL_PRIMARY", "gpt-4o-mini"),
                fallback_model=None if fallback_model.lower() == "none" else fallback_model,
                timeout=_env_float("AI_MODEL_TIMEOUT", 30.0),
                pricing=pricing,
            ),
            golden_set=GoldenSetSettings(
                threshold_overall=_env_float("GOLDEN_SET_THRESHOLD_OVERALL", 0.75),
                threshold_intent=_env_float("GOLDEN_SET_THRESHOLD_INTENT", 0.75),
                threshold_keyword=_env_float("GOLDEN_SET_THRESHOLD_KEYWORD", 0.7),
                regression_delta=_env_float("GOLDEN_SET_REGRESSION_DELTA", 0.05),
                history_limit=_env_int("GOLDEN_SET_HISTORY_LIMIT", 10),
                items_path=_env_str("GOLDEN_SET_PATH", "data/golden_set.json"),
            ),
            whatsapp=WhatsAppSettings(
                webhook_secret=os.getenv("WHATSAPP_WEBHOOK_SECRET") or None,
                verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN") or None,
                access_token=os.getenv("WHATSAPP_ACCESS_TOKEN") or None,
                phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID") or None,
                api_base=os.getenv("WHATSAPP_API_BASE") or None,
            ),
            reject_mode=_env_str("RATE_LIMIT_REJECT_MODE", "warn"),  # type: ignore[arg-type]
            cache_enabled=_env_bool("AI_CACHE_ENABLED", True),
        )


class RuntimeSettings(_FrozenModel):
    """Operator-controlled toggles read once per processed message."""

    ai_enabled: bool = True
    cache_enabled: bool = True
    primary_model: str = "gpt-4o-mini"
    fallback_model: str | None = "gpt-3.5-turbo"
    reject_mode: RejectMode = "warn"

    @field_validator("primary_model")
    @classmethod
    def _require_primary(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("primary_model cannot be blank")
        return value.strip()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RuntimeSettings":
        return cls(
            cache_enabled=settings.cache_enabled,
            primary_model=settings.model.primary_model,
            fallback_model=settings.model.fallback_model,
            reject_mode=settings.reject_mode,
        )


class SettingsStore:
    """Holder for the live :class:`RuntimeSettings` snapshot."""

    def __init__(self, initial: RuntimeSettings | None = None) -> None:
        self._current = initial or RuntimeSettings()
        self._lock = threading.Lock()

    @property
    def current(self) -> RuntimeSettings:
        return self._current

    def update(self, **changes: Any) -> RuntimeSettings:
        """Validate ``changes`` and swap in a new snapshot."""

        with self._lock:
            merged = self._current.model_dump()
            merged.update(changes)
            updated = RuntimeSettings.model_validate(merged)
            self._current = updated
        logger.info("Runtime settings updated: %s", sorted(changes))
        return updated


__all__ = [
    "GoldenSetSettings",
    "ModelSettings",
    "RateLimitSettings",
    "RejectMode",
    "RetrievalSettings",
    "RuntimeSettings",
    "Settings",
    "SettingsStore",
    "SpamGuardSettings",
    "WhatsAppSettings",
]
