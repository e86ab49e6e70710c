"""Domain models for conversation state and human handoff."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ConversationMode(str, Enum):
    AI_ACTIVE = "ai_active"
    TAKEOVER = "takeover"
    CLOSED = "closed"


class TakeoverOutcome(str, Enum):
    OK = "ok"
    ALREADY_IN_TAKEOVER = "already_in_takeover"
    NOT_IN_TAKEOVER = "not_in_takeover"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Conversation:
    """Snapshot of a (tenant, sender) conversation.

    Snapshots are immutable; every change produces a new snapshot with a
    bumped ``version`` which the state store uses for compare-and-set.
    """

    tenant_id: str
    sender: str
    mode: ConversationMode = ConversationMode.AI_ACTIVE
    operator_id: str | None = None
    reason: str | None = None
    takeover_started_at: datetime | None = None
    last_activity_at: datetime = field(default_factory=_now)
    version: int = 0


@dataclass(frozen=True)
class TakeoverStatus:
    mode: ConversationMode
    operator_id: str | None = None
    reason: str | None = None
    since: datetime | None = None

    @property
    def in_takeover(self) -> bool:
        return self.mode is ConversationMode.TAKEOVER


@dataclass(frozen=True)
class HandoffItem:
    """Inbound message waiting for a human operator."""

    tenant_id: str
    sender: str
    channel: str
    text: str
    trace_id: str
    operator_id: str | None = None
    media_url: str | None = None
    received_at: datetime = field(default_factory=_now)
    metadata: dict[str, Any] = field(default_factory=dict)
