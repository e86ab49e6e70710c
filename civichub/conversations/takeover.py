"""Takeover state tracking with compare-and-set transitions.

Conversations move between three modes::

    ai_active --start_takeover--> takeover --end_takeover--> ai_active
        \\                            |
         `-------- close ------------+--> closed --next inbound message--> ai_active

The state lives in a :class:`ConversationStateStore`. Transitions read a
snapshot, compute the successor and write it back only if the stored version
is unchanged, so two operators racing to claim the same conversation cannot
both succeed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from .models import Conversation, ConversationMode, TakeoverOutcome, TakeoverStatus

logger = logging.getLogger(__name__)

ConversationKey = tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStateStore(Protocol):
    """Storage abstraction used by :class:`TakeoverTracker`."""

    def get(self, key: ConversationKey) -> Conversation | None: ...

    def compare_and_set(
        self, key: ConversationKey, expected_version: int | None, new: Conversation
    ) -> bool: ...

    def list(self, tenant_id: str | None = None) -> list[Conversation]: ...


class InMemoryConversationStateStore:
    """Process-local store; ``expected_version=None`` means "must not exist"."""

    def __init__(self) -> None:
        self._items: dict[ConversationKey, Conversation] = {}
        self._lock = threading.Lock()

    def get(self, key: ConversationKey) -> Conversation | None:
        return self._items.get(key)

    def compare_and_set(
        self, key: ConversationKey, expected_version: int | None, new: Conversation
    ) -> bool:
        with self._lock:
            current = self._items.get(key)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                return False
            self._items[key] = new
            return True

    def list(self, tenant_id: str | None = None) -> list[Conversation]:
        with self._lock:
            return [
                item for item in self._items.values() if tenant_id is None or item.tenant_id == tenant_id
            ]


class TakeoverTracker:
    """Track whether a human operator has claimed a conversation."""

    _MAX_RETRIES = 16

    def __init__(
        self,
        store: ConversationStateStore | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store or InMemoryConversationStateStore()
        self._clock = clock

    # ------------------------------------------------------------------
    # Transitions

    def start_takeover(
        self, tenant_id: str, sender: str, operator_id: str, reason: str | None = None
    ) -> TakeoverOutcome:
        def transition(current: Conversation) -> Conversation | TakeoverOutcome:
            if current.mode is ConversationMode.TAKEOVER:
                return TakeoverOutcome.ALREADY_IN_TAKEOVER
            now = self._clock()
            return replace(
                current,
                mode=ConversationMode.TAKEOVER,
                operator_id=operator_id,
                reason=reason,
                takeover_started_at=now,
                last_activity_at=now,
            )

        outcome = self._apply(tenant_id, sender, transition)
        if outcome is TakeoverOutcome.OK:
            logger.info("Takeover started by operator %s (tenant=%s)", operator_id, tenant_id)
        return outcome

    def end_takeover(self, tenant_id: str, sender: str) -> TakeoverOutcome:
        def transition(current: Conversation) -> Conversation | TakeoverOutcome:
            if current.mode is not ConversationMode.TAKEOVER:
                return TakeoverOutcome.NOT_IN_TAKEOVER
            return replace(
                current,
                mode=ConversationMode.AI_ACTIVE,
                operator_id=None,
                reason=None,
                takeover_started_at=None,
                last_activity_at=self._clock(),
            )

        outcome = self._apply(tenant_id, sender, transition)
        if outcome is TakeoverOutcome.OK:
            logger.info("Takeover ended (tenant=%s)", tenant_id)
        return outcome

    def close(self, tenant_id: str, sender: str) -> TakeoverOutcome:
        def transition(current: Conversation) -> Conversation | TakeoverOutcome:
            return replace(
                current,
                mode=ConversationMode.CLOSED,
                operator_id=None,
                reason=None,
                takeover_started_at=None,
            )

        return self._apply(tenant_id, sender, transition)

    def register_inbound(self, tenant_id: str, sender: str) -> TakeoverStatus:
        """Record message arrival: re-open closed conversations, refresh activity."""

        def transition(current: Conversation) -> Conversation | TakeoverOutcome:
            mode = (
                ConversationMode.AI_ACTIVE
                if current.mode is ConversationMode.CLOSED
                else current.mode
            )
            return replace(current, mode=mode, last_activity_at=self._clock())

        self._apply(tenant_id, sender, transition)
        return self.get_status(tenant_id, sender)

    def touch(self, tenant_id: str, sender: str) -> None:
        """Refresh the last-activity timestamp without changing the mode."""

        self._apply(
            tenant_id,
            sender,
            lambda current: replace(current, last_activity_at=self._clock()),
        )

    # ------------------------------------------------------------------
    # Queries

    def get_status(self, tenant_id: str, sender: str) -> TakeoverStatus:
        current = self._store.get((tenant_id, sender))
        if current is None:
            return TakeoverStatus(mode=ConversationMode.AI_ACTIVE)
        return TakeoverStatus(
            mode=current.mode,
            operator_id=current.operator_id,
            reason=current.reason,
            since=current.takeover_started_at,
        )

    def get_conversation(self, tenant_id: str, sender: str) -> Conversation | None:
        return self._store.get((tenant_id, sender))

    def list_takeovers(self, tenant_id: str | None = None) -> list[Conversation]:
        return [
            item
            for item in self._store.list(tenant_id)
            if item.mode is ConversationMode.TAKEOVER
        ]

    # ------------------------------------------------------------------
    # Helpers

    def _apply(
        self,
        tenant_id: str,
        sender: str,
        transition: Callable[[Conversation], Conversation | TakeoverOutcome],
    ) -> TakeoverOutcome:
        key = (tenant_id, sender)
        for _ in range(self._MAX_RETRIES):
            stored = self._store.get(key)
            current = stored or Conversation(
                tenant_id=tenant_id, sender=sender, last_activity_at=self._clock()
            )
            result = transition(current)
            if isinstance(result, TakeoverOutcome):
                return result
            expected = stored.version if stored is not None else None
            updated = replace(result, version=current.version + 1)
            if self._store.compare_and_set(key, expected, updated):
                return TakeoverOutcome.OK
        raise RuntimeError(f"Conversation state for tenant {tenant_id} kept changing")
