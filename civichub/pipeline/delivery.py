"""Hand processed replies back to channel adapters.

Processing and delivery are separate concerns: a reply that cannot be
delivered (the citizen closed the chat, a newer message superseded it, the
channel API is down) is dropped and logged, but the processing result itself
stays successful.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..guard.spam_guard import SpamGuard
from .orchestrator import MessageOrchestrator, PipelineOutcome
from .schemas import ProcessMessageInput

if TYPE_CHECKING:
    from ..channels.base import ChannelAdapter

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Track citizen sessions the channel reported as terminated."""

    def __init__(self) -> None:
        self._terminated: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    def mark_terminated(self, tenant_id: str, sender: str) -> None:
        with self._lock:
            self._terminated.add((tenant_id, sender))

    def mark_active(self, tenant_id: str, sender: str) -> None:
        with self._lock:
            self._terminated.discard((tenant_id, sender))

    def is_active(self, tenant_id: str, sender: str) -> bool:
        with self._lock:
            return (tenant_id, sender) not in self._terminated


@dataclass(frozen=True)
class DeliveryReport:
    outcome: PipelineOutcome
    delivered: bool
    reason: str


class DeliveryCoordinator:
    """Process inbound channel messages and deliver replies that are still wanted."""

    def __init__(
        self,
        orchestrator: MessageOrchestrator,
        adapters: Mapping[str, ChannelAdapter],
        *,
        sessions: SessionRegistry | None = None,
        spam_guard: SpamGuard | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.adapters = dict(adapters)
        self.sessions = sessions or SessionRegistry()
        self.spam_guard = spam_guard

    async def handle_inbound(
        self, message: ProcessMessageInput, *, message_id: str | None = None
    ) -> DeliveryReport:
        message_id = message_id or uuid.uuid4().hex
        tenant_id = message.village_id or self.orchestrator.default_tenant_id
        sender = message.user_id
        # a new inbound message proves the session is alive again
        self.sessions.mark_active(tenant_id, sender)
        track = (
            self.spam_guard is not None
            and self.spam_guard.settings.supersede_in_flight
            and not message.is_evaluation
        )
        if track:
            self.spam_guard.register_processing(tenant_id, sender, message_id)
        try:
            outcome = await self.orchestrator.process(message)
            if track:
                wanted, reason = self.spam_guard.should_deliver(tenant_id, sender, message_id)
                if not wanted:
                    logger.info("Dropping reply for %s: %s", message_id, reason)
                    return DeliveryReport(outcome, False, reason)
        finally:
            if track:
                self.spam_guard.complete_processing(tenant_id, sender, message_id)

        if outcome.payload.is_empty:
            return DeliveryReport(outcome, False, "nothing_to_send")
        if not self.sessions.is_active(tenant_id, sender):
            logger.info("Session closed before reply %s was ready, discarding", message_id)
            return DeliveryReport(outcome, False, "session_terminated")
        adapter = self.adapters.get(message.channel)
        if adapter is None:
            return DeliveryReport(outcome, False, "no_adapter")
        try:
            await asyncio.to_thread(adapter.deliver, sender, outcome.payload)
        except Exception:
            logger.exception("Delivering reply %s over %s failed", message_id, message.channel)
            return DeliveryReport(outcome, False, "delivery_failed")
        return DeliveryReport(outcome, True, "delivered")
