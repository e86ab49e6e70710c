"""Queue of inbound messages routed to human operators during takeover."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Protocol

from .models import HandoffItem

logger = logging.getLogger(__name__)


class HumanHandoff(Protocol):
    """Destination for messages that must be answered by a person."""

    def enqueue(self, item: HandoffItem) -> None: ...


class InMemoryHandoffQueue:
    """Bounded per-tenant queue polled by the operator dashboard."""

    def __init__(self, max_items_per_tenant: int = 1000) -> None:
        self._queues: dict[str, deque[HandoffItem]] = {}
        self._max_items = max_items_per_tenant
        self._lock = threading.Lock()

    def enqueue(self, item: HandoffItem) -> None:
        with self._lock:
            queue = self._queues.setdefault(item.tenant_id, deque(maxlen=self._max_items))
            if len(queue) == queue.maxlen:
                logger.warning("Handoff queue full, dropping oldest item (tenant=%s)", item.tenant_id)
            queue.append(item)

    def pending(self, tenant_id: str, sender: str | None = None) -> list[HandoffItem]:
        with self._lock:
            return [
                item
                for item in self._queues.get(tenant_id, ())
                if sender is None or item.sender == sender
            ]

    def drain(self, tenant_id: str, sender: str | None = None) -> list[HandoffItem]:
        """Remove and return pending items, optionally only for ``sender``."""

        with self._lock:
            queue = self._queues.get(tenant_id)
            if not queue:
                return []
            taken = [item for item in queue if sender is None or item.sender == sender]
            kept = [item for item in queue if sender is not None and item.sender != sender]
            queue.clear()
            queue.extend(kept)
            return taken
