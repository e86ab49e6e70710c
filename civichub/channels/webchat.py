"""Website chat widget adapter.

The widget posts ``{sessionId, message, history?}`` and polls for replies, so
delivery just appends to a per-session outbox.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from ..formatting.formatter import ChannelPayload
from ..pipeline.schemas import HistoryTurn, ProcessMessageInput
from .base import ChannelAdapter


class WebchatAdapter(ChannelAdapter):
    channel_name = "webchat"

    def __init__(self, *, config: Mapping[str, Any] | None = None, max_pending: int = 50) -> None:
        super().__init__(config=config)
        self._outbox: dict[str, deque[dict[str, Any]]] = {}
        self._max_pending = max_pending
        self._lock = threading.Lock()

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        *,
        tenant_id: str,
    ) -> Iterable[ProcessMessageInput]:
        session_id = payload.get("sessionId") or payload.get("session_id")
        if not session_id:
            return []
        history = [
            HistoryTurn.model_validate(turn)
            for turn in payload.get("history") or []
            if isinstance(turn, Mapping) and turn.get("role") in {"user", "assistant"}
        ]
        return [
            ProcessMessageInput(
                user_id=str(session_id),
                village_id=payload.get("villageId") or tenant_id,
                message=str(payload.get("message") or ""),
                channel=self.channel_name,
                conversation_history=tuple(history),
            )
        ]

    def deliver(self, recipient: str, payload: ChannelPayload) -> None:
        with self._lock:
            outbox = self._outbox.setdefault(recipient, deque(maxlen=self._max_pending))
            outbox.extend(self.build_outgoing_payload(recipient, payload))

    def poll(self, session_id: str) -> list[dict[str, Any]]:
        """Return and clear replies waiting for ``session_id``."""

        with self._lock:
            outbox = self._outbox.pop(session_id, None)
        return list(outbox or ())
