"""Base abstractions for chat channel adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from ..formatting.formatter import ChannelPayload
from ..pipeline.schemas import ProcessMessageInput


class ChannelAdapter(ABC):
    """Abstract base class encapsulating channel-specific behaviour."""

    #: Lowercase channel identifier used in routes and configuration.
    channel_name: str

    def __init__(self, *, config: Mapping[str, Any] | None = None) -> None:
        self.config = dict(config or {})

    @abstractmethod
    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        *,
        tenant_id: str,
    ) -> Iterable[ProcessMessageInput]:
        """Convert a webhook payload into pipeline inputs."""

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True

    def build_outgoing_payload(
        self, recipient: str, payload: ChannelPayload
    ) -> list[dict[str, Any]]:
        """Prepare channel API requests, one per outbound message."""

        return [
            {"to": recipient, "type": message.kind.value, "text": message.text}
            for message in payload.messages
        ]

    @abstractmethod
    def deliver(self, recipient: str, payload: ChannelPayload) -> None:
        """Send ``payload`` to ``recipient``; raise on transport failure."""
