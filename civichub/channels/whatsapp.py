"""WhatsApp Cloud API channel adapter."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import requests

from ..formatting.formatter import ChannelPayload, OutboundKind, OutboundMessage
from ..pipeline.schemas import ProcessMessageInput
from .base import ChannelAdapter

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://graph.facebook.com/v19.0"
_MEDIA_TYPES = {"image", "audio", "video", "document"}


class WhatsAppAdapter(ChannelAdapter):
    channel_name = "whatsapp"

    def __init__(
        self,
        *,
        config: Mapping[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(config=config)
        self.session = session or requests.Session()

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.config.get("webhook_secret")
        if not secret:
            return True
        received = headers.get("X-Hub-Signature-256")
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        expected = f"sha256={digest}"
        return hmac.compare_digest(received, expected)

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        *,
        tenant_id: str,
    ) -> Iterable[ProcessMessageInput]:
        for entry in payload.get("entry", []):
            for change in entry.get("changes", []):
                value = change.get("value", {})
                # delivery/read receipts arrive under "statuses" and carry no messages
                for message in value.get("messages", []):
                    sender_id = message.get("from")
                    if not sender_id:
                        continue
                    text = ""
                    media_url = None
                    media_type = None
                    message_type = message.get("type")
                    if message_type == "text":
                        text = (message.get("text") or {}).get("body", "")
                    elif message_type in _MEDIA_TYPES:
                        media = message.get(message_type, {})
                        text = media.get("caption", "")
                        media_url = media.get("link") or media.get("id")
                        media_type = media.get("mime_type") or message_type
                    elif message_type == "interactive":
                        interactive = message.get("interactive", {})
                        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
                        text = reply.get("title") or interactive.get("text") or ""
                    else:
                        logger.info("Ignoring unsupported WhatsApp message type %s", message_type)
                        continue
                    yield ProcessMessageInput(
                        user_id=str(sender_id),
                        village_id=tenant_id,
                        message=text,
                        channel=self.channel_name,
                        media_url=media_url,
                        media_type=media_type,
                    )

    def build_outgoing_payload(
        self, recipient: str, payload: ChannelPayload
    ) -> list[dict[str, Any]]:
        return [self._message_body(recipient, message) for message in payload.messages]

    def deliver(self, recipient: str, payload: ChannelPayload) -> None:
        phone_number_id = self.config.get("phone_number_id")
        token = self.config.get("access_token")
        if not phone_number_id or not token:
            raise RuntimeError("WhatsApp delivery is not configured")
        url = f"{self.config.get('api_base') or DEFAULT_API_BASE}/{phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {token}"}
        for body in self.build_outgoing_payload(recipient, payload):
            response = self.session.post(url, json=body, headers=headers, timeout=10)
            response.raise_for_status()

    @staticmethod
    def _message_body(recipient: str, message: OutboundMessage) -> dict[str, Any]:
        base: dict[str, Any] = {"messaging_product": "whatsapp", "to": recipient}
        if message.kind is OutboundKind.CONTACT and message.contact is not None:
            contact = message.contact
            card: dict[str, Any] = {
                "name": {"formatted_name": contact.name, "first_name": contact.name},
                "phones": [{"phone": f"+{contact.phone}", "wa_id": contact.phone, "type": "WORK"}],
            }
            if contact.organization or contact.title:
                card["org"] = {
                    key: value
                    for key, value in (("company", contact.organization), ("title", contact.title))
                    if value
                }
            return {**base, "type": "contacts", "contacts": [card]}
        return {**base, "type": "text", "text": {"body": message.text or ""}}
