"""Channel-specific rendering of generation results.

Channels that support rich media receive the reply as discrete messages: the
main text bubble, an optional guidance bubble and one contact card per
contact. Other channels receive a single text message with the guidance and
an inline list of contacts. Rendering is a pure function of its inputs, so
formatting the same result twice yields equal payloads.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict

from ..errors import FormatError
from ..llm.schemas import ContactInfo, GenerationResult
from .validation import validate_optional, validate_response

logger = logging.getLogger(__name__)

CONTACTS_HEADING = "📞 *Nomor Penting Terkait*"

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class ChannelCapabilities:
    rich_media: bool
    phone_links: bool = False


_DEFAULT_CAPABILITIES: Mapping[str, ChannelCapabilities] = {
    "whatsapp": ChannelCapabilities(rich_media=True),
    "webchat": ChannelCapabilities(rich_media=False, phone_links=True),
    "other": ChannelCapabilities(rich_media=False),
}


class OutboundKind(str, Enum):
    TEXT = "text"
    GUIDANCE = "guidance"
    CONTACT = "contact"


class OutboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: OutboundKind
    text: str | None = None
    contact: ContactInfo | None = None


class ChannelPayload(BaseModel):
    """Ordered outbound messages for one reply on one channel."""

    model_config = ConfigDict(frozen=True)

    channel: str
    messages: tuple[OutboundMessage, ...] = ()
    degraded: bool = False

    @property
    def primary_text(self) -> str:
        for message in self.messages:
            if message.kind is OutboundKind.TEXT:
                return message.text or ""
        return ""

    @property
    def is_empty(self) -> bool:
        return not self.messages


def normalize_phone(phone: str) -> str:
    """Return the phone number as international digits (``62`` prefix)."""

    digits = _NON_DIGITS.sub("", phone or "")
    if digits.startswith("0"):
        digits = f"62{digits[1:]}"
    elif digits.startswith("8"):
        digits = f"62{digits}"
    if len(digits) < 8:
        raise FormatError(f"contact phone has too few digits: {phone!r}")
    return digits


class ResponseFormatter:
    """Render :class:`GenerationResult` objects for a target channel."""

    def __init__(self, capabilities: Mapping[str, ChannelCapabilities] | None = None) -> None:
        self._capabilities = dict(_DEFAULT_CAPABILITIES)
        if capabilities:
            self._capabilities.update({k.lower(): v for k, v in capabilities.items()})

    def capabilities(self, channel: str) -> ChannelCapabilities:
        return self._capabilities.get(channel.lower()) or self._capabilities["other"]

    def format(self, generation: GenerationResult, channel: str) -> ChannelPayload:
        text = validate_response(generation.response_text)
        guidance = validate_optional(generation.guidance_text)
        try:
            return self._structured(channel, text, guidance, generation.contacts)
        except FormatError as exc:
            logger.warning("Structured formatting failed, sending plain text: %s", exc)
            return self._plain(channel, text, guidance)

    def format_text(self, text: str, channel: str) -> ChannelPayload:
        """Render a canned reply; empty text produces an empty payload."""

        if not text:
            return ChannelPayload(channel=channel)
        return ChannelPayload(
            channel=channel,
            messages=(OutboundMessage(kind=OutboundKind.TEXT, text=text),),
        )

    # ------------------------------------------------------------------
    # Helpers

    def _structured(
        self,
        channel: str,
        text: str,
        guidance: str | None,
        contacts: Sequence[ContactInfo],
    ) -> ChannelPayload:
        capabilities = self.capabilities(channel)
        normalized = [
            contact.model_copy(update={"phone": normalize_phone(contact.phone)})
            for contact in contacts
        ]
        if capabilities.rich_media:
            messages = [OutboundMessage(kind=OutboundKind.TEXT, text=text)]
            if guidance:
                messages.append(OutboundMessage(kind=OutboundKind.GUIDANCE, text=guidance))
            messages.extend(
                OutboundMessage(kind=OutboundKind.CONTACT, contact=contact)
                for contact in normalized
            )
            return ChannelPayload(channel=channel, messages=tuple(messages))

        body = text
        if guidance:
            body = f"{body}\n\n{guidance}"
        if normalized:
            lines = [self._contact_line(contact, capabilities) for contact in normalized]
            body = f"{body}\n\n{CONTACTS_HEADING}\n" + "\n".join(lines)
        return ChannelPayload(
            channel=channel,
            messages=(OutboundMessage(kind=OutboundKind.TEXT, text=body),),
        )

    def _plain(self, channel: str, text: str, guidance: str | None) -> ChannelPayload:
        body = f"{text}\n\n{guidance}" if guidance else text
        return ChannelPayload(
            channel=channel,
            messages=(OutboundMessage(kind=OutboundKind.TEXT, text=body),),
            degraded=True,
        )

    @staticmethod
    def _contact_line(contact: ContactInfo, capabilities: ChannelCapabilities) -> str:
        phone = f"https://wa.me/{contact.phone}" if capabilities.phone_links else f"+{contact.phone}"
        details = " - ".join(part for part in (contact.title, contact.organization) if part)
        suffix = f" ({details})" if details else ""
        return f"• {contact.name}: {phone}{suffix}"
