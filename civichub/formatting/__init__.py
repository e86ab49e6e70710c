"""Channel payload rendering and reply sanitation."""

from .formatter import (
    ChannelCapabilities,
    ChannelPayload,
    OutboundKind,
    OutboundMessage,
    ResponseFormatter,
    normalize_phone,
)
from .validation import mask_profanity, validate_optional, validate_response

__all__ = [
    "ChannelCapabilities",
    "ChannelPayload",
    "OutboundKind",
    "OutboundMessage",
    "ResponseFormatter",
    "mask_profanity",
    "normalize_phone",
    "validate_optional",
    "validate_response",
]
