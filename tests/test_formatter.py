"""Tests for channel rendering and reply sanitation."""

from __future__ import annotations

import pytest

from civichub.errors import FormatError
from civichub.formatting import (
    OutboundKind,
    ResponseFormatter,
    normalize_phone,
    validate_optional,
    validate_response,
)
from civichub.formatting.formatter import CONTACTS_HEADING
from civichub.formatting.validation import (
    BROKEN_REPLY,
    EMPTY_REPLY,
    MAX_REPLY_LENGTH,
    TRUNCATION_NOTICE,
)
from civichub.llm.schemas import ContactInfo, GenerationResult, Intent


def _generation(**overrides) -> GenerationResult:
    values = {
        "response_text": "Untuk pembuatan KTP silakan datang ke kantor desa.",
        "guidance_text": "Jangan lupa bawa KK asli.",
        "intent": Intent.KNOWLEDGE_QUERY,
        "contacts": (
            ContactInfo(name="Kantor Desa", phone="0812-3456-789", organization="Desa Sukamaju"),
        ),
    }
    values.update(overrides)
    return GenerationResult(**values)


@pytest.mark.parametrize("channel", ["whatsapp", "webchat", "other"])
def test_formatting_is_idempotent(channel: str) -> None:
    formatter = ResponseFormatter()
    generation = _generation()

    assert formatter.format(generation, channel) == formatter.format(generation, channel)


def test_whatsapp_gets_discrete_messages() -> None:
    payload = ResponseFormatter().format(_generation(), "whatsapp")

    assert [m.kind for m in payload.messages] == [
        OutboundKind.TEXT,
        OutboundKind.GUIDANCE,
        OutboundKind.CONTACT,
    ]
    assert payload.messages[2].contact.phone == "628123456789"
    assert payload.primary_text.startswith("Untuk pembuatan KTP")
    assert not payload.degraded


def test_webchat_inlines_contacts_as_links() -> None:
    payload = ResponseFormatter().format(_generation(), "webchat")

    assert len(payload.messages) == 1
    body = payload.primary_text
    assert "Jangan lupa bawa KK asli." in body
    assert CONTACTS_HEADING in body
    assert "• Kantor Desa: https://wa.me/628123456789 (Desa Sukamaju)" in body


def test_other_channels_get_plain_numbers() -> None:
    body = ResponseFormatter().format(_generation(), "sms").primary_text

    assert "+628123456789" in body
    assert "wa.me" not in body


def test_bad_contact_degrades_to_plain_text() -> None:
    generation = _generation(contacts=(ContactInfo(name="Salah", phone="12-3"),))

    payload = ResponseFormatter().format(generation, "whatsapp")

    assert payload.degraded
    assert [m.kind for m in payload.messages] == [OutboundKind.TEXT]
    assert payload.primary_text.endswith("Jangan lupa bawa KK asli.")


def test_format_text_empty_reply_sends_nothing() -> None:
    formatter = ResponseFormatter()

    assert formatter.format_text("", "whatsapp").is_empty
    assert formatter.format_text("Halo", "whatsapp").primary_text == "Halo"


@pytest.mark.parametrize(
    ("phone", "expected"),
    [("0812 3456 789", "628123456789"), ("+62 812-3456-789", "628123456789"), ("8123456789", "628123456789")],
)
def test_normalize_phone(phone: str, expected: str) -> None:
    assert normalize_phone(phone) == expected


def test_normalize_phone_rejects_short_numbers() -> None:
    with pytest.raises(FormatError):
        normalize_phone("112")


def test_validate_response_rules() -> None:
    assert validate_response("") == EMPTY_REPLY
    assert validate_response("   ") == EMPTY_REPLY
    assert validate_response("Dasar bodoh") == "Dasar ***"
    assert validate_response('{"intent": "X"}') == BROKEN_REPLY
    assert (
        validate_response("Silakan datang besok. ```print(1)```")
        == "Silakan datang besok."
    )


def test_validate_response_truncates_long_replies() -> None:
    text = validate_response("a" * (MAX_REPLY_LENGTH + 10))

    assert text.endswith(TRUNCATION_NOTICE)
    assert len(text) < MAX_REPLY_LENGTH + len(TRUNCATION_NOTICE)


def test_validate_optional_keeps_absence() -> None:
    assert validate_optional(None) is None
    assert validate_optional("  ") is None
    assert validate_optional("Bawa KK") == "Bawa KK"
