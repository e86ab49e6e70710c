"""Tests for channel adapters and reply delivery."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
from typing import Any

import pytest

from civichub.channels import WebchatAdapter, WhatsAppAdapter, get_adapter
from civichub.config import Settings, SpamGuardSettings
from civichub.formatting import ChannelPayload, OutboundKind, OutboundMessage
from civichub.llm.schemas import ContactInfo
from civichub.pipeline.schemas import ProcessMessageInput
from civichub.services import build_services

from conftest import model_reply


def _text_payload(text: str) -> ChannelPayload:
    return ChannelPayload(channel="webchat", messages=(OutboundMessage(kind=OutboundKind.TEXT, text=text),))


def _whatsapp_payload(*messages: dict[str, Any]) -> dict[str, Any]:
    return {"entry": [{"changes": [{"value": {"messages": list(messages)}}]}]}


class _RecordingSession:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any):
        self.calls.append({"url": url, **kwargs})

        class _Ok:
            def raise_for_status(self) -> None:
                return None

        return _Ok()


class _RecordingAdapter(WebchatAdapter):
    channel_name = "webchat"

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.sent: list[tuple[str, ChannelPayload]] = []

    def deliver(self, recipient: str, payload: ChannelPayload) -> None:
        if self.fail:
            raise ConnectionError("widget offline")
        self.sent.append((recipient, payload))


def test_registry_knows_builtin_adapters() -> None:
    assert get_adapter("WhatsApp") is WhatsAppAdapter
    assert get_adapter("webchat") is WebchatAdapter
    with pytest.raises(KeyError):
        get_adapter("telegram")


def test_whatsapp_signature_verification() -> None:
    adapter = WhatsAppAdapter(config={"webhook_secret": "s3cret"})
    body = b'{"entry": []}'
    signature = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    assert adapter.verify_signature(body, {"X-Hub-Signature-256": signature})
    assert not adapter.verify_signature(body, {"X-Hub-Signature-256": "sha256=deadbeef"})
    assert not adapter.verify_signature(body, {})
    assert WhatsAppAdapter().verify_signature(body, {})


def test_whatsapp_parses_text_media_and_interactive() -> None:
    payload = _whatsapp_payload(
        {"from": "628111", "type": "text", "text": {"body": "Halo"}},
        {
            "from": "628111",
            "type": "image",
            "image": {"id": "media-1", "caption": "jalan rusak", "mime_type": "image/jpeg"},
        },
        {"from": "628111", "type": "interactive", "interactive": {"button_reply": {"title": "Ya"}}},
        {"from": "628111", "type": "sticker", "sticker": {}},
        {"type": "text", "text": {"body": "no sender"}},
    )

    messages = list(WhatsAppAdapter().parse_incoming(payload, {}, tenant_id="desa-1"))

    assert [m.message for m in messages] == ["Halo", "jalan rusak", "Ya"]
    assert all(m.channel == "whatsapp" and m.village_id == "desa-1" for m in messages)
    assert messages[1].media_url == "media-1"
    assert messages[1].media_type == "image/jpeg"


def test_whatsapp_outgoing_messages() -> None:
    payload = ChannelPayload(
        channel="whatsapp",
        messages=(
            OutboundMessage(kind=OutboundKind.TEXT, text="Halo Kak"),
            OutboundMessage(
                kind=OutboundKind.CONTACT,
                contact=ContactInfo(name="Puskesmas", phone="628123456789", organization="Dinkes"),
            ),
        ),
    )
    session = _RecordingSession()
    adapter = WhatsAppAdapter(
        config={"phone_number_id": "1234", "access_token": "token"}, session=session
    )

    adapter.deliver("628111", payload)

    assert [call["url"] for call in session.calls] == [
        "https://graph.facebook.com/v19.0/1234/messages"
    ] * 2
    assert session.calls[0]["json"]["text"] == {"body": "Halo Kak"}
    card = session.calls[1]["json"]["contacts"][0]
    assert card["phones"][0] == {"phone": "+628123456789", "wa_id": "628123456789", "type": "WORK"}
    assert card["org"] == {"company": "Dinkes"}
    assert session.calls[0]["headers"] == {"Authorization": "Bearer token"}


def test_whatsapp_delivery_requires_configuration() -> None:
    with pytest.raises(RuntimeError):
        WhatsAppAdapter().deliver("628111", ChannelPayload(channel="whatsapp"))


def test_webchat_outbox_round_trip() -> None:
    adapter = WebchatAdapter()
    [message] = adapter.parse_incoming(
        {
            "sessionId": "sess-1",
            "message": "Jam buka kantor?",
            "history": [{"role": "user", "content": "halo"}, {"role": "bot", "content": "?"}],
        },
        {},
        tenant_id="desa-1",
    )
    assert message.user_id == "sess-1"
    assert [turn.role for turn in message.conversation_history] == ["user"]

    adapter.deliver("sess-1", _text_payload("Buka jam 8."))

    assert adapter.poll("sess-1") == [{"to": "sess-1", "type": "text", "text": "Buka jam 8."}]
    assert adapter.poll("sess-1") == []


def _inbound(text: str = "Jam buka kantor desa?", **kwargs: Any) -> ProcessMessageInput:
    kwargs.setdefault("user_id", "sess-1")
    return ProcessMessageInput(message=text, channel="webchat", **kwargs)


class TestDeliveryCoordinator:
    def test_delivers_reply(self, services) -> None:
        adapter = _RecordingAdapter()
        services.delivery.adapters["webchat"] = adapter

        report = asyncio.run(services.delivery.handle_inbound(_inbound()))

        assert report.delivered
        assert report.reason == "delivered"
        assert adapter.sent[0][0] == "sess-1"

    def test_terminated_session_drops_reply(self, services) -> None:
        adapter = _RecordingAdapter()
        services.delivery.adapters["webchat"] = adapter

        async def scenario():
            task = asyncio.create_task(services.delivery.handle_inbound(_inbound()))
            await asyncio.sleep(0)
            services.sessions.mark_terminated("default", "sess-1")
            return await task

        report = asyncio.run(scenario())

        assert report.outcome.result.success
        assert not report.delivered
        assert report.reason == "session_terminated"
        assert adapter.sent == []

    def test_delivery_failure_keeps_result(self, services) -> None:
        services.delivery.adapters["webchat"] = _RecordingAdapter(fail=True)

        report = asyncio.run(services.delivery.handle_inbound(_inbound()))

        assert report.outcome.result.success
        assert report.reason == "delivery_failed"

    def test_takeover_sends_nothing(self, services) -> None:
        services.takeover.start_takeover("default", "sess-1", "op1")

        report = asyncio.run(services.delivery.handle_inbound(_inbound()))

        assert report.outcome.handed_off
        assert report.reason == "nothing_to_send"

    def test_missing_adapter(self, services) -> None:
        report = asyncio.run(
            services.delivery.handle_inbound(ProcessMessageInput(user_id="x", message="Jam buka kantor?"))
        )

        assert report.reason == "no_adapter"


def test_newer_message_supersedes_in_flight_reply(provider, retriever, clock) -> None:
    settings = Settings(cache_enabled=False, spam_guard=SpamGuardSettings(supersede_in_flight=True))
    services = build_services(settings, provider=provider, retriever=retriever, clock=clock)
    adapter = _RecordingAdapter()
    services.delivery.adapters["webchat"] = adapter
    provider.replies = lambda text, model: model_reply("QUESTION", f"jawaban untuk {text}")

    async def scenario():
        first = asyncio.create_task(
            services.delivery.handle_inbound(_inbound("pertanyaan pertama tentang layanan"), message_id="m1")
        )
        await asyncio.sleep(0)
        second = asyncio.create_task(
            services.delivery.handle_inbound(_inbound("pertanyaan kedua tentang layanan"), message_id="m2")
        )
        return await first, await second

    try:
        first, second = asyncio.run(scenario())
    finally:
        services.shutdown()

    assert first.reason == "superseded_by_m2"
    assert not first.delivered
    assert second.delivered
    assert [payload.primary_text for _, payload in adapter.sent] == [
        "jawaban untuk pertanyaan kedua tentang layanan"
    ]
