"""End-to-end tests of the message pipeline with fake model and knowledge services."""

from __future__ import annotations

import asyncio
import time

import pytest
import requests

from civichub.config import RateLimitSettings, RetrievalSettings, Settings
from civichub.llm import ProviderError
from civichub.pipeline import fallbacks
from civichub.pipeline.schemas import ProcessMessageInput, ProcessMessageResult
from civichub.retrieval import KnowledgeRetriever, RetrievalHit, RetrievalResult, SourceType
from civichub.retrieval.models import calculate_confidence
from civichub.services import build_services

from conftest import FakeClock, FakeProvider, FakeRetriever, model_reply


def _process(services, message: str = "Syarat bikin KTP apa saja?", **kwargs) -> ProcessMessageResult:
    kwargs.setdefault("user_id", "628111")
    return asyncio.run(
        services.orchestrator.process_message(ProcessMessageInput(message=message, **kwargs))
    )


def _knowledge(score: float = 0.9) -> RetrievalResult:
    return RetrievalResult(
        hits=(
            RetrievalHit(
                source_id="kb-1",
                source_type=SourceType.KNOWLEDGE,
                score=score,
                content="Syarat KTP: fotokopi KK dan surat pengantar RT.",
                title="Syarat KTP",
            ),
        ),
        total=1,
        confidence=calculate_confidence([score]),
    )


def test_happy_path_reply_and_metadata(services, provider) -> None:
    provider.replies = model_reply(
        "KNOWLEDGE_QUERY",
        "Syaratnya fotokopi KK dan surat pengantar RT.",
        guidance_text="Datang pada jam kerja ya Kak.",
        fields={"knowledge_category": "kependudukan"},
        language="id",
    )

    result = _process(services, village_id="desa-1", channel="whatsapp")

    assert result.success
    assert result.intent == "KNOWLEDGE_QUERY"
    assert result.response == "Syaratnya fotokopi KK dan surat pengantar RT."
    assert result.guidance_text == "Datang pada jam kerja ya Kak."
    assert result.fields.knowledge_category == "kependudukan"
    assert result.contacts is None
    meta = result.metadata
    assert meta.model == "gpt-4o-mini"
    assert meta.language == "id"
    assert meta.sentiment == "neutral"
    assert len(meta.trace_id) == 32
    assert meta.processing_time_ms >= 0
    assert not meta.has_knowledge
    assert meta.knowledge_confidence is None


def test_wire_format_uses_camel_case(services) -> None:
    body = _process(services).model_dump(mode="json", by_alias=True)

    assert {"success", "response", "guidanceText", "intent", "metadata"} <= set(body)
    assert {"processingTimeMs", "hasKnowledge", "traceId", "cacheHit"} <= set(body["metadata"])


def test_each_message_gets_a_unique_trace_id(services) -> None:
    first = _process(services, user_id="628111")
    second = _process(services, user_id="628222")

    assert first.metadata.trace_id != second.metadata.trace_id


def test_knowledge_is_passed_to_the_model(services, provider, retriever) -> None:
    retriever.result = _knowledge()

    result = _process(services, village_id="desa-1")

    assert result.metadata.has_knowledge
    assert result.metadata.knowledge_confidence == "high"
    assert retriever.calls[0]["tenant_id"] == "desa-1"
    assert retriever.calls[0]["track_usage"] is True
    assert "surat pengantar RT" in provider.calls[0].messages[1]["content"]


def test_small_talk_skips_retrieval(services, retriever) -> None:
    _process(services, message="terima kasih")

    assert retriever.calls == []


def test_sixth_identical_message_is_superseded_before_model(services, provider, clock: FakeClock) -> None:
    provider.replies = model_reply("GREETING", "Halo Kak, ada yang bisa dibantu?")
    results = []
    for _ in range(6):
        results.append(_process(services, message="halo", user_id="A"))
        clock.advance(1)

    assert [r.intent for r in results[:5]] == ["GREETING"] * 5
    assert results[5].intent == "SPAM"
    assert results[5].metadata.guard_reason == "superseded"
    assert results[5].response == ""
    assert results[5].success
    assert len(provider.calls) == 5


def test_takeover_routes_message_to_human_queue(services, provider) -> None:
    services.takeover.start_takeover("default", "B", "op1")

    result = _process(services, message="Pak, jalan depan rumah rusak", user_id="B")

    assert result.intent == "TAKEOVER"
    assert result.response == ""
    assert result.metadata.is_takeover
    assert result.metadata.operator_id == "op1"
    assert result.metadata.model is None
    assert provider.calls == []
    queued = services.handoff.pending("default", "B")
    assert [item.text for item in queued] == ["Pak, jalan depan rumah rusak"]
    assert queued[0].operator_id == "op1"
    services.side_effects.drain()
    assert services.records.count() == 0


def test_retrieval_timeout_still_answers_without_knowledge(settings, provider, clock) -> None:
    class TimeoutSession:
        def post(self, url, **kwargs):
            raise requests.Timeout("knowledge search too slow")

    retriever = KnowledgeRetriever("http://kb.local", session=TimeoutSession())
    services = build_services(settings, provider=provider, retriever=retriever, clock=clock)
    try:
        result = _process(services)
    finally:
        services.shutdown()

    assert result.success
    assert not result.metadata.has_knowledge
    assert result.metadata.knowledge_degraded
    assert len(provider.calls) == 1


def test_retrieval_deadline_is_enforced(provider, clock) -> None:
    class HangingRetriever(FakeRetriever):
        def retrieve(self, query, tenant_id, **kwargs):
            time.sleep(1.5)
            return _knowledge()

    settings = Settings(cache_enabled=False, retrieval=RetrievalSettings(timeout=0.1))
    services = build_services(settings, provider=provider, retriever=HangingRetriever(), clock=clock)
    try:
        result = _process(services)
    finally:
        services.shutdown()

    assert result.success
    assert result.metadata.knowledge_degraded
    assert not result.metadata.has_knowledge


def test_retriever_exception_degrades(services, retriever) -> None:
    retriever.error = RuntimeError("kaput")

    result = _process(services)

    assert result.success
    assert not result.metadata.has_knowledge
    assert result.metadata.knowledge_degraded


def test_auto_blacklisted_sender_rejected_before_any_external_call(provider, retriever, clock) -> None:
    settings = Settings(
        cache_enabled=False,
        rate_limit=RateLimitSettings(max_per_window=1, cooldown_ms=1_000, auto_blacklist_violations=10),
    )
    services = build_services(settings, provider=provider, retriever=retriever, clock=clock)
    try:
        assert _process(services, user_id="C", message="Syarat KTP apa saja?").intent != "RATE_LIMITED"
        for index in range(10):
            result = _process(services, user_id="C", message=f"pesan ke {index}")
            assert result.intent == "RATE_LIMITED"
        calls_before = (len(provider.calls), len(retriever.calls))

        result = _process(services, user_id="C", message="Syarat KTP apa saja?")

        assert result.intent == "BLACKLISTED"
        assert result.metadata.guard_reason == "blacklisted"
        assert result.response == fallbacks.BLACKLISTED
        assert (len(provider.calls), len(retriever.calls)) == calls_before
        assert services.rate_limiter.is_blacklisted("default", "C")
    finally:
        services.shutdown()


def test_rate_limited_reply_in_warn_and_silent_mode(provider, retriever, clock) -> None:
    settings = Settings(cache_enabled=False, rate_limit=RateLimitSettings(max_per_window=1))
    services = build_services(settings, provider=provider, retriever=retriever, clock=clock)
    try:
        _process(services, message="Syarat KTP apa saja?")
        warned = _process(services, message="Halo, masih ada?")
        services.runtime.update(reject_mode="silent")
        silent = _process(services, message="Halo, masih ada?")
    finally:
        services.shutdown()

    assert warned.intent == "RATE_LIMITED"
    assert warned.response == "Mohon tunggu 30 detik sebelum mengirim pesan baru."
    assert silent.intent == "RATE_LIMITED"
    assert silent.response == ""
    assert len(provider.calls) == 1


def test_ai_disabled_hands_off(services, provider) -> None:
    services.runtime.update(ai_enabled=False)

    result = _process(services, user_id="628333")

    assert result.intent == "AI_DISABLED"
    assert result.response == fallbacks.AI_DISABLED
    assert provider.calls == []
    assert len(services.handoff.pending("default", "628333")) == 1


def test_content_spam_is_not_sent_to_the_model(services, provider) -> None:
    result = _process(services, message="Klik https://bit.ly/hadiah sekarang")

    assert result.intent == "SPAM"
    assert result.metadata.guard_reason == "content:link"
    assert not result.success
    assert result.error == "spam_detected"
    assert result.response == ""
    assert provider.calls == []


def test_media_only_message_reaches_the_model(services, provider) -> None:
    result = _process(
        services,
        message="",
        channel="whatsapp",
        media_url="https://cdn.example/foto.jpg",
        media_type="image/jpeg",
    )

    assert result.success
    assert provider.calls[0].messages[-1]["content"] == (
        "[lampiran image/jpeg: https://cdn.example/foto.jpg]"
    )


def test_model_outage_returns_localized_failure(services, provider) -> None:
    provider.failures = {
        "gpt-4o-mini": ProviderError("limited", kind="rate_limit"),
        "gpt-3.5-turbo": ProviderError("limited", kind="rate_limit"),
    }

    result = _process(services, village_id="desa-1")

    assert not result.success
    assert result.intent == "ERROR"
    assert result.response == fallbacks.RATE_LIMIT
    assert result.error == "model_unavailable:rate_limit"
    assert "limited" not in result.response
    services.side_effects.drain()
    record = services.records.recent("desa-1")[0]
    assert not record.success
    assert record.model == "gpt-3.5-turbo"
    assert record.input_tokens > 0
    assert services.analytics.snapshot("desa-1")["failures"] == 1


def test_fallback_model_is_reported(services, provider) -> None:
    provider.failures = {"gpt-4o-mini": ProviderError("down", kind="service_down")}

    result = _process(services)

    assert result.success
    assert result.metadata.fallback_used
    assert result.metadata.model == "gpt-3.5-turbo"


def test_runtime_model_selection_is_used(services, provider) -> None:
    services.runtime.update(primary_model="gpt-4o", fallback_model=None)

    _process(services)

    assert provider.models_called == ["gpt-4o"]


def test_side_effects_record_generation(services) -> None:
    result = _process(services, village_id="desa-1", user_id="628444")
    services.side_effects.drain()

    records = services.records.recent("desa-1")
    assert [r.trace_id for r in records] == [result.metadata.trace_id]
    assert records[0].input_tokens == 120
    counters = services.analytics.snapshot("desa-1")
    assert counters["messages"] == 1
    assert counters["intents"] == {"QUESTION": 1}
    assert services.takeover.get_conversation("desa-1", "628444") is not None


def test_failing_side_effect_does_not_affect_reply(services, monkeypatch) -> None:
    def broken_save(record):
        raise RuntimeError("database down")

    monkeypatch.setattr(services.records, "save", broken_save)

    result = _process(services)
    services.side_effects.drain()

    assert result.success
    assert services.side_effects.failures == 1


def test_unexpected_error_becomes_structured_failure(services, monkeypatch) -> None:
    def explode(generation, channel):
        raise RuntimeError("formatter bug")

    monkeypatch.setattr(services.orchestrator.formatter, "format", explode)

    result = _process(services)

    assert not result.success
    assert result.intent == "ERROR"
    assert result.error == "internal_error"
    assert result.response == fallbacks.GENERIC


def test_sentiment_and_language_fallbacks(services) -> None:
    result = _process(services, message="terima kasih banyak atas bantuannya pak")

    assert result.metadata.sentiment == "positive"
    assert result.metadata.language


def test_same_sender_messages_run_in_arrival_order(services, provider) -> None:
    async def burst():
        messages = [f"pertanyaan nomor {i} tentang layanan" for i in range(4)]
        return await asyncio.gather(
            *(
                services.orchestrator.process_message(
                    ProcessMessageInput(user_id="628555", message=text)
                )
                for text in messages
            )
        )

    results = asyncio.run(burst())

    assert all(r.success for r in results)
    assert [c.messages[-1]["content"] for c in provider.calls] == [
        f"pertanyaan nomor {i} tentang layanan" for i in range(4)
    ]
    assert services.orchestrator.in_flight() == 0


class TestEvaluationIsolation:
    def test_evaluation_message_leaves_no_state(self, services, retriever) -> None:
        result = _process(services, user_id="golden_eval_1", is_evaluation=True)
        services.side_effects.drain()

        assert result.success
        assert retriever.calls[0]["track_usage"] is False
        assert services.takeover.get_conversation("default", "golden_eval_1") is None
        assert services.rate_limiter.stats()["active_senders"] == 0
        assert services.spam_guard.stats()["bans_issued"] == 0
        assert services.records.count() == 0
        assert services.analytics.tenants() == []

    def test_evaluation_bypasses_guard_and_takeover_queue(self, services, provider) -> None:
        services.rate_limiter.add_to_blacklist("default", "golden_eval_2", "test")
        services.takeover.start_takeover("default", "golden_eval_3", "op1")

        blocked = _process(services, user_id="golden_eval_2", is_evaluation=True)
        handed = _process(services, user_id="golden_eval_3", is_evaluation=True)

        assert blocked.intent == "QUESTION"
        assert handed.intent == "TAKEOVER"
        assert services.handoff.pending("default") == []


class TestResponseCache:
    @pytest.fixture()
    def settings(self) -> Settings:
        return Settings(cache_enabled=True)

    def test_repeat_question_is_served_from_cache(self, services, provider, clock) -> None:
        provider.replies = model_reply("KNOWLEDGE_QUERY", "Syaratnya fotokopi KK.")

        first = _process(services, message="Syarat bikin KTP apa saja?")
        clock.advance(1)
        second = _process(services, message="syarat bikin ktp apa saja dong", user_id="628999")

        assert not first.metadata.cache_hit
        assert second.metadata.cache_hit
        assert second.response == first.response
        assert second.metadata.trace_id != first.metadata.trace_id
        assert len(provider.calls) == 1

    def test_cache_is_scoped_by_tenant_and_channel(self, services, provider) -> None:
        provider.replies = model_reply("KNOWLEDGE_QUERY", "Syaratnya fotokopi KK.")

        _process(services, village_id="desa-1")
        _process(services, village_id="desa-2", user_id="628222")
        _process(services, village_id="desa-1", channel="webchat", user_id="628333")

        assert len(provider.calls) == 3

    def test_personal_intents_are_not_cached(self, services, provider) -> None:
        provider.replies = model_reply("CREATE_COMPLAINT", "Laporan diterima.")

        _process(services, message="lampu jalan RT 03 mati")
        _process(services, message="lampu jalan RT 03 mati", user_id="628222")

        assert len(provider.calls) == 2

    def test_degraded_retrieval_is_not_cached(self, services, provider, retriever) -> None:
        provider.replies = model_reply("KNOWLEDGE_QUERY", "Maaf, data belum tersedia.")
        retriever.error = RuntimeError("kaput")

        _process(services)
        _process(services, user_id="628222")

        assert len(provider.calls) == 2

    def test_cache_toggle_and_clear(self, services, provider) -> None:
        provider.replies = model_reply("KNOWLEDGE_QUERY", "Syaratnya fotokopi KK.")
        _process(services)
        assert services.clear_caches() >= 1

        services.runtime.update(cache_enabled=False)
        _process(services, user_id="628222")
        services.runtime.update(cache_enabled=True)
        _process(services, user_id="628333")

        assert len(provider.calls) == 3

    def test_evaluation_never_reads_the_cache(self, services, provider) -> None:
        provider.replies = model_reply("KNOWLEDGE_QUERY", "Syaratnya fotokopi KK.")
        _process(services)

        result = _process(services, user_id="golden_eval_x", is_evaluation=True)

        assert not result.metadata.cache_hit
        assert len(provider.calls) == 2
