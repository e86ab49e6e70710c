"""Per-message pipeline: guard, takeover, retrieval, generation, formatting.

:meth:`MessageOrchestrator.process_message` is the public boundary used by
channel adapters and the HTTP API. It never raises: every outcome, including
rejections, takeovers and model outages, comes back as a
:class:`ProcessMessageResult`.

Messages from the same sender are serialised with a per-sender lock so the
rate limiter, spam history and conversation mode always observe them in
arrival order. Different senders run concurrently; blocking calls (knowledge
search, model SDKs) are moved to worker threads under explicit deadlines.

Evaluation messages (``is_evaluation``) run the same steps but skip the
guard, conversation updates, caches, retrieval usage tracking, handoff and
persistence, so replaying the golden set leaves no trace in live state.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace

from ..config import RetrievalSettings, RuntimeSettings, SettingsStore
from ..conversations.handoff import HumanHandoff
from ..conversations.models import HandoffItem, TakeoverStatus
from ..conversations.takeover import TakeoverTracker
from ..core.locks import KeyedLock
from ..core.trace_context import bind_trace
from ..errors import ModelUnavailable
from ..formatting.formatter import ChannelPayload, ResponseFormatter
from ..formatting.validation import validate_optional, validate_response
from ..guard.content import detect_spam_content
from ..guard.gate import AbuseGate
from ..guard.models import Decision, DecisionKind, RejectReason
from ..llm.invoker import ModelInvoker, ModelPreference
from ..llm.schemas import GenerationResult, Intent, TokenUsage
from ..nlp import TextSignals
from ..retrieval.client import KnowledgeRetriever
from ..retrieval.models import RetrievalResult
from ..retrieval.policy import should_retrieve
from . import fallbacks
from .analytics import (
    GenerationRecord,
    GenerationRecordRepository,
    SideEffectQueue,
    TenantAnalytics,
)
from .cache import ResponseCache, TenantCache, normalize_query
from .schemas import ProcessMessageInput, ProcessMessageResult, ResultMetadata

logger = logging.getLogger(__name__)

_GUARD_INTENTS = {
    RejectReason.RATE_EXCEEDED: Intent.RATE_LIMITED,
    RejectReason.BLACKLISTED: Intent.BLACKLISTED,
    RejectReason.SUPERSEDED: Intent.SPAM,
    RejectReason.SPAM_BANNED: Intent.SPAM,
}

RETRIEVAL_CACHE_TTL = 600.0


@dataclass(frozen=True)
class PipelineOutcome:
    """A processed message together with what should be sent back."""

    result: ProcessMessageResult
    payload: ChannelPayload
    handed_off: bool = False


class MessageOrchestrator:
    """Compose the pipeline components for one inbound message at a time."""

    def __init__(
        self,
        *,
        gate: AbuseGate,
        takeover: TakeoverTracker,
        retriever: KnowledgeRetriever,
        invoker: ModelInvoker,
        formatter: ResponseFormatter,
        settings: SettingsStore,
        retrieval_settings: RetrievalSettings | None = None,
        handoff: HumanHandoff,
        records: GenerationRecordRepository,
        analytics: TenantAnalytics,
        side_effects: SideEffectQueue,
        response_cache: ResponseCache | None = None,
        retrieval_cache: TenantCache[RetrievalResult] | None = None,
        signals: TextSignals | None = None,
        default_tenant_id: str = "default",
        retrieval_deadline: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.gate = gate
        self.takeover = takeover
        self.retriever = retriever
        self.invoker = invoker
        self.formatter = formatter
        self.settings = settings
        self.retrieval_settings = retrieval_settings or RetrievalSettings()
        self.handoff = handoff
        self.records = records
        self.analytics = analytics
        self.side_effects = side_effects
        self.response_cache = response_cache
        self.retrieval_cache = retrieval_cache
        self.signals = signals or TextSignals()
        self.default_tenant_id = default_tenant_id
        self._retrieval_deadline = retrieval_deadline or self.retrieval_settings.timeout + 1.0
        self._clock = clock
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Public API

    async def process_message(self, message: ProcessMessageInput) -> ProcessMessageResult:
        outcome = await self.process(message)
        return outcome.result

    async def process(self, message: ProcessMessageInput) -> PipelineOutcome:
        started = time.perf_counter()
        trace_id = uuid.uuid4().hex
        tenant_id = message.village_id or self.default_tenant_id
        sender = message.user_id
        with bind_trace(trace_id, tenant_id, sender):
            try:
                async with self._locks.hold((tenant_id, sender)):
                    return await self._run(message, tenant_id, trace_id, started)
            except Exception:
                logger.exception("Message processing failed")
                return self._outcome(
                    message,
                    started,
                    trace_id,
                    success=False,
                    response=fallbacks.GENERIC,
                    intent=Intent.ERROR,
                    error="internal_error",
                )

    def in_flight(self) -> int:
        return self._locks.in_flight()

    # ------------------------------------------------------------------
    # Pipeline steps

    async def _run(
        self,
        message: ProcessMessageInput,
        tenant_id: str,
        trace_id: str,
        started: float,
    ) -> PipelineOutcome:
        runtime = self.settings.current
        evaluation = message.is_evaluation
        text = message.message.strip()

        if not evaluation:
            decision = self.gate.admit(tenant_id, message.user_id, text, self._clock())
            if not decision.allowed:
                return self._rejected(message, decision, runtime, started, trace_id)

        status = (
            self.takeover.get_status(tenant_id, message.user_id)
            if evaluation
            else self.takeover.register_inbound(tenant_id, message.user_id)
        )
        if status.in_takeover:
            return self._hand_off(message, tenant_id, trace_id, started, status)

        if not runtime.ai_enabled:
            if not evaluation:
                self._enqueue_handoff(message, tenant_id, trace_id, None)
            return self._outcome(
                message, started, trace_id, success=True,
                response=fallbacks.AI_DISABLED, intent=Intent.AI_DISABLED,
                handed_off=not evaluation,
            )

        if text or not message.media_url:
            label = detect_spam_content(text)
            if label is not None:
                logger.info("Content flagged as spam (%s)", label)
                return self._outcome(
                    message, started, trace_id, success=False, response="",
                    intent=Intent.SPAM, guard_reason=f"content:{label}",
                    error="spam_detected",
                )

        use_cache = runtime.cache_enabled and not evaluation
        prompt = self._prompt(message)
        generation = None
        retrieval = RetrievalResult.empty()
        if use_cache and self.response_cache is not None:
            generation = self.response_cache.get(tenant_id, message.channel, text)
        if generation is not None:
            generation = generation.model_copy(
                update={
                    "from_cache": True,
                    "trace_id": trace_id,
                    "usage": TokenUsage(),
                    "cost_usd": 0.0,
                    "latency_ms": 0.0,
                    "attempts": (),
                    "fallback_used": False,
                }
            )
            logger.info("Served reply from cache")
        else:
            retrieval = await self._retrieve(text, tenant_id, evaluation, use_cache)
            context = retrieval.context_text(self.retrieval_settings.max_context_chars)
            history = [turn.model_dump() for turn in message.conversation_history]
            try:
                generation = await self.invoker.generate(
                    prompt,
                    context,
                    history,
                    ModelPreference(runtime.primary_model, runtime.fallback_model),
                    channel=message.channel,
                    trace_id=trace_id,
                )
            except ModelUnavailable as exc:
                return self._model_unavailable(
                    message, tenant_id, trace_id, started, retrieval, exc
                )

        generation = generation.model_copy(
            update={
                "sentiment": self.signals.normalize_sentiment(generation.sentiment, text),
                "language": generation.language or self.signals.language(text),
            }
        )
        payload = self.formatter.format(generation, message.channel)

        if (
            use_cache
            and self.response_cache is not None
            and not generation.from_cache
            and not retrieval.degraded
        ):
            self.response_cache.put(tenant_id, message.channel, text, generation)

        outcome = self._outcome(
            message,
            started,
            trace_id,
            success=True,
            response=validate_response(generation.response_text),
            guidance_text=validate_optional(generation.guidance_text),
            intent=generation.intent,
            generation=generation,
            retrieval=retrieval,
            payload=payload,
        )
        if not evaluation:
            self._record(message, tenant_id, outcome.result, generation)
        return outcome

    async def _retrieve(
        self, text: str, tenant_id: str, evaluation: bool, use_cache: bool
    ) -> RetrievalResult:
        if not should_retrieve(text):
            return RetrievalResult.empty()
        cache_key = normalize_query(text)
        if use_cache and self.retrieval_cache is not None:
            cached = self.retrieval_cache.get(tenant_id, cache_key)
            if cached is not None:
                return cached
        settings = self.retrieval_settings
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    self.retriever.retrieve,
                    text,
                    tenant_id,
                    top_k=settings.top_k,
                    min_score=settings.min_score,
                    track_usage=not evaluation,
                ),
                timeout=self._retrieval_deadline,
            )
        except asyncio.TimeoutError:
            logger.warning("Knowledge retrieval exceeded %.1fs deadline", self._retrieval_deadline)
            return RetrievalResult.empty(degraded=True, warning="deadline exceeded")
        except Exception as exc:
            logger.exception("Knowledge retrieval failed")
            return RetrievalResult.empty(degraded=True, warning=str(exc) or type(exc).__name__)
        if use_cache and self.retrieval_cache is not None and not result.degraded:
            self.retrieval_cache.set(tenant_id, cache_key, result, RETRIEVAL_CACHE_TTL)
        return result

    # ------------------------------------------------------------------
    # Short circuits

    def _rejected(
        self,
        message: ProcessMessageInput,
        decision: Decision,
        runtime: RuntimeSettings,
        started: float,
        trace_id: str,
    ) -> PipelineOutcome:
        reason = decision.reason or RejectReason.RATE_EXCEEDED
        intent = (
            Intent.BLACKLISTED
            if decision.kind is DecisionKind.BLACKLISTED
            else _GUARD_INTENTS[reason]
        )
        response = fallbacks.guard_warning(decision) if runtime.reject_mode == "warn" else ""
        return self._outcome(
            message, started, trace_id, success=True, response=response,
            intent=intent, guard_reason=reason.value,
        )

    def _hand_off(
        self,
        message: ProcessMessageInput,
        tenant_id: str,
        trace_id: str,
        started: float,
        status: TakeoverStatus,
    ) -> PipelineOutcome:
        if not message.is_evaluation:
            self._enqueue_handoff(message, tenant_id, trace_id, status.operator_id)
        logger.info("Conversation under takeover by %s, message queued", status.operator_id)
        return self._outcome(
            message, started, trace_id, success=True, response="",
            intent=Intent.TAKEOVER, is_takeover=True, operator_id=status.operator_id,
            handed_off=not message.is_evaluation,
        )

    def _enqueue_handoff(
        self,
        message: ProcessMessageInput,
        tenant_id: str,
        trace_id: str,
        operator_id: str | None,
    ) -> None:
        self.handoff.enqueue(
            HandoffItem(
                tenant_id=tenant_id,
                sender=message.user_id,
                channel=message.channel,
                text=message.message,
                trace_id=trace_id,
                operator_id=operator_id,
                media_url=message.media_url,
                metadata={"media_type": message.media_type} if message.media_type else {},
            )
        )

    def _model_unavailable(
        self,
        message: ProcessMessageInput,
        tenant_id: str,
        trace_id: str,
        started: float,
        retrieval: RetrievalResult,
        exc: ModelUnavailable,
    ) -> PipelineOutcome:
        logger.error("Model unavailable after fallback (%s): %s", exc.kind, exc)
        usage = sum((attempt.usage for attempt in exc.attempts), TokenUsage())
        cost = round(sum(attempt.cost_usd for attempt in exc.attempts), 6)
        outcome = self._outcome(
            message,
            started,
            trace_id,
            success=False,
            response=fallbacks.model_failure_message(exc.kind),
            intent=Intent.ERROR,
            retrieval=retrieval,
            error=f"model_unavailable:{exc.kind}",
        )
        if not message.is_evaluation:
            record = self._build_record(message, tenant_id, outcome.result, None)
            record = replace(
                record,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost_usd=cost,
                model=exc.attempts[-1].model if exc.attempts else None,
            )
            self._submit_record(record)
        return outcome

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _prompt(message: ProcessMessageInput) -> str:
        text = message.message.strip()
        if message.media_url:
            note = f"[lampiran {message.media_type or 'media'}: {message.media_url}]"
            return f"{text}\n\n{note}" if text else note
        return text

    def _outcome(
        self,
        message: ProcessMessageInput,
        started: float,
        trace_id: str,
        *,
        success: bool,
        response: str,
        intent: Intent,
        guidance_text: str | None = None,
        generation: GenerationResult | None = None,
        retrieval: RetrievalResult | None = None,
        payload: ChannelPayload | None = None,
        error: str | None = None,
        guard_reason: str | None = None,
        is_takeover: bool = False,
        operator_id: str | None = None,
        handed_off: bool = False,
    ) -> PipelineOutcome:
        has_knowledge = bool(retrieval and retrieval.has_knowledge)
        metadata = ResultMetadata(
            processing_time_ms=round((time.perf_counter() - started) * 1000, 2),
            model=generation.model if generation else None,
            has_knowledge=has_knowledge,
            knowledge_confidence=retrieval.confidence.level.value if has_knowledge else None,
            sentiment=generation.sentiment if generation else None,
            language=generation.language if generation else None,
            trace_id=trace_id,
            cache_hit=bool(generation and generation.from_cache),
            fallback_used=bool(generation and generation.fallback_used),
            guard_reason=guard_reason,
            is_takeover=is_takeover,
            operator_id=operator_id,
            knowledge_degraded=bool(retrieval and retrieval.degraded),
        )
        fields = None
        contacts = None
        if generation is not None:
            fields = None if generation.fields.is_empty() else generation.fields
            contacts = generation.contacts or None
        result = ProcessMessageResult(
            success=success,
            response=response,
            guidance_text=guidance_text,
            intent=intent.value,
            fields=fields,
            contacts=contacts,
            metadata=metadata,
            error=error,
        )
        if payload is None:
            payload = self.formatter.format_text(response, message.channel)
        return PipelineOutcome(result=result, payload=payload, handed_off=handed_off)

    def _build_record(
        self,
        message: ProcessMessageInput,
        tenant_id: str,
        result: ProcessMessageResult,
        generation: GenerationResult | None,
    ) -> GenerationRecord:
        meta = result.metadata
        return GenerationRecord(
            trace_id=meta.trace_id or "",
            tenant_id=tenant_id,
            sender=message.user_id,
            channel=message.channel,
            intent=result.intent,
            success=result.success,
            model=meta.model,
            input_tokens=generation.usage.input_tokens if generation else 0,
            output_tokens=generation.usage.output_tokens if generation else 0,
            cost_usd=generation.cost_usd if generation else 0.0,
            processing_time_ms=meta.processing_time_ms,
            has_knowledge=meta.has_knowledge,
            knowledge_confidence=meta.knowledge_confidence,
            cache_hit=meta.cache_hit,
            fallback_used=meta.fallback_used,
            sentiment=meta.sentiment,
            language=meta.language,
            error=result.error,
            fields=result.fields.model_dump(exclude_none=True) if result.fields else {},
        )

    def _record(
        self,
        message: ProcessMessageInput,
        tenant_id: str,
        result: ProcessMessageResult,
        generation: GenerationResult,
    ) -> None:
        self._submit_record(self._build_record(message, tenant_id, result, generation))

    def _submit_record(self, record: GenerationRecord) -> None:
        self.side_effects.submit("persist_generation", self.records.save, record)
        self.side_effects.submit("tenant_analytics", self.analytics.record, record)
        self.side_effects.submit(
            "conversation_activity", self.takeover.touch, record.tenant_id, record.sender
        )


__all__ = ["MessageOrchestrator", "PipelineOutcome"]
