"""Construction of the long-lived pipeline components.

Everything with state (guards, conversation store, caches, analytics) is built
once per application and shared through ``app.state.services``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import requests
from fastapi import Request

from .channels import ChannelAdapter, WebchatAdapter, WhatsAppAdapter
from .config import RuntimeSettings, Settings, SettingsStore
from .conversations.handoff import InMemoryHandoffQueue
from .conversations.takeover import InMemoryConversationStateStore, TakeoverTracker
from .core.db import connection_factory, ensure_schema
from .evaluation.evaluator import GoldenSetEvaluator
from .evaluation.repository import (
    GoldenSetRepository,
    InMemoryGoldenSetRepository,
    PostgresGoldenSetRepository,
)
from .formatting.formatter import ResponseFormatter
from .guard.gate import AbuseGate
from .guard.rate_limiter import RateLimiter
from .guard.spam_guard import SpamGuard
from .llm.invoker import ModelInvoker
from .llm.providers import ModelProvider, create_provider
from .pipeline.analytics import (
    GenerationRecordRepository,
    InMemoryGenerationRepository,
    PostgresGenerationRepository,
    SideEffectQueue,
    TenantAnalytics,
)
from .pipeline.cache import ResponseCache, TenantCache
from .pipeline.delivery import DeliveryCoordinator, SessionRegistry
from .pipeline.orchestrator import MessageOrchestrator
from .retrieval.client import KnowledgeRetriever
from .retrieval.models import RetrievalResult


@dataclass
class Services:
    settings: Settings
    runtime: SettingsStore
    rate_limiter: RateLimiter
    spam_guard: SpamGuard
    gate: AbuseGate
    takeover: TakeoverTracker
    handoff: InMemoryHandoffQueue
    retriever: KnowledgeRetriever
    invoker: ModelInvoker
    response_cache: ResponseCache
    retrieval_cache: TenantCache[RetrievalResult]
    records: GenerationRecordRepository
    analytics: TenantAnalytics
    side_effects: SideEffectQueue
    orchestrator: MessageOrchestrator
    adapters: dict[str, ChannelAdapter]
    sessions: SessionRegistry
    delivery: DeliveryCoordinator
    golden_set: GoldenSetEvaluator

    def clear_caches(self, tenant_id: str | None = None) -> int:
        return self.response_cache.clear(tenant_id) + self.retrieval_cache.clear(tenant_id)

    def shutdown(self) -> None:
        self.side_effects.shutdown()


def build_services(
    settings: Settings | None = None,
    *,
    provider: ModelProvider | None = None,
    retriever: KnowledgeRetriever | None = None,
    http_session: requests.Session | None = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    """Wire the pipeline from ``settings`` (read from the environment by default)."""

    settings = settings or Settings.from_env()
    runtime = SettingsStore(RuntimeSettings.from_settings(settings))
    rate_limiter = RateLimiter(settings.rate_limit, clock=clock)
    spam_guard = SpamGuard(settings.spam_guard, clock=clock)
    gate = AbuseGate(rate_limiter, spam_guard, clock=clock)
    takeover = TakeoverTracker(InMemoryConversationStateStore())
    handoff = InMemoryHandoffQueue()
    retriever = retriever or KnowledgeRetriever(
        settings.retrieval.search_url,
        session=http_session,
        timeout=settings.retrieval.timeout,
        api_key=settings.retrieval.api_key,
    )
    invoker = ModelInvoker(
        provider or create_provider(settings.model.provider),
        timeout=settings.model.timeout,
        pricing=settings.model.pricing,
    )
    records: GenerationRecordRepository
    golden_repo: GoldenSetRepository
    history_limit = settings.golden_set.history_limit
    if settings.database_url:
        connect = connection_factory(settings.database_url)
        with connect() as conn:
            ensure_schema(conn)
        records = PostgresGenerationRepository(connect)
        golden_repo = PostgresGoldenSetRepository(connect, history_limit)
    else:
        records = InMemoryGenerationRepository()
        golden_repo = InMemoryGoldenSetRepository(history_limit)
    response_cache = ResponseCache()
    retrieval_cache: TenantCache[RetrievalResult] = TenantCache()
    analytics = TenantAnalytics()
    side_effects = SideEffectQueue()
    orchestrator = MessageOrchestrator(
        gate=gate,
        takeover=takeover,
        retriever=retriever,
        invoker=invoker,
        formatter=ResponseFormatter(),
        settings=runtime,
        retrieval_settings=settings.retrieval,
        handoff=handoff,
        records=records,
        analytics=analytics,
        side_effects=side_effects,
        response_cache=response_cache,
        retrieval_cache=retrieval_cache,
        default_tenant_id=settings.default_tenant_id,
        clock=clock,
    )
    adapters: dict[str, ChannelAdapter] = {
        "whatsapp": WhatsAppAdapter(
            config=settings.whatsapp.model_dump(exclude_none=True), session=http_session
        ),
        "webchat": WebchatAdapter(),
    }
    sessions = SessionRegistry()
    delivery = DeliveryCoordinator(orchestrator, adapters, sessions=sessions, spam_guard=spam_guard)
    evaluator = GoldenSetEvaluator(
        orchestrator,
        golden_repo,
        settings.golden_set,
        default_tenant_id=settings.default_tenant_id,
    )
    return Services(
        settings=settings,
        runtime=runtime,
        rate_limiter=rate_limiter,
        spam_guard=spam_guard,
        gate=gate,
        takeover=takeover,
        handoff=handoff,
        retriever=retriever,
        invoker=invoker,
        response_cache=response_cache,
        retrieval_cache=retrieval_cache,
        records=records,
        analytics=analytics,
        side_effects=side_effects,
        orchestrator=orchestrator,
        adapters=adapters,
        sessions=sessions,
        delivery=delivery,
        golden_set=evaluator,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""

    return request.app.state.services
