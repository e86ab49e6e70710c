"""Generation records, tenant counters and the background side-effect queue."""

from __future__ import annotations

import contextvars
import logging
import threading
from collections import Counter, deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.db import ConnectionFactory, apply_tenant_settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GenerationRecord:
    """What gets persisted for every message the AI processed."""

    trace_id: str
    tenant_id: str
    sender: str
    channel: str
    intent: str
    success: bool
    model: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    processing_time_ms: float = 0.0
    has_knowledge: bool = False
    knowledge_confidence: str | None = None
    cache_hit: bool = False
    fallback_used: bool = False
    sentiment: str | None = None
    language: str | None = None
    error: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)


class GenerationRecordRepository(Protocol):
    def save(self, record: GenerationRecord) -> None: ...

    def recent(self, tenant_id: str, limit: int = 50) -> list[GenerationRecord]: ...


class InMemoryGenerationRepository:
    """Bounded per-process store used when no database is configured."""

    def __init__(self, max_records: int = 5000) -> None:
        self._records: deque[GenerationRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def save(self, record: GenerationRecord) -> None:
        with self._lock:
            self._records.append(record)

    def recent(self, tenant_id: str, limit: int = 50) -> list[GenerationRecord]:
        with self._lock:
            matching = [r for r in self._records if r.tenant_id == tenant_id]
        return list(reversed(matching))[:limit]

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class PostgresGenerationRepository:
    """PostgreSQL-backed generation log (``message_generations`` table)."""

    def __init__(self, connect: ConnectionFactory):
        self._connect = connect

    def save(self, record: GenerationRecord) -> None:
        with self._connect() as conn:
            apply_tenant_settings(conn, record.tenant_id)
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO message_generations
                        (trace_id, tenant_id, sender, channel, intent, success, model,
                         input_tokens, output_tokens, cost_usd, processing_time_ms,
                         has_knowledge, knowledge_confidence, cache_hit, fallback_used,
                         sentiment, language, error, fields, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.trace_id,
                        record.tenant_id,
                        record.sender,
                        record.channel,
                        record.intent,
                        record.success,
                        record.model,
                        record.input_tokens,
                        record.output_tokens,
                        record.cost_usd,
                        record.processing_time_ms,
                        record.has_knowledge,
                        record.knowledge_confidence,
                        record.cache_hit,
                        record.fallback_used,
                        record.sentiment,
                        record.language,
                        record.error,
                        Jsonb(record.fields),
                        record.created_at,
                    ),
                )

    def recent(self, tenant_id: str, limit: int = 50) -> list[GenerationRecord]:
        with self._connect() as conn:
            apply_tenant_settings(conn, tenant_id)
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT trace_id, tenant_id, sender, channel, intent, success, model,
                           input_tokens, output_tokens, cost_usd, processing_time_ms,
                           has_knowledge, knowledge_confidence, cache_hit, fallback_used,
                           sentiment, language, error, fields, created_at
                    FROM message_generations
                    WHERE tenant_id = %s
                    ORDER BY created_at DESC
                    LIMIT %s
                    """,
                    (tenant_id, limit),
                )
                rows = cur.fetchall()
        return [GenerationRecord(**{**row, "fields": row.get("fields") or {}}) for row in rows]


# ---------------------------------------------------------------------------
# Counters


@dataclass
class _TenantCounters:
    messages: int = 0
    failures: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    knowledge_hits: int = 0
    knowledge_misses: int = 0
    cache_hits: int = 0
    fallbacks: int = 0
    intents: Counter = field(default_factory=Counter)
    models: Counter = field(default_factory=Counter)


class TenantAnalytics:
    """In-process per-tenant aggregates for the dashboard."""

    def __init__(self) -> None:
        self._counters: dict[str, _TenantCounters] = {}
        self._lock = threading.Lock()

    def record(self, record: GenerationRecord) -> None:
        with self._lock:
            counters = self._counters.setdefault(record.tenant_id, _TenantCounters())
            counters.messages += 1
            counters.failures += 0 if record.success else 1
            counters.input_tokens += record.input_tokens
            counters.output_tokens += record.output_tokens
            counters.cost_usd += record.cost_usd
            if record.has_knowledge:
                counters.knowledge_hits += 1
            else:
                counters.knowledge_misses += 1
            counters.cache_hits += 1 if record.cache_hit else 0
            counters.fallbacks += 1 if record.fallback_used else 0
            counters.intents[record.intent] += 1
            if record.model:
                counters.models[record.model] += 1

    def snapshot(self, tenant_id: str) -> dict[str, Any]:
        with self._lock:
            counters = self._counters.get(tenant_id) or _TenantCounters()
            data = asdict(counters)
        data["cost_usd"] = round(data["cost_usd"], 6)
        data["intents"] = dict(counters.intents)
        data["models"] = dict(counters.models)
        return data

    def tenants(self) -> list[str]:
        with self._lock:
            return sorted(self._counters)


# ---------------------------------------------------------------------------
# Background queue


class SideEffectQueue:
    """Run persistence and analytics writes off the reply path.

    Failures are logged and never reach the caller. ``drain`` waits for every
    submitted task, which tests and graceful shutdown rely on.
    """

    def __init__(self, max_workers: int = 2):
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="side-effects")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self.failures = 0

    def submit(self, name: str, fn: Callable[..., None], *args: Any) -> Future:
        context = contextvars.copy_context()
        future = self.executor.submit(context.run, self._run, name, fn, *args)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def drain(self, timeout: float | None = 10.0) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.drain()
        self.executor.shutdown(wait=True)

    def _run(self, name: str, fn: Callable[..., None], *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            with self._lock:
                self.failures += 1
            logger.exception("Side effect %s failed", name)

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
