"""HTTP client for the external knowledge search service.

The search service exposes ``POST {base_url}/api/search`` taking
``{query, topK, minScore, categories?, sourceTypes[], tenantId, trackUsage}``
and returning ``{results[], total, searchTimeMs}``. This client adds two
guarantees on top of the raw call:

- results are re-filtered locally (``min_score``, ``source_types``) and capped
  at ``top_k`` regardless of what the service returns;
- every failure (timeouts, 5xx, connection errors, malformed payloads) turns
  into an empty, ``degraded`` :class:`RetrievalResult`. A knowledge miss never
  aborts message processing.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import requests

from ..core.trace_context import get_current_trace_id
from ..errors import KnowledgeUnavailable, UpstreamTimeout
from .models import RetrievalHit, RetrievalResult, SourceType, calculate_confidence

DEFAULT_SOURCE_TYPES: tuple[SourceType, ...] = (SourceType.KNOWLEDGE, SourceType.DOCUMENT)


class KnowledgeRetriever:
    """Query the knowledge search service on behalf of a tenant."""

    def __init__(
        self,
        base_url: str | None,
        *,
        session: requests.Session | None = None,
        timeout: float = 5.0,
        api_key: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._headers = {"X-Internal-API-Key": api_key} if api_key else {}
        self._usage_lock = threading.Lock()
        self._usage: dict[str, dict[str, int]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def retrieve(
        self,
        query: str,
        tenant_id: str,
        *,
        categories: Sequence[str] | None = None,
        source_types: Iterable[SourceType | str] = DEFAULT_SOURCE_TYPES,
        top_k: int = 5,
        min_score: float = 0.55,
        track_usage: bool = True,
    ) -> RetrievalResult:
        allowed = {SourceType(value) for value in source_types}
        if not self.base_url:
            return RetrievalResult.empty(degraded=True, warning="knowledge search not configured")
        try:
            payload, elapsed_ms = self._search(
                query, tenant_id, categories, allowed, top_k, min_score, track_usage
            )
            hits = self._parse_hits(payload)
        except (KnowledgeUnavailable, UpstreamTimeout) as exc:
            self.logger.warning("Knowledge retrieval degraded: %s", exc)
            self._record_usage(tenant_id, track_usage, hits=0, failed=True)
            return RetrievalResult.empty(degraded=True, warning=str(exc))

        filtered = sorted(
            (hit for hit in hits if hit.score >= min_score and hit.source_type in allowed),
            key=lambda hit: hit.score,
            reverse=True,
        )[:top_k]
        self._record_usage(tenant_id, track_usage, hits=len(filtered), failed=False)
        total = payload.get("total") if isinstance(payload.get("total"), int) else len(hits)
        return RetrievalResult(
            hits=tuple(filtered),
            total=total,
            search_time_ms=float(payload.get("searchTimeMs") or elapsed_ms),
            confidence=calculate_confidence([hit.score for hit in filtered]),
        )

    def usage_stats(self, tenant_id: str | None = None) -> dict[str, dict[str, int]]:
        with self._usage_lock:
            return {
                tenant: dict(counters)
                for tenant, counters in self._usage.items()
                if tenant_id is None or tenant == tenant_id
            }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _search(
        self,
        query: str,
        tenant_id: str,
        categories: Sequence[str] | None,
        source_types: set[SourceType],
        top_k: int,
        min_score: float,
        track_usage: bool,
    ) -> tuple[Mapping[str, Any], float]:
        body: dict[str, Any] = {
            "query": query,
            "topK": top_k,
            "minScore": min_score,
            "sourceTypes": sorted(t.value for t in source_types),
            "tenantId": tenant_id,
            "trackUsage": track_usage,
        }
        if categories:
            body["categories"] = list(categories)
        headers = dict(self._headers)
        trace_id = get_current_trace_id()
        if trace_id:
            headers["X-Trace-Id"] = trace_id

        started = time.perf_counter()
        try:
            response = self.session.post(
                f"{self.base_url}/api/search",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as exc:
            raise UpstreamTimeout(f"knowledge search timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise KnowledgeUnavailable(f"knowledge search failed: {exc}") from exc
        except ValueError as exc:
            raise KnowledgeUnavailable("knowledge search returned invalid JSON") from exc
        if not isinstance(payload, Mapping):
            raise KnowledgeUnavailable("knowledge search returned an unexpected payload")
        return payload, (time.perf_counter() - started) * 1000

    @staticmethod
    def _parse_hits(payload: Mapping[str, Any]) -> list[RetrievalHit]:
        raw_results = payload.get("results") or []
        if not isinstance(raw_results, list):
            raise KnowledgeUnavailable("knowledge search results must be a list")
        hits: list[RetrievalHit] = []
        for item in raw_results:
            if not isinstance(item, Mapping):
                continue
            try:
                source_type = SourceType(item.get("sourceType") or item.get("source_type") or "knowledge")
                score = float(item.get("score", 0.0))
            except (ValueError, TypeError):
                continue
            content = item.get("content") or ""
            if not content:
                continue
            hits.append(
                RetrievalHit(
                    source_id=str(item.get("id") or item.get("sourceId") or ""),
                    source_type=source_type,
                    score=max(0.0, min(score, 1.0)),
                    content=str(content),
                    category=item.get("category"),
                    title=item.get("title"),
                )
            )
        return hits

    def _record_usage(self, tenant_id: str, track_usage: bool, *, hits: int, failed: bool) -> None:
        if not track_usage:
            return
        with self._usage_lock:
            counters = self._usage.setdefault(
                tenant_id, {"queries": 0, "hits": 0, "misses": 0, "failures": 0}
            )
            counters["queries"] += 1
            counters["hits"] += hits
            if failed:
                counters["failures"] += 1
            elif not hits:
                counters["misses"] += 1
