"""Replay the golden set through the live pipeline in evaluation mode."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from ..config import GoldenSetSettings
from ..pipeline.orchestrator import MessageOrchestrator
from ..pipeline.schemas import ProcessMessageInput
from .repository import GoldenSetRepository
from .schemas import (
    GoldenSetItem,
    GoldenSetItemResult,
    GoldenSetRun,
    GoldenSetStatus,
    GoldenSetSummary,
    GoldenSetThresholds,
)
from .scoring import aggregate, score_item

logger = logging.getLogger(__name__)


def load_items(path: str | Path) -> list[GoldenSetItem]:
    """Read golden-set items from a JSON array (or ``{"items": [...]}``)."""

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("items", [])
    return [GoldenSetItem.model_validate(item) for item in raw]


class GoldenSetEvaluator:
    def __init__(
        self,
        orchestrator: MessageOrchestrator,
        repository: GoldenSetRepository,
        settings: GoldenSetSettings | None = None,
        *,
        default_tenant_id: str | None = None,
        storage_timeout: float = 10.0,
    ) -> None:
        self.orchestrator = orchestrator
        self.repository = repository
        self.settings = settings or GoldenSetSettings()
        self.default_tenant_id = default_tenant_id
        self.storage_timeout = storage_timeout

    def default_items(self) -> list[GoldenSetItem]:
        return load_items(self.settings.items_path)

    async def run(
        self, items: Sequence[GoldenSetItem] | None = None, *, village_id: str | None = None
    ) -> GoldenSetRun:
        items = list(items) if items is not None else self.default_items()
        started_at = datetime.now(timezone.utc)
        run_id = f"golden-{int(started_at.timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"
        results: list[GoldenSetItemResult] = []
        for item in items:
            item_started = time.perf_counter()
            result = await self.orchestrator.process_message(
                ProcessMessageInput(
                    user_id=f"golden_eval_{item.id}",
                    village_id=item.village_id or village_id or self.default_tenant_id,
                    message=item.query,
                    channel="webchat",
                    is_evaluation=True,
                )
            )
            results.append(
                score_item(
                    item,
                    result.intent or "UNKNOWN",
                    result.response or "",
                    round((time.perf_counter() - item_started) * 1000, 2),
                )
            )

        intent_accuracy, keyword_accuracy, overall = aggregate(results)
        settings = self.settings
        previous = await self._storage(self.repository.latest)
        regression = (
            previous is not None
            and previous.overall_accuracy - overall >= settings.regression_delta
        )
        run = GoldenSetRun(
            run_id=run_id,
            total=len(results),
            intent_accuracy=intent_accuracy,
            keyword_accuracy=keyword_accuracy,
            overall_accuracy=overall,
            thresholds=GoldenSetThresholds(
                overall=settings.threshold_overall,
                intent=settings.threshold_intent,
                keyword=settings.threshold_keyword,
                regression_delta=settings.regression_delta,
            ),
            status=GoldenSetStatus(
                overall_pass=overall >= settings.threshold_overall,
                intent_pass=intent_accuracy >= settings.threshold_intent,
                keyword_pass=keyword_accuracy >= settings.threshold_keyword,
                regression_detected=regression,
            ),
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            results=tuple(results),
        )
        await self._storage(self.repository.save, run)
        logger.info(
            "Golden set evaluation completed: run=%s total=%d overall=%.3f regression=%s",
            run.run_id,
            run.total,
            run.overall_accuracy,
            regression,
        )
        return run

    async def _storage(self, call, *args):
        # Repository calls may block on Postgres; keep them off the event loop.
        return await asyncio.wait_for(asyncio.to_thread(call, *args), self.storage_timeout)

    def summary(self) -> GoldenSetSummary:
        history = self.repository.history(self.settings.history_limit)
        return GoldenSetSummary(latest=history[0] if history else None, history=tuple(history))
