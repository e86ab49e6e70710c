"""Storage for golden-set run history (most recent first)."""

from __future__ import annotations

import threading
from typing import Protocol

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.db import ConnectionFactory
from .schemas import GoldenSetRun


class GoldenSetRepository(Protocol):
    def save(self, run: GoldenSetRun) -> None: ...

    def latest(self) -> GoldenSetRun | None: ...

    def history(self, limit: int | None = None) -> list[GoldenSetRun]: ...


class InMemoryGoldenSetRepository:
    def __init__(self, history_limit: int = 10) -> None:
        self._runs: list[GoldenSetRun] = []
        self._limit = history_limit
        self._lock = threading.Lock()

    def save(self, run: GoldenSetRun) -> None:
        with self._lock:
            self._runs.insert(0, run)
            del self._runs[self._limit:]

    def latest(self) -> GoldenSetRun | None:
        with self._lock:
            return self._runs[0] if self._runs else None

    def history(self, limit: int | None = None) -> list[GoldenSetRun]:
        with self._lock:
            runs = list(self._runs)
        return runs[:limit] if limit is not None else runs


class PostgresGoldenSetRepository:
    """Append-only ``golden_set_runs`` table; the full run is stored as JSON."""

    def __init__(self, connect: ConnectionFactory, history_limit: int = 10):
        self._connect = connect
        self._limit = history_limit

    def save(self, run: GoldenSetRun) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO golden_set_runs (run_id, overall_accuracy, completed_at, payload)
                VALUES (%s, %s, %s, %s)
                """,
                (
                    run.run_id,
                    run.overall_accuracy,
                    run.completed_at,
                    Jsonb(run.model_dump(mode="json")),
                ),
            )

    def latest(self) -> GoldenSetRun | None:
        runs = self.history(1)
        return runs[0] if runs else None

    def history(self, limit: int | None = None) -> list[GoldenSetRun]:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT payload
                FROM golden_set_runs
                ORDER BY completed_at DESC
                LIMIT %s
                """,
                (min(limit or self._limit, self._limit),),
            )
            rows = cur.fetchall()
        return [GoldenSetRun.model_validate(row["payload"]) for row in rows]
