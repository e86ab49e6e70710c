"""Database helpers for tenant-aware psycopg connections."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import psycopg

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], psycopg.Connection]

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schema.sql"


def connection_factory(
    database_url: str, *, connect_timeout: int = 5, statement_timeout_ms: int = 10_000
) -> ConnectionFactory:
    """Return a callable opening a new connection to ``database_url``.

    Both the handshake and every statement are bounded so a stalled database
    surfaces as an error instead of a hung worker.
    """

    def _connect() -> psycopg.Connection:
        return psycopg.connect(
            database_url,
            connect_timeout=connect_timeout,
            options=f"-c statement_timeout={statement_timeout_ms}",
        )

    return _connect


def ensure_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_PATH) -> None:
    """Create the generation log and golden-set tables if they are missing.

    The schema file only uses ``IF NOT EXISTS`` style statements, so this is
    safe to call on every start-up.
    """

    with conn.cursor() as cur:
        cur.execute(schema_sql_path.read_text(encoding="utf-8"))
    conn.commit()


def apply_tenant_settings(conn: psycopg.Connection, tenant_id: str) -> None:
    """Configure ``app.tenant_id`` so row level security policies apply."""

    tenant_value = str(tenant_id or "")
    if not tenant_value:
        raise RuntimeError("tenant_id is required for tenant-scoped operations")

    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT set_config('app.tenant_id', %s, false)",
                (tenant_value,),
            )
    except Exception:
        logger.exception("Failed to apply tenant settings to connection")
        raise
