"""Logging for the message service.

Two rotating files are written under ``LOG_DIR``: ``app.log`` for the
``civichub`` logger tree and ``access.log`` for one JSON line per HTTP request.
Every record is stamped with the trace context of the message being handled,
so the retrieval, generation and delivery lines of one message can be joined
on ``trace_id``.

Citizens' phone numbers are masked and message bodies are replaced by their
length before anything reaches disk.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

from .core.trace_context import get_current_trace

APP_LOGGER_NAME = "civichub"
ACCESS_LOGGER_NAME = "uvicorn.access"

TEXT_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s [trace=%(trace_id)s]: %(message)s"

_QUIET_PATHS = frozenset({"/api/health", "/api/metrics"})

REDACTED_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "x-hub-signature-256",
        "x-internal-api-key",
    }
)

# Citizen content; only its length is logged.
CONTENT_KEYS = frozenset({"message", "body", "text", "conversationhistory"})

_PHONE = re.compile(r"\+?\d{8,15}")


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LogOptions:
    directory: str = "logs"
    level: int = logging.INFO
    json_lines: bool = False
    retention_days: int = 7
    rotate_utc: bool = False
    request_bodies: bool = False

    @classmethod
    def from_env(cls) -> "LogOptions":
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        try:
            retention = int(os.getenv("LOG_RETENTION_DAYS", "7"))
        except ValueError:
            retention = 7
        return cls(
            directory=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            json_lines=_flag("LOG_JSON"),
            retention_days=retention,
            rotate_utc=_flag("LOG_ROTATE_UTC"),
            request_bodies=_flag("LOG_REQUEST_BODIES"),
        )


def mask_phone(value: str) -> str:
    return _PHONE.sub(lambda m: f"{m.group(0)[:4]}****{m.group(0)[-2:]}", value)


class TraceContextFilter(logging.Filter):
    """Stamp ``trace_id``, ``tenant_id`` and a masked ``sender`` on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        trace = get_current_trace() or {}
        record.trace_id = trace.get("trace_id", "-")
        record.tenant_id = trace.get("tenant_id", "-")
        record.sender = mask_phone(trace.get("sender", "-"))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON is set."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "trace_id": getattr(record, "trace_id", "-"),
            "tenant_id": getattr(record, "tenant_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _scrub(data: object) -> object:
    """Return a copy of ``data`` safe to write to the access log."""

    if isinstance(data, str):
        return mask_phone(data)
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    if not isinstance(data, dict):
        return data

    cleaned: dict[Any, object] = {}
    for key, value in data.items():
        name = key.lower() if isinstance(key, str) else key
        if name in REDACTED_KEYS:
            cleaned[key] = "***"
        elif name in CONTENT_KEYS and isinstance(value, (str, list)):
            cleaned[key] = f"<{len(value)} redacted>"
        else:
            cleaned[key] = _scrub(value)
    return cleaned


async def _buffer_body(request: Request) -> object | None:
    """Read the request body once and replay it for the route handler."""

    raw = await request.body()

    async def replay() -> dict:  # pragma: no cover - starlette internals
        return {"type": "http.request", "body": raw, "more_body": False}

    request._receive = replay  # type: ignore[attr-defined]
    if not raw:
        return None
    try:
        return _scrub(json.loads(raw))
    except ValueError:
        return f"<{len(raw)} bytes>"


def _client_address(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _install_access_logging(app: FastAPI, options: LogOptions) -> None:
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        body = await _buffer_body(request) if options.request_bodies else None

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        entry: dict[str, Any] = {
            "request_id": request_id,
            "trace_id": response.headers.get("X-Trace-Id"),
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round(elapsed_ms, 2),
            "client_ip": _client_address(request),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str, ensure_ascii=False))
        return response


def _file_handler(options: LogOptions, filename: str) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(options.directory, filename),
        when="midnight",
        backupCount=options.retention_days,
        utc=options.rotate_utc,
    )
    formatter = JsonFormatter() if options.json_lines else logging.Formatter(TEXT_FORMAT)
    handler.setFormatter(formatter)
    handler.addFilter(TraceContextFilter())
    return handler


def init_logging(app: FastAPI | None = None, options: LogOptions | None = None) -> None:
    """Attach the rotating handlers and, given an app, the access middleware.

    The application logger keeps any handlers it already has so repeated app
    construction does not duplicate lines; the access logger is always reset
    because uvicorn installs its own console handler on it.
    """

    options = options or LogOptions.from_env()
    os.makedirs(options.directory, exist_ok=True)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(_file_handler(options, "app.log"))
    app_logger.setLevel(options.level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_file_handler(options, "access.log"))
    access_logger.setLevel(options.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app, options)
