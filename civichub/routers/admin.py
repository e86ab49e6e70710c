"""Admin control surface consumed by the dashboard."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, ValidationError

from ..conversations.models import HandoffItem, TakeoverOutcome
from ..conversations.schemas import (
    HandoffItemResponse,
    TakeoverActionResponse,
    TakeoverEndRequest,
    TakeoverStartRequest,
    TakeoverStatusResponse,
)
from ..core.auth import OperatorTokenPayload, require_role
from ..services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class RuntimeSettingsUpdate(BaseModel):
    ai_enabled: bool | None = None
    cache_enabled: bool | None = None
    primary_model: str | None = None
    fallback_model: str | None = None
    reject_mode: str | None = None


class CacheToggleRequest(BaseModel):
    enabled: bool


class RateLimitUpdate(BaseModel):
    max_per_window: int | None = None
    window_ms: int | None = None
    cooldown_ms: int | None = None
    auto_blacklist_violations: int | None = None


class BlacklistAddRequest(BaseModel):
    sender: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=500)
    expires_in_days: float | None = Field(default=None, gt=0)


@contextmanager
def _service_context() -> Iterator[None]:
    try:
        yield
    except HTTPException:
        raise
    except (ValidationError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _tenant(payload: OperatorTokenPayload, services: Services, requested: str | None) -> str:
    """Operators bound to a tenant may only act on that tenant."""

    bound = payload.get("tenant_id")
    if bound and requested and requested != bound:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant mismatch")
    return bound or requested or services.settings.default_tenant_id


def _status_response(services: Services, tenant_id: str, sender: str) -> TakeoverStatusResponse:
    current = services.takeover.get_status(tenant_id, sender)
    return TakeoverStatusResponse(
        tenant_id=tenant_id,
        sender=sender,
        mode=current.mode,
        operator_id=current.operator_id,
        reason=current.reason,
        since=current.since,
    )


def _handoff_response(item: HandoffItem) -> HandoffItemResponse:
    return HandoffItemResponse(
        sender=item.sender,
        channel=item.channel,
        text=item.text,
        trace_id=item.trace_id,
        operator_id=item.operator_id,
        media_url=item.media_url,
        received_at=item.received_at,
    )


# ---------------------------------------------------------------------------
# Runtime settings and cache


@router.get("/settings")
def read_settings(
    _: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return {
        "runtime": services.runtime.current.model_dump(),
        "rate_limit": services.rate_limiter.settings.model_dump(),
        "spam_guard": services.spam_guard.settings.model_dump(),
        "retrieval": services.settings.retrieval.model_dump(exclude={"api_key"}),
    }


@router.patch("/settings")
def update_settings(
    body: RuntimeSettingsUpdate,
    _: OperatorTokenPayload = Depends(require_role("admin")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    with _service_context():
        updated = services.runtime.update(**body.model_dump(exclude_unset=True))
    return updated.model_dump()


@router.get("/cache")
def cache_stats(
    _: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return {
        "enabled": services.runtime.current.cache_enabled,
        "responses": services.response_cache.stats(),
        "retrieval": services.retrieval_cache.stats(),
    }


@router.post("/cache/toggle")
def toggle_cache(
    body: CacheToggleRequest,
    _: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    services.runtime.update(cache_enabled=body.enabled)
    return {"enabled": body.enabled}


@router.post("/cache/clear")
def clear_cache(
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    # unbound operators clear every tenant
    cleared = services.clear_caches(payload.get("tenant_id"))
    logger.info("Caches cleared by %s (%d entries)", payload["operator_id"], cleared)
    return {"cleared": cleared}


# ---------------------------------------------------------------------------
# Abuse control


@router.get("/rate-limit")
def rate_limit_overview(
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    tenant = _tenant(payload, services, tenant_id)
    return {
        "config": services.rate_limiter.settings.model_dump(),
        "stats": services.rate_limiter.stats(tenant),
    }


@router.patch("/rate-limit")
def update_rate_limit(
    body: RateLimitUpdate,
    _: OperatorTokenPayload = Depends(require_role("admin")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    with _service_context():
        updated = services.rate_limiter.reconfigure(**body.model_dump(exclude_none=True))
    return updated.model_dump()


@router.post("/rate-limit/{sender}/reset")
def reset_violations(
    sender: str,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    tenant = _tenant(payload, services, tenant_id)
    return {"reset": services.rate_limiter.reset_violations(tenant, sender)}


@router.get("/blacklist")
def list_blacklist(
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    tenant = _tenant(payload, services, tenant_id)
    return [entry.as_dict() for entry in services.rate_limiter.list_blacklist(tenant)]


@router.post("/blacklist", status_code=status.HTTP_201_CREATED)
def add_blacklist(
    body: BlacklistAddRequest,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    tenant = _tenant(payload, services, tenant_id)
    entry = services.rate_limiter.add_to_blacklist(
        tenant,
        body.sender,
        body.reason,
        added_by="admin",
        expires_in_days=body.expires_in_days,
    )
    return entry.as_dict()


@router.delete("/blacklist/{sender}", status_code=status.HTTP_204_NO_CONTENT)
def remove_blacklist(
    sender: str,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> Response:
    tenant = _tenant(payload, services, tenant_id)
    if not services.rate_limiter.remove_from_blacklist(tenant, sender):
        raise HTTPException(status_code=404, detail="Sender is not blacklisted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/spam/bans")
def list_bans(
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    tenant = _tenant(payload, services, tenant_id)
    return [ban.as_dict() for ban in services.spam_guard.list_bans(tenant)]


@router.delete("/spam/bans/{sender}", status_code=status.HTTP_204_NO_CONTENT)
def remove_ban(
    sender: str,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> Response:
    tenant = _tenant(payload, services, tenant_id)
    if not services.spam_guard.remove_ban(tenant, sender):
        raise HTTPException(status_code=404, detail="Sender is not banned")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/guard/stats")
def guard_stats(
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    bound = payload.get("tenant_id")
    return services.gate.stats(bound or tenant_id)


# ---------------------------------------------------------------------------
# Takeover and handoff


@router.post("/takeover/start", response_model=TakeoverActionResponse)
def start_takeover(
    body: TakeoverStartRequest,
    response: Response,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> TakeoverActionResponse:
    tenant = _tenant(payload, services, tenant_id)
    outcome = services.takeover.start_takeover(
        tenant, body.sender, body.operator_id or payload["operator_id"], body.reason
    )
    if outcome is TakeoverOutcome.ALREADY_IN_TAKEOVER:
        response.status_code = status.HTTP_409_CONFLICT
    return TakeoverActionResponse(
        outcome=outcome, status=_status_response(services, tenant, body.sender)
    )


@router.post("/takeover/end", response_model=TakeoverActionResponse)
def end_takeover(
    body: TakeoverEndRequest,
    response: Response,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> TakeoverActionResponse:
    tenant = _tenant(payload, services, tenant_id)
    outcome = services.takeover.end_takeover(tenant, body.sender)
    if outcome is TakeoverOutcome.NOT_IN_TAKEOVER:
        response.status_code = status.HTTP_409_CONFLICT
    return TakeoverActionResponse(
        outcome=outcome, status=_status_response(services, tenant, body.sender)
    )


@router.post("/takeover/close", response_model=TakeoverActionResponse)
def close_conversation(
    body: TakeoverEndRequest,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> TakeoverActionResponse:
    """Mark the conversation resolved; the citizen's next message reopens it."""
    tenant = _tenant(payload, services, tenant_id)
    outcome = services.takeover.close(tenant, body.sender)
    return TakeoverActionResponse(
        outcome=outcome, status=_status_response(services, tenant, body.sender)
    )


@router.get("/takeover", response_model=list[TakeoverStatusResponse])
def list_takeovers(
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> list[TakeoverStatusResponse]:
    tenant = _tenant(payload, services, tenant_id)
    return [
        _status_response(services, tenant, conversation.sender)
        for conversation in services.takeover.list_takeovers(tenant)
    ]


@router.get("/takeover/{sender}", response_model=TakeoverStatusResponse)
def takeover_status(
    sender: str,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> TakeoverStatusResponse:
    return _status_response(services, _tenant(payload, services, tenant_id), sender)


@router.get("/handoff", response_model=list[HandoffItemResponse])
def pending_handoff(
    sender: str | None = Query(default=None),
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> list[HandoffItemResponse]:
    tenant = _tenant(payload, services, tenant_id)
    return [_handoff_response(item) for item in services.handoff.pending(tenant, sender)]


@router.post("/handoff/{sender}/ack", response_model=list[HandoffItemResponse])
def acknowledge_handoff(
    sender: str,
    tenant_id: str | None = Query(default=None),
    payload: OperatorTokenPayload = Depends(require_role("operator")),
    services: Services = Depends(get_services),
) -> list[HandoffItemResponse]:
    tenant = _tenant(payload, services, tenant_id)
    return [_handoff_response(item) for item in services.handoff.drain(tenant, sender)]


# ---------------------------------------------------------------------------
# Analytics


@router.get("/analytics")
def tenant_analytics(
    tenant_id: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=200),
    payload: OperatorTokenPayload = Depends(require_role("viewer")),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    tenant = _tenant(payload, services, tenant_id)
    recent = services.records.recent(tenant, limit)
    return {
        "tenant_id": tenant,
        "counters": services.analytics.snapshot(tenant),
        "retrieval": services.retriever.usage_stats(tenant).get(tenant, {}),
        "recent": [
            {
                "trace_id": record.trace_id,
                "intent": record.intent,
                "success": record.success,
                "model": record.model,
                "processing_time_ms": record.processing_time_ms,
                "created_at": record.created_at.isoformat(),
            }
            for record in recent
        ],
    }
