"""Message processing and channel webhook routes."""

import hmac
import json
import os
from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse

from ..channels import WebchatAdapter
from ..core.throttling import PROCESS_RATE_LIMIT, WEBHOOK_RATE_LIMIT, limiter
from ..pipeline.schemas import ProcessMessageInput, ProcessMessageResult
from ..services import Services, get_services

router = APIRouter(tags=["messages"])


def require_internal_key(request: Request) -> None:
    """Check ``X-Internal-API-Key`` when ``INTERNAL_API_KEY`` is configured."""

    expected = os.getenv("INTERNAL_API_KEY")
    if not expected:
        return
    received = request.headers.get("X-Internal-API-Key") or ""
    if not hmac.compare_digest(received, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


def _resolve_tenant_id(request: Request, services: Services) -> str:
    header = request.headers.get("x-tenant-id")
    return header or request.query_params.get("tenant_id") or services.settings.default_tenant_id


@router.post(
    "/api/messages/process",
    response_model=ProcessMessageResult,
    dependencies=[Depends(require_internal_key)],
)
@limiter.limit(PROCESS_RATE_LIMIT)
async def process_message(
    request: Request,
    response: Response,
    payload: ProcessMessageInput,
    services: Services = Depends(get_services),
) -> ProcessMessageResult:
    """Run one normalized inbound message through the pipeline."""
    result = await services.orchestrator.process_message(payload)
    if result.metadata.trace_id:
        response.headers["X-Trace-Id"] = result.metadata.trace_id
    return result


@router.get("/api/webhooks/whatsapp")
async def verify_whatsapp_webhook(
    request: Request, services: Services = Depends(get_services)
) -> Response:
    """Answer the Meta webhook verification handshake."""
    params = request.query_params
    expected = services.settings.whatsapp.verify_token
    if (
        params.get("hub.mode") == "subscribe"
        and expected
        and hmac.compare_digest(params.get("hub.verify_token") or "", expected)
    ):
        return PlainTextResponse(params.get("hub.challenge") or "")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/api/webhooks/{channel}")
@limiter.limit(WEBHOOK_RATE_LIMIT)
async def ingest_webhook(
    channel: str, request: Request, services: Services = Depends(get_services)
) -> Response:
    body_bytes = await request.body()
    try:
        payload = json.loads(body_bytes.decode("utf-8")) if body_bytes else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise HTTPException(status_code=400, detail="Webhook payload must be an object")

    adapter = services.adapters.get(channel.lower())
    if adapter is None:
        raise HTTPException(status_code=404, detail=f"Channel '{channel}' is not configured")
    if not adapter.verify_signature(body_bytes, request.headers):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    tenant_id = _resolve_tenant_id(request, services)
    messages = list(adapter.parse_incoming(payload, request.headers, tenant_id=tenant_id))
    if not messages:
        return Response(status_code=status.HTTP_202_ACCEPTED)
    results: list[dict[str, Any]] = []
    for message in messages:
        report = await services.delivery.handle_inbound(message)
        results.append(
            {
                "result": report.outcome.result.model_dump(mode="json", by_alias=True),
                "delivered": report.delivered,
                "deliveryStatus": report.reason,
            }
        )
    return Response(
        content=json.dumps({"processedMessages": len(results), "results": results}),
        media_type="application/json",
    )


@router.delete("/api/sessions/{sender}", status_code=status.HTTP_204_NO_CONTENT)
async def end_session(
    sender: str, request: Request, services: Services = Depends(get_services)
) -> Response:
    """Mark a citizen session as closed so late replies are not delivered."""
    services.sessions.mark_terminated(_resolve_tenant_id(request, services), sender)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/webchat/{session_id}/replies")
async def poll_webchat(
    session_id: str, services: Services = Depends(get_services)
) -> dict[str, Any]:
    adapter = services.adapters.get("webchat")
    replies = adapter.poll(session_id) if isinstance(adapter, WebchatAdapter) else []
    return {"sessionId": session_id, "messages": replies}
