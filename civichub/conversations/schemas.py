"""Pydantic schemas for the takeover administration API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from .models import ConversationMode, TakeoverOutcome


class TakeoverStartRequest(BaseModel):
    sender: str = Field(min_length=1)
    operator_id: str | None = None
    reason: str | None = None


class TakeoverEndRequest(BaseModel):
    sender: str = Field(min_length=1)


class TakeoverActionResponse(BaseModel):
    outcome: TakeoverOutcome
    status: "TakeoverStatusResponse"


class TakeoverStatusResponse(BaseModel):
    tenant_id: str
    sender: str
    mode: ConversationMode
    operator_id: str | None = None
    reason: str | None = None
    since: datetime | None = None


class HandoffItemResponse(BaseModel):
    sender: str
    channel: str
    text: str
    trace_id: str
    operator_id: str | None = None
    media_url: str | None = None
    received_at: datetime


TakeoverActionResponse.model_rebuild()
