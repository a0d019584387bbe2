"""Pydantic request/response models for the Outbox API.

API schemas are separate from the QueueEntry aggregate (anti-corruption pattern).
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class RenderedContentSchema(BaseModel):
    subject: str | None = Field(None, max_length=998)
    html: str | None = None
    text: str = Field(..., min_length=1)


class QueueNotificationRequest(BaseModel):
    channel: Literal["email", "sms"]
    recipient: str = Field(..., min_length=1, max_length=320, examples=["user@example.com", "+14155552671"])
    content: RenderedContentSchema
    priority: Literal["low", "normal", "high"] = "normal"
    scheduled_at: datetime | None = None


class ProcessDueRequest(BaseModel):
    as_of: datetime | None = None


class CleanupRequest(BaseModel):
    days_old: int = Field(7, ge=0, le=365)


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------
class QueuedResponse(BaseModel):
    notification_id: str
    id: str
    status: str = "queued"
    scheduled_at: str | None = None


class EntryResponse(BaseModel):
    id: str
    notification_id: str
    channel: str
    recipient: str
    priority: str
    status: str
    retry_count: int
    max_retries: int
    scheduled_at: str | None = None
    expiry: int | None = None
    last_error: str | None = None
    last_result: dict | None = None
    created_at: str | None = None
    updated_at: str | None = None


class NotificationStatusResponse(BaseModel):
    notification_id: str
    outbox_id: str
    status: str
    channel: str
    recipient: str
    priority: str
    retry_count: int
    max_retries: int
    last_error: str | None = None
    last_result: dict | None = None
    scheduled_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class StatsResponse(BaseModel):
    total: int
    pending: int
    sent: int
    failed: int
    permanently_failed: int
    scheduled: int


class FailedEntriesResponse(BaseModel):
    entries: list[EntryResponse]
    count: int


class ProcessDueResponse(BaseModel):
    total_processed: int
    results: list[dict]


class CleanupResponse(BaseModel):
    total_found: int
    deleted: int
