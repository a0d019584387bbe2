"""FastAPI routes for the Outbox domain.

Thin adapters over the write path, the requeue command and the read side.
Domain errors are translated to HTTP status codes here and nowhere else.
"""

from fastapi import APIRouter, HTTPException
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from outbox.api.schemas import (
    CleanupRequest,
    CleanupResponse,
    EntryResponse,
    FailedEntriesResponse,
    NotificationStatusResponse,
    ProcessDueRequest,
    ProcessDueResponse,
    QueuedResponse,
    QueueNotificationRequest,
    StatsResponse,
)
from outbox.config import get_settings
from outbox.dispatch.scheduler import process_due_entries
from outbox.errors import NotFoundError, StaleStatusError, StoreUnavailable
from outbox.queue.enqueue import queue_notification
from outbox.queue.requeue import RequeueEntry
from outbox.queue.store import OutboxStore
from outbox.stats.queries import entry_status, failed_entries, notification_status, outbox_stats

router = APIRouter(prefix="/outbox", tags=["outbox"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=exc.messages)
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, StaleStatusError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=503, detail=str(exc))


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------
@router.post("/notifications", status_code=202, response_model=QueuedResponse)
async def queue(body: QueueNotificationRequest) -> QueuedResponse:
    """Queue a pre-rendered notification. Delivery happens asynchronously."""
    try:
        result = queue_notification(
            channel=body.channel,
            recipient=body.recipient,
            content=body.content.model_dump(),
            priority=body.priority,
            scheduled_at=body.scheduled_at,
        )
    except (ValidationError, StoreUnavailable) as exc:
        raise _http_error(exc) from exc
    return QueuedResponse(**result)


@router.post("/entries/{entry_id}/requeue", response_model=EntryResponse)
async def requeue(entry_id: str) -> EntryResponse:
    """Put a failed entry back to pending."""
    try:
        current_domain.process(RequeueEntry(entry_id=entry_id), asynchronous=False)
        return EntryResponse(**entry_status(entry_id))
    except (ValidationError, NotFoundError, StaleStatusError, StoreUnavailable) as exc:
        raise _http_error(exc) from exc


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
@router.get("/entries/{entry_id}", response_model=EntryResponse)
async def get_entry(entry_id: str) -> EntryResponse:
    try:
        return EntryResponse(**entry_status(entry_id))
    except (NotFoundError, StoreUnavailable) as exc:
        raise _http_error(exc) from exc


@router.get("/notifications/{notification_id}", response_model=NotificationStatusResponse)
async def get_notification_status(notification_id: str) -> NotificationStatusResponse:
    try:
        return NotificationStatusResponse(**notification_status(notification_id))
    except (NotFoundError, StoreUnavailable) as exc:
        raise _http_error(exc) from exc


@router.get("/stats", response_model=StatsResponse)
async def get_stats() -> StatsResponse:
    try:
        return StatsResponse(**outbox_stats())
    except StoreUnavailable as exc:
        raise _http_error(exc) from exc


@router.get("/failed", response_model=FailedEntriesResponse)
async def get_failed(limit: int | None = None) -> FailedEntriesResponse:
    try:
        entries = failed_entries(limit=limit)
    except StoreUnavailable as exc:
        raise _http_error(exc) from exc
    return FailedEntriesResponse(entries=[EntryResponse(**entry) for entry in entries], count=len(entries))


# ---------------------------------------------------------------------------
# Maintenance: periodic background job endpoints
# ---------------------------------------------------------------------------
@router.post("/maintenance/process-due", response_model=ProcessDueResponse)
async def process_due(body: ProcessDueRequest | None = None) -> ProcessDueResponse:
    """Dispatch pending entries whose scheduled time has passed.

    Designed to be called periodically by an external scheduler.
    """
    try:
        result = process_due_entries(as_of=body.as_of if body else None)
    except StoreUnavailable as exc:
        raise _http_error(exc) from exc
    return ProcessDueResponse(**result)


@router.post("/maintenance/cleanup", response_model=CleanupResponse)
async def cleanup(body: CleanupRequest | None = None) -> CleanupResponse:
    """Delete terminal entries older than the retention window."""
    days_old = body.days_old if body else get_settings().retention_days
    try:
        result = OutboxStore().cleanup_terminal(days_old=days_old)
    except StoreUnavailable as exc:
        raise _http_error(exc) from exc
    return CleanupResponse(**result)
