"""Read side of the outbox: entry status, notification status and counts.

Secondary lookups may lag behind writes; nothing here is meant to make
dispatch decisions.
"""

from datetime import UTC, datetime

import structlog

from outbox.config import get_settings
from outbox.delivery.masking import mask_recipient
from outbox.errors import NotFoundError
from outbox.queue.entry import QueueEntry, QueueStatus
from outbox.queue.store import OutboxStore

logger = structlog.get_logger(__name__)


def entry_view(entry: QueueEntry) -> dict:
    """Public view of an entry; the recipient is masked."""
    record = entry.to_record()
    record["recipient"] = mask_recipient(entry.recipient)
    return record


def entry_status(entry_id: str, store: OutboxStore | None = None) -> dict:
    store = store or OutboxStore()
    return entry_view(store.get(entry_id))


def notification_status(notification_id: str, store: OutboxStore | None = None) -> dict:
    """Status of the (first) entry recorded for ``notification_id``.

    Raises:
        NotFoundError: no entry carries this notification id.
    """
    store = store or OutboxStore()
    entries = store.query_by_notification_id(notification_id)
    if not entries:
        raise NotFoundError("Notification not found", entry_id=notification_id)

    entry = entries[0]
    return {
        "notification_id": notification_id,
        "outbox_id": str(entry.id),
        "status": entry.status,
        "channel": entry.channel,
        "recipient": mask_recipient(entry.recipient),
        "priority": entry.priority,
        "retry_count": entry.retry_count,
        "max_retries": entry.max_retries,
        "last_error": entry.last_error,
        "last_result": entry.result,
        "scheduled_at": entry.scheduled_at.isoformat() if entry.scheduled_at else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
    }


def outbox_stats(as_of: datetime | None = None, store: OutboxStore | None = None) -> dict:
    store = store or OutboxStore()
    as_of = as_of or datetime.now(UTC)

    counts = {status.value: store.count_by_status(status.value) for status in QueueStatus}
    pending = store.query_by_status(QueueStatus.PENDING.value)
    scheduled = sum(1 for entry in pending if not entry.is_due(as_of))

    stats = {
        "total": sum(counts.values()),
        "pending": counts[QueueStatus.PENDING.value],
        "sent": counts[QueueStatus.SENT.value],
        "failed": counts[QueueStatus.FAILED.value],
        "permanently_failed": counts[QueueStatus.PERMANENTLY_FAILED.value],
        "scheduled": scheduled,
    }
    logger.debug("Outbox stats computed", **stats)
    return stats


def failed_entries(limit: int | None = None, store: OutboxStore | None = None) -> list[dict]:
    if limit is None:
        limit = get_settings().failed_list_limit
    if limit <= 0:
        return []
    store = store or OutboxStore()
    return [entry_view(entry) for entry in store.query_by_status(QueueStatus.FAILED.value, limit=limit)]
