"""Write path — record notification intents in the outbox.

A notification is reported as ``queued`` only after its entry is stored.
Delivery happens afterwards, off the change feed; send failures are never
visible to the caller here, only through the status queries.
"""

from datetime import timedelta
from typing import Any
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError

from outbox.config import OutboxSettings, get_settings
from outbox.delivery.masking import mask_recipient
from outbox.errors import MissingVariables, OutboxError
from outbox.metrics import SafeMetrics
from outbox.queue.entry import Priority, QueueEntry
from outbox.queue.store import OutboxStore
from outbox.templates.renderer import JinjaTemplateRenderer, NotificationTemplate, TemplateRenderer

logger = structlog.get_logger(__name__)

MAX_BULK_SIZE = 100


def queue_notification(
    channel: str,
    recipient: str,
    content: dict,
    priority: str = Priority.NORMAL.value,
    scheduled_at=None,
    notification_id: str | None = None,
    store: OutboxStore | None = None,
    settings: OutboxSettings | None = None,
) -> dict:
    """Store pre-rendered content as a new pending entry.

    Raises:
        ValidationError: channel, recipient, priority or content is invalid.
        StoreUnavailable: the entry could not be stored.
    """
    settings = settings or get_settings()
    store = store or OutboxStore()

    entry = QueueEntry.create(
        notification_id=notification_id or str(uuid4()),
        channel=channel,
        recipient=recipient,
        content=content,
        priority=priority,
        scheduled_at=scheduled_at,
        max_retries=settings.max_retries,
        retention=timedelta(days=settings.retention_days),
    )
    store.enqueue(entry)

    logger.info(
        "Notification queued",
        notification_id=str(entry.notification_id),
        outbox_id=str(entry.id),
        channel=channel,
        recipient=mask_recipient(recipient),
        priority=priority,
    )
    return {
        "notification_id": str(entry.notification_id),
        "id": str(entry.id),
        "status": "queued",
        "scheduled_at": entry.scheduled_at.isoformat() if entry.scheduled_at else None,
    }


def send_notification(
    channel: str,
    recipient: str,
    template: NotificationTemplate,
    variables: dict[str, Any] | None = None,
    priority: str = Priority.NORMAL.value,
    scheduled_at=None,
    renderer: TemplateRenderer | None = None,
    metrics: SafeMetrics | None = None,
    store: OutboxStore | None = None,
    settings: OutboxSettings | None = None,
) -> dict:
    """Render ``template`` once and queue the result."""
    metrics = metrics or SafeMetrics()
    renderer = renderer or JinjaTemplateRenderer()

    logger.info(
        "Creating notification",
        channel=channel,
        recipient=mask_recipient(recipient),
        template=template.name,
        priority=priority,
    )

    try:
        if not template.supports(channel):
            raise ValidationError(
                {"template": [f"Template {template.name} is not compatible with notification channel {channel}"]}
            )
        content = renderer.render(template, variables or {})
        result = queue_notification(
            channel,
            recipient,
            content,
            priority=priority,
            scheduled_at=scheduled_at,
            store=store,
            settings=settings,
        )
    except (ValidationError, OutboxError) as exc:
        logger.error("Error creating notification", channel=channel, template=template.name, error=str(exc))
        metrics.increment(
            "notifications.creation_failed",
            {"channel": channel, "template": template.name, "errorType": type(exc).__name__},
        )
        raise

    metrics.increment("notifications.created", {"channel": channel, "priority": priority, "template": template.name})
    return result


def send_bulk_notifications(requests: list[dict], **kwargs) -> dict:
    """Send each request independently; one failure does not stop the rest.

    Every request holds the keyword arguments of ``send_notification``.
    """
    if not requests:
        raise ValidationError({"notifications": ["At least one notification is required"]})
    if len(requests) > MAX_BULK_SIZE:
        raise ValidationError({"notifications": [f"At most {MAX_BULK_SIZE} notifications can be sent at once"]})

    successful, failed = [], []
    for request in requests:
        try:
            successful.append(send_notification(**request, **kwargs))
        except MissingVariables as exc:
            failed.append({"notification": _describe(request), "error": str(exc), "missing": exc.missing})
        except (ValidationError, OutboxError) as exc:
            failed.append({"notification": _describe(request), "error": str(exc)})

    logger.info(
        "Bulk notification processing completed",
        total=len(requests),
        successful=len(successful),
        failed=len(failed),
    )
    return {
        "successful": successful,
        "failed": failed,
        "summary": {"total": len(requests), "successful": len(successful), "failed": len(failed)},
    }


def _describe(request: dict) -> dict:
    template = request.get("template")
    return {
        "channel": request.get("channel"),
        "recipient": mask_recipient(request.get("recipient")),
        "template": getattr(template, "name", None),
    }
