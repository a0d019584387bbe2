"""RequeueEntry command + handler — manual ``failed → pending`` reset.

Only the status changes; the retry count, last error and content stay as
they are, so a requeued entry still counts against its retry budget.
"""

import structlog
from protean.fields import Identifier
from protean.utils.mixins import handle

from outbox.domain import outbox
from outbox.errors import NotFoundError, StaleStatusError, StoreUnavailable
from outbox.pipeline import Pipeline, get_pipeline
from outbox.queue.entry import QueueEntry, QueueStatus
from outbox.queue.store import OutboxStore

logger = structlog.get_logger(__name__)


@outbox.command(part_of="QueueEntry")
class RequeueEntry:
    """Request to put a failed entry back in the queue."""

    entry_id: Identifier(required=True)


@outbox.command_handler(part_of=QueueEntry)
class RequeueEntryHandler:
    @handle(RequeueEntry)
    def requeue_entry(self, command: RequeueEntry):
        entry = OutboxStore().requeue(str(command.entry_id))
        return entry.to_record()


def retry_failed_entries(pipeline: Pipeline | None = None) -> dict:
    """Requeue every failed entry with budget left and attempt it once more."""
    pipeline = pipeline or get_pipeline()
    store = pipeline.store

    candidates = [
        entry for entry in store.query_by_status(QueueStatus.FAILED.value) if not entry.budget_exhausted
    ]
    logger.info("Found failed notifications for retry", count=len(candidates))

    results = []
    for entry in candidates:
        entry_id = str(entry.id)
        try:
            requeued = store.requeue(entry_id)
            outcome = pipeline.dispatcher.deliver(requeued)
        except (NotFoundError, StaleStatusError, StoreUnavailable) as exc:
            logger.error("Error retrying notification", outbox_id=entry_id, error=str(exc))
            continue
        results.append(
            {"outbox_id": entry_id, "notification_id": str(entry.notification_id), "outcome": outcome.value}
        )

    return {"total_retried": len(candidates), "results": results}
