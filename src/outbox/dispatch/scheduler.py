"""Periodic scan for due entries.

The change feed only reacts to inserts, so entries that were scheduled for
later (or requeued) stay ``pending`` until something looks at them again.
This scan is that something: invoked by a cron job or the maintenance CLI,
it runs every due pending entry through the dispatcher's send routine.
"""

from datetime import UTC, datetime

import structlog

from outbox.dispatch.dispatcher import DispatchOutcome
from outbox.errors import NotFoundError, StoreUnavailable
from outbox.pipeline import Pipeline, get_pipeline
from outbox.queue.entry import QueueStatus

logger = structlog.get_logger(__name__)


def process_due_entries(as_of: datetime | None = None, pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    as_of = as_of or datetime.now(UTC)

    pending = pipeline.store.query_by_status(QueueStatus.PENDING.value)
    due = [entry for entry in pending if entry.is_due(as_of)]

    logger.info("Found due outbox entries", pending=len(pending), due=len(due), as_of=as_of.isoformat())

    results = []
    for entry in due:
        try:
            outcome = pipeline.dispatcher.deliver(entry)
        except (StoreUnavailable, NotFoundError) as exc:
            logger.error("Due entry dispatch failed", outbox_id=str(entry.id), error=str(exc))
            outcome = DispatchOutcome.ERROR
        results.append({"outbox_id": str(entry.id), "notification_id": str(entry.notification_id), "outcome": outcome.value})

    logger.info("Due outbox entries processed", total_processed=len(results), as_of=as_of.isoformat())
    return {"total_processed": len(results), "results": results}
