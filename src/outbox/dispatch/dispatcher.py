"""Change feed dispatcher — first delivery attempt for new queue entries.

Acts on INSERT records of ``pending`` entries that are due; everything else
is skipped without touching the store. Each record gets exactly one send
attempt: a failure marks the entry ``failed`` and hands a reference to the
dead-letter queue. Redelivery of records that could not be processed at all
(store unavailable) is left to whoever supplied the batch.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError

from outbox.delivery.executor import DeliveryExecutor
from outbox.errors import DeliveryError, MalformedMessage, NotFoundError, StaleStatusError, StoreUnavailable
from outbox.escalation.dead_letters import DeadLetterQueue
from outbox.metrics import SafeMetrics
from outbox.queue.entry import QueueEntry, QueueStatus
from outbox.queue.store import OutboxStore
from outbox.utils.logging import bound_context

logger = structlog.get_logger(__name__)

INSERT = "INSERT"


class DispatchOutcome(Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class BatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    outcomes: list[tuple[str | None, DispatchOutcome]] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    # Entry ids whose records should be delivered again by the feed
    redeliver: list[str] = field(default_factory=list)


class ChangeFeedDispatcher:
    def __init__(
        self,
        store: OutboxStore,
        executor: DeliveryExecutor,
        metrics: SafeMetrics | None = None,
        dead_letters: DeadLetterQueue | None = None,
    ):
        self.store = store
        self.executor = executor
        self.metrics = metrics or SafeMetrics()
        self.dead_letters = dead_letters

    def process_batch(self, records, as_of: datetime | None = None) -> BatchResult:
        """Process change records in the order received."""
        batch = BatchResult()
        with bound_context(batch_id=uuid4().hex):
            logger.info("Processing change feed records", record_count=len(records))
            for record in records:
                batch.processed += 1
                entry_id = record.entry_id
                try:
                    outcome = self.process_record(record, as_of=as_of)
                except (StoreUnavailable, MalformedMessage, NotFoundError) as exc:
                    logger.error(
                        "Error processing change feed record",
                        outbox_id=entry_id,
                        event_name=record.event_name,
                        error=str(exc),
                    )
                    batch.failed += 1
                    batch.errors.append({"outbox_id": entry_id, "event_name": record.event_name, "error": str(exc)})
                    batch.outcomes.append((entry_id, DispatchOutcome.ERROR))
                    if isinstance(exc, StoreUnavailable) and entry_id:
                        batch.redeliver.append(entry_id)
                    continue

                batch.outcomes.append((entry_id, outcome))
                if outcome == DispatchOutcome.FAILED:
                    batch.failed += 1
                else:
                    batch.successful += 1
            logger.info(
                "Change feed processing completed",
                processed=batch.processed,
                successful=batch.successful,
                failed=batch.failed,
            )

        dimensions = {"source": "outbox"}
        self.metrics.record_batch(
            [
                ("stream.records.processed", batch.processed, dimensions),
                ("stream.records.successful", batch.successful, dimensions),
                ("stream.records.failed", batch.failed, dimensions),
            ]
        )
        return batch

    def process_record(self, record, as_of: datetime | None = None) -> DispatchOutcome:
        if record.event_name != INSERT or not record.new_image:
            logger.debug("Skipping change record, not an INSERT with a new image", event_name=record.event_name)
            return DispatchOutcome.SKIPPED

        try:
            entry = QueueEntry.from_record(record.new_image)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise MalformedMessage(f"Change record does not hold a queue entry: {exc}") from exc

        logger.info(
            "Processing outbox entry from change feed",
            outbox_id=str(entry.id),
            notification_id=str(entry.notification_id),
            channel=entry.channel,
            status=entry.status,
        )

        if entry.status != QueueStatus.PENDING.value:
            logger.debug("Skipping outbox entry, not pending", outbox_id=str(entry.id), status=entry.status)
            return DispatchOutcome.SKIPPED

        if not entry.is_due(as_of):
            logger.info(
                "Notification scheduled for future, skipping for now",
                outbox_id=str(entry.id),
                scheduled_at=entry.scheduled_at.isoformat(),
            )
            return DispatchOutcome.SKIPPED

        return self.deliver(entry)

    def deliver(self, entry: QueueEntry) -> DispatchOutcome:
        """One send attempt for a pending entry, recorded on the store.

        Raises:
            StoreUnavailable: the outcome could not be recorded.
        """
        entry_id = str(entry.id)
        dimensions = {"channel": entry.channel, "priority": entry.priority}
        started = time.perf_counter()

        try:
            receipt = self.executor.send(entry)
        except DeliveryError as exc:
            return self._record_failure(entry, exc)

        self.metrics.record_duration(
            "notifications.delivery_duration", (time.perf_counter() - started) * 1000, dimensions
        )

        try:
            self.store.update_status(
                entry_id,
                QueueStatus.SENT.value,
                result=receipt.to_dict(),
                expected_status=QueueStatus.PENDING.value,
            )
        except StaleStatusError as exc:
            logger.warning("Entry changed while sending, status not recorded", outbox_id=entry_id, error=str(exc))
            return DispatchOutcome.SKIPPED

        self.metrics.increment("notifications.sent", dimensions)
        return DispatchOutcome.SENT

    def _record_failure(self, entry: QueueEntry, exc: DeliveryError) -> DispatchOutcome:
        entry_id = str(entry.id)

        try:
            self.store.update_status(
                entry_id,
                QueueStatus.FAILED.value,
                error=str(exc),
                expected_status=QueueStatus.PENDING.value,
            )
        except StaleStatusError as stale:
            logger.warning("Entry changed while sending, failure not recorded", outbox_id=entry_id, error=str(stale))
            return DispatchOutcome.SKIPPED

        self.metrics.increment(
            "notifications.failed",
            {"channel": entry.channel, "priority": entry.priority, "errorType": exc.code or "DeliveryError"},
        )

        # A pending entry always fails into FAILED; escalation owns the rest
        if self.dead_letters is not None:
            message_id = self.dead_letters.publish({"outbox_id": entry_id, "reason": str(exc)})
            logger.info("Failed entry routed to dead-letter queue", outbox_id=entry_id, message_id=message_id)

        return DispatchOutcome.FAILED
