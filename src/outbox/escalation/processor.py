"""Failure escalation processor — bounded second-chance delivery.

Consumes entries whose primary dispatch failed. Entries that have used up
their retry budget are marked permanently failed without another send;
the rest get a few more in-process attempts with exponential backoff.
A final failure is recorded on the entry and re-raised so the outer
message loop can leave the message for infrastructure redelivery.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4

import structlog
from protean.exceptions import ValidationError

from outbox.delivery.executor import DeliveryExecutor
from outbox.errors import DeliveryError, MalformedMessage, OutboxError, StoreUnavailable
from outbox.escalation.dead_letters import DeadLetterQueue
from outbox.escalation.envelope import normalize_envelope
from outbox.metrics import SafeMetrics
from outbox.queue.entry import QueueEntry, QueueStatus
from outbox.queue.store import OutboxStore
from outbox.retry import ESCALATION_POLICY, BackoffPolicy, with_backoff
from outbox.utils.logging import bound_context

logger = structlog.get_logger(__name__)

PERMANENT_FAILURE_REASON = "Exceeded maximum retry attempts"


class EscalationOutcome(Enum):
    SUCCESS = "success"
    PERMANENTLY_FAILED = "permanently_failed"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class EscalationResult:
    outcome: EscalationOutcome
    entry_id: str | None = None
    message_id: str | None = None
    error: str | None = None
    retryable: bool | None = None


@dataclass
class EscalationBatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    permanently_failed: int = 0
    malformed: int = 0
    results: list[EscalationResult] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    # Message ids the surrounding infrastructure should deliver again
    redeliver: list[str] = field(default_factory=list)


def _message_id(message, index: int) -> str:
    if isinstance(message, dict) and message.get("message_id"):
        return str(message["message_id"])
    return f"message-{index}"


class EscalationProcessor:
    def __init__(
        self,
        store: OutboxStore,
        executor: DeliveryExecutor,
        metrics: SafeMetrics | None = None,
        policy: BackoffPolicy = ESCALATION_POLICY,
        sleep=time.sleep,
    ):
        self.store = store
        self.executor = executor
        self.metrics = metrics or SafeMetrics()
        self.policy = policy
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Single message
    # -------------------------------------------------------------------
    def handle(self, message) -> EscalationResult:
        """Process one escalation message.

        Raises:
            MalformedMessage: the message matches no known envelope shape.
            DeliveryError: the escalated attempts failed (entry left FAILED).
            StoreUnavailable: the store could not be read or written.
        """
        snapshot = normalize_envelope(message, self.store.get)
        # The message may be stale; act on the entry as currently stored
        entry = self.store.get(str(snapshot.id))
        entry_id = str(entry.id)

        logger.info(
            "Processing escalated outbox entry",
            outbox_id=entry_id,
            notification_id=str(entry.notification_id),
            channel=entry.channel,
            status=entry.status,
            retry_count=entry.retry_count,
        )

        status = QueueStatus(entry.status)
        if status == QueueStatus.SENT:
            logger.info("Escalated entry already sent, nothing to do", outbox_id=entry_id)
            return EscalationResult(EscalationOutcome.SUCCESS, entry_id=entry_id)
        if status == QueueStatus.PERMANENTLY_FAILED:
            return EscalationResult(EscalationOutcome.PERMANENTLY_FAILED, entry_id=entry_id)

        if status == QueueStatus.FAILED and entry.budget_exhausted:
            self._mark_permanently_failed(entry)
            return EscalationResult(EscalationOutcome.PERMANENTLY_FAILED, entry_id=entry_id)

        try:
            receipt = with_backoff(
                lambda: self.executor.send(entry),
                self.policy,
                sleep=self._sleep,
                context={"outbox_id": entry_id},
            )
        except DeliveryError as exc:
            logger.error("Escalation retry failed", outbox_id=entry_id, error=str(exc), retryable=exc.retryable)
            self.store.update_status(
                entry_id,
                QueueStatus.FAILED.value,
                error=f"Escalation retry failed: {exc}",
                expected_status=entry.status,
            )
            self.metrics.increment(
                "notifications.failed",
                {"channel": entry.channel, "priority": entry.priority, "errorType": exc.code or "DeliveryError"},
            )
            raise

        self.store.update_status(
            entry_id,
            QueueStatus.SENT.value,
            result=receipt.to_dict(),
            expected_status=entry.status,
        )
        self.metrics.increment("notifications.sent", {"channel": entry.channel, "priority": entry.priority})

        logger.info("Escalation retry successful", outbox_id=entry_id, message_id=receipt.message_id)
        return EscalationResult(EscalationOutcome.SUCCESS, entry_id=entry_id)

    def _mark_permanently_failed(self, entry: QueueEntry) -> None:
        entry_id = str(entry.id)
        self.store.update_status(
            entry_id,
            QueueStatus.PERMANENTLY_FAILED.value,
            error=PERMANENT_FAILURE_REASON,
            expected_status=QueueStatus.FAILED.value,
        )
        self.metrics.increment(
            "notifications.permanently_failed",
            {"channel": entry.channel, "priority": entry.priority or "normal"},
        )
        logger.error(
            "Notification marked as permanently failed",
            outbox_id=entry_id,
            notification_id=str(entry.notification_id),
            retry_count=entry.retry_count,
            max_retries=entry.max_retries,
        )

    # -------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------
    def handle_batch(self, messages: list) -> EscalationBatchResult:
        """Process messages in order; one failing message never stops the batch."""
        batch = EscalationBatchResult()
        with bound_context(batch_id=uuid4().hex):
            logger.info("Processing DLQ messages", message_count=len(messages))
            for index, message in enumerate(messages):
                batch.processed += 1
                message_id = _message_id(message, index)
                result = self._handle_one(message, message_id, batch)
                batch.results.append(result)
            logger.info(
                "DLQ processing completed",
                processed=batch.processed,
                successful=batch.successful,
                failed=batch.failed,
                permanently_failed=batch.permanently_failed,
            )

        self.metrics.record_batch(
            [
                ("dlq.messages.processed", batch.processed, None),
                ("dlq.messages.successful", batch.successful, None),
                ("dlq.messages.failed", batch.failed, None),
                ("dlq.messages.permanently_failed", batch.permanently_failed, None),
            ]
        )
        return batch

    def _handle_one(self, message, message_id: str, batch: EscalationBatchResult) -> EscalationResult:
        try:
            result = self.handle(message)
        except MalformedMessage as exc:
            logger.error("Malformed DLQ message", message_id=message_id, error=str(exc))
            self.metrics.increment("dlq.messages.malformed")
            batch.failed += 1
            batch.malformed += 1
            batch.errors.append({"message_id": message_id, "error": str(exc), "retryable": False})
            return EscalationResult(
                EscalationOutcome.TRANSIENT_FAILURE, message_id=message_id, error=str(exc), retryable=False
            )
        except DeliveryError as exc:
            batch.failed += 1
            batch.errors.append({"message_id": message_id, "error": str(exc), "retryable": exc.retryable})
            if exc.retryable:
                batch.redeliver.append(message_id)
            return EscalationResult(
                EscalationOutcome.TRANSIENT_FAILURE, message_id=message_id, error=str(exc), retryable=exc.retryable
            )
        except StoreUnavailable as exc:
            logger.error("Store unavailable while processing DLQ message", message_id=message_id, error=str(exc))
            batch.failed += 1
            batch.errors.append({"message_id": message_id, "error": str(exc), "retryable": True})
            batch.redeliver.append(message_id)
            return EscalationResult(
                EscalationOutcome.TRANSIENT_FAILURE, message_id=message_id, error=str(exc), retryable=True
            )
        except (OutboxError, ValidationError) as exc:
            logger.error("Error processing DLQ message", message_id=message_id, error=str(exc))
            batch.failed += 1
            batch.errors.append({"message_id": message_id, "error": str(exc), "retryable": False})
            return EscalationResult(
                EscalationOutcome.TRANSIENT_FAILURE, message_id=message_id, error=str(exc), retryable=False
            )

        if result.outcome == EscalationOutcome.SUCCESS:
            batch.successful += 1
        elif result.outcome == EscalationOutcome.PERMANENTLY_FAILED:
            batch.permanently_failed += 1
        return EscalationResult(result.outcome, entry_id=result.entry_id, message_id=message_id)

    def process_dead_letters(self, queue: DeadLetterQueue, limit: int | None = 10) -> EscalationBatchResult:
        """Drain up to ``limit`` messages and put redeliverable ones back."""
        messages = queue.drain(limit)
        batch = self.handle_batch(messages)

        redeliver = set(batch.redeliver)
        for index, message in enumerate(messages):
            if _message_id(message, index) in redeliver:
                queue.redeliver(message)
        return batch
