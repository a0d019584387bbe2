"""Change feed — bridges QueueEntry events to the dispatcher.

Every store mutation raises a QueueEntryInserted or QueueEntryModified
event carrying the full new record. The handler below turns inserts into
INSERT change records for the bound pipeline's dispatcher; modifications
stay in the event store for other consumers.

External stream records (``{"eventName": ..., "dynamodb": {"NewImage": ...}}``)
can be fed to the dispatcher through ``ChangeRecord.from_stream_record``.
"""

import json
from dataclasses import dataclass, field

import structlog
from protean.utils.mixins import handle

from outbox.dispatch.dispatcher import INSERT
from outbox.domain import outbox
from outbox.errors import OutboxError
from outbox.escalation.envelope import from_dynamodb_image
from outbox.pipeline import bound_pipeline
from outbox.queue.entry import QueueEntry
from outbox.queue.events import QueueEntryInserted

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChangeRecord:
    """One change-feed record: the event kind and the record after the change."""

    event_name: str
    new_image: dict | None = field(default=None)

    @property
    def entry_id(self) -> str | None:
        return str(self.new_image["id"]) if self.new_image and "id" in self.new_image else None

    @classmethod
    def from_stream_record(cls, record: dict) -> "ChangeRecord":
        dynamodb = record.get("dynamodb") or {}
        image = dynamodb.get("NewImage")
        return cls(
            event_name=record.get("eventName", ""),
            new_image=from_dynamodb_image(image) if image else None,
        )


@outbox.event_handler(part_of=QueueEntry)
class ChangeFeedHandler:
    """Feeds the dispatcher with the outbox's own change events."""

    @handle(QueueEntryInserted)
    def on_entry_inserted(self, event: QueueEntryInserted) -> None:
        self._forward(ChangeRecord(INSERT, json.loads(event.new_image)))

    def _forward(self, record: ChangeRecord) -> None:
        pipeline = bound_pipeline()
        if pipeline is None:
            logger.debug("No pipeline bound, change record left for the periodic scan", outbox_id=record.entry_id)
            return

        # The entry is already stored; a failure here leaves it pending
        try:
            pipeline.dispatcher.process_batch([record])
        except OutboxError as exc:
            logger.error(
                "Change feed dispatch failed",
                outbox_id=record.entry_id,
                event_name=record.event_name,
                error=str(exc),
            )
