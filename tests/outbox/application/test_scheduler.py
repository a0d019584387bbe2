"""Tests for the periodic scan that dispatches due pending entries."""

from datetime import UTC, datetime, timedelta

from outbox.dispatch.scheduler import process_due_entries
from outbox.queue.entry import QueueEntry
from outbox.queue.store import OutboxStore


def _scheduled_entry(scheduled_at, notification_id="notif-sched"):
    entry = QueueEntry.create(
        notification_id=notification_id,
        channel="email",
        recipient="hank@example.com",
        content={"subject": "Reminder", "text": "Your appointment is tomorrow"},
        scheduled_at=scheduled_at,
    )
    return OutboxStore().enqueue(entry)


class TestProcessDueEntries:
    def test_due_entries_are_sent(self, pipeline, email_provider):
        now = datetime.now(UTC)
        later = _scheduled_entry(now + timedelta(hours=1), notification_id="notif-later")
        much_later = _scheduled_entry(now + timedelta(days=2), notification_id="notif-much-later")
        assert email_provider.attempts == 0

        result = process_due_entries(as_of=now + timedelta(hours=2))

        assert result["total_processed"] == 1
        assert result["results"] == [{"outbox_id": str(later.id), "notification_id": "notif-later", "outcome": "sent"}]
        assert OutboxStore().get(str(later.id)).status == "sent"
        assert OutboxStore().get(str(much_later.id)).status == "pending"

    def test_nothing_due(self, pipeline):
        _scheduled_entry(datetime.now(UTC) + timedelta(hours=1))
        assert process_due_entries() == {"total_processed": 0, "results": []}

    def test_failed_send_recorded(self, pipeline, email_provider, dead_letters):
        scheduled = datetime.now(UTC) + timedelta(minutes=5)
        entry = _scheduled_entry(scheduled)
        email_provider.configure(should_succeed=False, error_code="Throttling")

        result = process_due_entries(as_of=scheduled, pipeline=pipeline)

        assert result["results"][0]["outcome"] == "failed"
        assert OutboxStore().get(str(entry.id)).status == "failed"
        assert len(dead_letters) == 1

    def test_pending_entries_left_by_unbound_feed(self, unbound_pipeline, email_provider):
        entry = OutboxStore().enqueue(
            QueueEntry.create(
                notification_id="notif-backlog",
                channel="email",
                recipient="hank@example.com",
                content={"subject": "S", "text": "T"},
            )
        )

        result = process_due_entries(pipeline=unbound_pipeline)

        assert result["total_processed"] == 1
        assert OutboxStore().get(str(entry.id)).status == "sent"
        assert len(email_provider.sent_emails) == 1
