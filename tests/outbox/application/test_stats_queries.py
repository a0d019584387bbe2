"""Tests for the outbox read side."""

from datetime import UTC, datetime, timedelta

import pytest

from outbox.errors import NotFoundError
from outbox.queue.entry import QueueEntry
from outbox.queue.store import OutboxStore
from outbox.stats.queries import entry_status, failed_entries, notification_status, outbox_stats


def _stored(notification_id="notif-stats", **kwargs):
    entry = QueueEntry.create(
        notification_id=notification_id,
        channel="email",
        recipient="kate.smith@example.com",
        content={"subject": "S", "text": "T"},
        **kwargs,
    )
    return OutboxStore().enqueue(entry)


class TestEntryStatus:
    def test_recipient_is_masked(self):
        entry = _stored()
        view = entry_status(str(entry.id))

        assert view["id"] == str(entry.id)
        assert view["recipient"] == "ka***@example.com"
        assert view["status"] == "pending"

    def test_missing_entry(self):
        with pytest.raises(NotFoundError):
            entry_status("missing")


class TestNotificationStatus:
    def test_reports_entry_for_notification(self):
        entry = _stored(notification_id="notif-lookup")
        OutboxStore().update_status(str(entry.id), "failed", error="Throttling")

        status = notification_status("notif-lookup")

        assert status["outbox_id"] == str(entry.id)
        assert status["status"] == "failed"
        assert status["retry_count"] == 1
        assert status["max_retries"] == 3
        assert status["last_error"] == "Throttling"
        assert status["recipient"] == "ka***@example.com"

    def test_unknown_notification(self):
        with pytest.raises(NotFoundError) as exc:
            notification_status("notif-unknown")
        assert str(exc.value) == "Notification not found"


class TestOutboxStats:
    def test_counts_by_status(self):
        store = OutboxStore()
        _stored()
        _stored(scheduled_at=datetime.now(UTC) + timedelta(hours=3))
        sent = _stored()
        failed = _stored()
        permanent = _stored(max_retries=0)
        store.update_status(str(sent.id), "sent", result={"message_id": "m"})
        store.update_status(str(failed.id), "failed", error="x")
        store.update_status(str(permanent.id), "failed", error="x")
        store.update_status(str(permanent.id), "failed", error="x")

        assert outbox_stats() == {
            "total": 5,
            "pending": 2,
            "sent": 1,
            "failed": 1,
            "permanently_failed": 1,
            "scheduled": 1,
        }

    def test_scheduled_relative_to_as_of(self):
        _stored(scheduled_at=datetime.now(UTC) + timedelta(hours=3))
        assert outbox_stats(as_of=datetime.now(UTC) + timedelta(hours=4))["scheduled"] == 0

    def test_empty(self):
        assert outbox_stats()["total"] == 0


class TestFailedEntries:
    def test_lists_failed_entries(self):
        store = OutboxStore()
        failed = _stored()
        _stored()
        store.update_status(str(failed.id), "failed", error="x")

        entries = failed_entries()

        assert [e["id"] for e in entries] == [str(failed.id)]
        assert entries[0]["recipient"] == "ka***@example.com"

    def test_limit(self):
        store = OutboxStore()
        for _ in range(3):
            entry = _stored()
            store.update_status(str(entry.id), "failed", error="x")

        assert len(failed_entries(limit=2)) == 2

    def test_explicit_zero_limit_returns_nothing(self):
        entry = _stored()
        OutboxStore().update_status(str(entry.id), "failed", error="x")

        assert failed_entries(limit=0) == []

    def test_default_limit_from_settings(self):
        store = OutboxStore()
        for _ in range(3):
            entry = _stored()
            store.update_status(str(entry.id), "failed", error="x")

        assert len(failed_entries()) == 3
