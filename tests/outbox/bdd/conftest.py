"""Shared BDD fixtures and step definitions for the outbox."""

import pytest
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then

from outbox.queue.entry import QueueEntry
from outbox.queue.events import QueueEntryInserted, QueueEntryModified
from outbox.queue.store import OutboxStore

# Map event name strings to classes for dynamic lookup
_EVENT_CLASSES = {
    "QueueEntryInserted": QueueEntryInserted,
    "QueueEntryModified": QueueEntryModified,
}


def _new_entry(recipient="ada@example.com", max_retries=3):
    return QueueEntry.create(
        notification_id="notif-bdd",
        channel="email",
        recipient=recipient,
        content={"subject": "Your order shipped", "text": "It is on its way."},
        max_retries=max_retries,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def error():
    """Container for captured validation errors."""
    return {"exc": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a new email entry for "{recipient}"'), target_fixture="entry")
def new_email_entry(recipient):
    return _new_entry(recipient=recipient)


@given("a pending entry", target_fixture="entry")
def pending_entry():
    entry = _new_entry()
    entry._events.clear()
    return entry


@given(
    parsers.cfparse("a failed entry with {used:d} of {max_retries:d} retries used"),
    target_fixture="entry",
)
def failed_entry(used, max_retries):
    entry = _new_entry(max_retries=max_retries)
    for _ in range(used):
        entry.mark_failed("Throttling")
    entry._events.clear()
    return entry


@given("a sent entry", target_fixture="entry")
def sent_entry():
    entry = _new_entry()
    entry.mark_sent({"message_id": "email-bdd", "provider": "fake-email"})
    entry._events.clear()
    return entry


@given("the outbox pipeline is running")
def outbox_pipeline_running(pipeline):
    return pipeline


@given(parsers.cfparse('the email provider fails the next send with "{code}"'))
def email_provider_fails_once(email_provider, code):
    email_provider.configure(should_succeed=False, error_code=code, times=1)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then("the change is rejected")
def change_is_rejected(error):
    assert error["exc"] is not None, "Expected a validation error but none was raised"
    assert isinstance(error["exc"], ValidationError)


@then(parsers.cfparse('the entry status is "{status}"'))
def entry_status_is(entry, status):
    assert entry.status == status


@then(parsers.cfparse("the retry count is {count:d}"))
def retry_count_is(entry, count):
    assert entry.retry_count == count


@then(parsers.cfparse('the last error is "{message}"'))
def last_error_is(entry, message):
    assert entry.last_error == message


@then(parsers.cfparse("a {event_type} event is raised"))
def event_raised(entry, event_type):
    event_cls = _EVENT_CLASSES[event_type]
    assert any(
        isinstance(e, event_cls) for e in entry._events
    ), f"No {event_type} event found. Events: {[type(e).__name__ for e in entry._events]}"


@then(parsers.cfparse('the queued entry status is "{status}"'))
def queued_entry_status_is(queued, status):
    assert OutboxStore().get(queued["id"]).status == status


@then(parsers.re(r"(?P<count>\d+) emails? (was|were) sent"), converters={"count": int})
def emails_sent(email_provider, count):
    assert len(email_provider.sent_emails) == count
