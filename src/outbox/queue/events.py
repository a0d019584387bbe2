"""Change-feed events for the QueueEntry aggregate.

Each event carries ``new_image``: the full record (JSON) as it stands after
the change, so that consumers never need to read the store to act on it.
"""

from protean.fields import DateTime, Identifier, Integer, String, Text

from outbox.domain import outbox


@outbox.event(part_of="QueueEntry")
class QueueEntryInserted:
    """A new entry was written to the outbox."""

    __version__ = 1

    entry_id: Identifier(required=True)
    notification_id: Identifier(required=True)
    channel: String(required=True)
    new_image: Text(required=True, sanitize=False)  # JSON
    occurred_at: DateTime(required=True)


@outbox.event(part_of="QueueEntry")
class QueueEntryModified:
    """An entry's status or retry fields changed."""

    __version__ = 1

    entry_id: Identifier(required=True)
    notification_id: Identifier(required=True)
    previous_status: String(required=True)
    status: String(required=True)
    retry_count: Integer(required=True)
    new_image: Text(required=True, sanitize=False)  # JSON
    occurred_at: DateTime(required=True)
