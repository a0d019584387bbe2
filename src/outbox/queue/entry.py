"""QueueEntry aggregate — the outbox record for a single notification send.

An entry is written once by the enqueue path with its content already
rendered, and afterwards only its status/retry fields change. Every change
raises an event carrying the full new record (the change feed).

State Machine:
    PENDING → SENT                        (terminal)
    PENDING → FAILED
    FAILED  → FAILED                      (escalation attempt failed again)
    FAILED  → SENT                        (escalation attempt succeeded)
    FAILED  → PERMANENTLY_FAILED          (terminal, retry budget exhausted)
    FAILED  → PENDING                     (manual requeue)
"""

import json
import re
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text, ValueObject

from outbox.domain import outbox
from outbox.queue.events import QueueEntryInserted, QueueEntryModified


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Channel(Enum):
    EMAIL = "email"
    SMS = "sms"


class Priority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class QueueStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    PERMANENTLY_FAILED = "permanently_failed"


TERMINAL_STATUSES = frozenset({QueueStatus.SENT, QueueStatus.PERMANENTLY_FAILED})

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETENTION = timedelta(days=7)


# ---------------------------------------------------------------------------
# State Machine
# ---------------------------------------------------------------------------
_VALID_TRANSITIONS = {
    QueueStatus.PENDING: {
        QueueStatus.SENT,
        QueueStatus.FAILED,
    },
    QueueStatus.FAILED: {
        QueueStatus.PENDING,  # Via requeue
        QueueStatus.SENT,
        QueueStatus.FAILED,
        QueueStatus.PERMANENTLY_FAILED,
    },
    QueueStatus.SENT: set(),  # Terminal
    QueueStatus.PERMANENTLY_FAILED: set(),  # Terminal
}


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    return target in _VALID_TRANSITIONS.get(current, set())


# ---------------------------------------------------------------------------
# Recipient validation
# ---------------------------------------------------------------------------
_E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_valid_email(address: str) -> bool:
    """Structural email check: one @, sane local and domain parts."""
    if not address or len(address) > 254:
        return False
    if any(ws in address for ws in (" ", "\t", "\n")):
        return False
    if address.count("@") != 1:
        return False

    local_part, domain_part = address.split("@", 1)
    if not local_part or local_part.startswith(".") or local_part.endswith("."):
        return False
    if not domain_part or domain_part.startswith(".") or domain_part.endswith("."):
        return False
    if "." not in domain_part:
        return False
    if ".." in local_part or ".." in domain_part:
        return False
    for label in domain_part.split("."):
        if label.startswith("-") or label.endswith("-"):
            return False
    return not any(ch in address for ch in (";", ",", "(", ")", '"', ":", "<", ">", "[", "]", "\\"))


def is_valid_phone(number: str) -> bool:
    """E.164: leading +, country code without zero, at most 15 digits."""
    return bool(number) and _E164_PATTERN.match(number) is not None


def validate_recipient(channel: str, recipient: str) -> None:
    if channel == Channel.EMAIL.value:
        if not is_valid_email(recipient or ""):
            raise ValidationError({"recipient": ["Recipient must be a valid email address for email notifications"]})
    elif channel == Channel.SMS.value:
        if not is_valid_phone(recipient or ""):
            raise ValidationError(
                {"recipient": ["Recipient must be a valid phone number in E.164 format for SMS notifications"]}
            )
    else:
        raise ValidationError({"channel": ['Channel must be either "email" or "sms"']})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def _parse_datetime(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    return as_utc(datetime.fromisoformat(str(value)))


# Keys of the legacy camelCase wire format, mapped to record keys
_RECORD_ALIASES = {
    "notificationId": "notification_id",
    "type": "channel",
    "content": "rendered_content",
    "renderedContent": "rendered_content",
    "scheduledAt": "scheduled_at",
    "retryCount": "retry_count",
    "maxRetries": "max_retries",
    "ttl": "expiry",
    "error": "last_error",
    "lastError": "last_error",
    "result": "last_result",
    "lastResult": "last_result",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@outbox.value_object(part_of="QueueEntry")
class RenderedContent:
    """Pre-rendered message parts. Immutable once attached to an entry."""

    subject: String(max_length=998, sanitize=False)
    html: Text(sanitize=False)
    text: Text(required=True, sanitize=False)

    def to_dict(self) -> dict:
        return {"subject": self.subject, "html": self.html, "text": self.text}


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@outbox.aggregate
class QueueEntry:
    """A durably recorded intent to send one notification over one channel."""

    notification_id: Identifier(required=True)
    channel: String(choices=Channel, required=True)
    recipient: String(required=True, max_length=320, sanitize=False)
    rendered_content: ValueObject(RenderedContent, required=True)
    # Informational only; dispatch order does not depend on it
    priority: String(choices=Priority, default=Priority.NORMAL.value)
    scheduled_at: DateTime()

    status: String(choices=QueueStatus, default=QueueStatus.PENDING.value)
    retry_count: Integer(default=0)
    max_retries: Integer(default=DEFAULT_MAX_RETRIES)

    # Epoch seconds; the store may evict the record after this time
    expiry: Integer()

    last_error: Text(sanitize=False)
    last_result: Text(sanitize=False)  # JSON provider receipt of the last successful send

    created_at: DateTime()
    updated_at: DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        notification_id,
        channel,
        recipient,
        content,
        priority=Priority.NORMAL.value,
        scheduled_at=None,
        max_retries=DEFAULT_MAX_RETRIES,
        retention=DEFAULT_RETENTION,
    ):
        """Create a new entry in PENDING status.

        ``content`` is a mapping with ``text`` and optional ``subject``/``html``.
        Email entries must carry a subject.
        """
        if channel not in {c.value for c in Channel}:
            raise ValidationError({"channel": ['Channel must be either "email" or "sms"']})
        if priority not in {p.value for p in Priority}:
            raise ValidationError({"priority": ['Priority must be one of "low", "normal", "high"']})
        validate_recipient(channel, recipient)

        content = content or {}
        if not content.get("text"):
            raise ValidationError({"rendered_content": ["Rendered content must include a text body"]})
        if channel == Channel.EMAIL.value and not content.get("subject"):
            raise ValidationError({"rendered_content": ["Email notifications require a subject"]})

        now = datetime.now(UTC)
        entry = cls(
            notification_id=notification_id,
            channel=channel,
            recipient=recipient,
            rendered_content=RenderedContent(
                subject=content.get("subject"),
                html=content.get("html"),
                text=content["text"],
            ),
            priority=priority,
            scheduled_at=as_utc(scheduled_at),
            status=QueueStatus.PENDING.value,
            retry_count=0,
            max_retries=max_retries,
            expiry=int((now + retention).timestamp()),
            created_at=now,
            updated_at=now,
        )

        entry.raise_(
            QueueEntryInserted(
                entry_id=str(entry.id),
                notification_id=str(notification_id),
                channel=channel,
                new_image=json.dumps(entry.to_record()),
                occurred_at=now,
            )
        )

        return entry

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def result(self) -> dict | None:
        return json.loads(self.last_result) if self.last_result else None

    @property
    def is_terminal(self) -> bool:
        return QueueStatus(self.status) in TERMINAL_STATUSES

    @property
    def budget_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def is_due(self, as_of: datetime | None = None) -> bool:
        """True when the entry is not scheduled for a time after ``as_of``."""
        if self.scheduled_at is None:
            return True
        return as_utc(self.scheduled_at) <= as_utc(as_of or datetime.now(UTC))

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        current = QueueStatus(self.status)
        if not can_transition(current, target_status):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def apply_status(self, status, error=None, result=None):
        """Move to ``status``, recording the attempt's error or provider receipt.

        ``retry_count`` grows only when an error is supplied. A failed entry
        that fails again past ``max_retries`` lands in PERMANENTLY_FAILED
        instead of FAILED. A pending entry always fails into FAILED, so the
        first failure is escalated whatever the budget.
        """
        target = QueueStatus(status)
        self._assert_can_transition(target)

        if target == QueueStatus.PENDING and self.budget_exhausted:
            raise ValidationError({"retry_count": ["Maximum retry attempts exceeded"]})

        previous = self.status
        if error is not None:
            self.retry_count = self.retry_count + 1
            self.last_error = str(error)
            if (
                target == QueueStatus.FAILED
                and QueueStatus(previous) == QueueStatus.FAILED
                and self.retry_count > self.max_retries
            ):
                target = QueueStatus.PERMANENTLY_FAILED
        if result is not None:
            self.last_result = json.dumps(result)

        self.status = target.value
        now = self._touch()

        self.raise_(
            QueueEntryModified(
                entry_id=str(self.id),
                notification_id=str(self.notification_id),
                previous_status=previous,
                status=self.status,
                retry_count=self.retry_count,
                new_image=json.dumps(self.to_record()),
                occurred_at=now,
            )
        )

    def mark_sent(self, result):
        self.apply_status(QueueStatus.SENT.value, result=result)

    def mark_failed(self, error):
        self.apply_status(QueueStatus.FAILED.value, error=error)

    def mark_permanently_failed(self, error):
        self.apply_status(QueueStatus.PERMANENTLY_FAILED.value, error=error)

    def requeue(self):
        """Put a failed entry back to PENDING. Nothing else is reset."""
        if QueueStatus(self.status) != QueueStatus.FAILED:
            raise ValidationError({"status": ["Only failed entries can be requeued"]})
        self.apply_status(QueueStatus.PENDING.value)

    def _touch(self) -> datetime:
        now = datetime.now(UTC)
        if self.updated_at is not None and as_utc(self.updated_at) > now:
            now = as_utc(self.updated_at)
        self.updated_at = now
        return now

    # -------------------------------------------------------------------
    # Record shape
    # -------------------------------------------------------------------
    def to_record(self) -> dict:
        """Flat, JSON-safe record as emitted on the change feed."""
        return {
            "id": str(self.id),
            "notification_id": str(self.notification_id),
            "channel": self.channel,
            "recipient": self.recipient,
            "rendered_content": self.rendered_content.to_dict(),
            "priority": self.priority,
            "scheduled_at": _iso(self.scheduled_at),
            "status": self.status,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "expiry": self.expiry,
            "last_error": self.last_error,
            "last_result": self.result,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, record: dict) -> "QueueEntry":
        """Rebuild an entry snapshot from a flat record (snake or camelCase keys)."""
        data = {_RECORD_ALIASES.get(key, key): value for key, value in record.items()}

        content = data.get("rendered_content") or {}
        result = data.get("last_result")

        return cls(
            id=str(data["id"]),
            notification_id=str(data.get("notification_id") or data["id"]),
            channel=data["channel"],
            recipient=data["recipient"],
            rendered_content=RenderedContent(
                subject=content.get("subject"),
                html=content.get("html"),
                text=content["text"],
            ),
            priority=data.get("priority") or Priority.NORMAL.value,
            scheduled_at=_parse_datetime(data.get("scheduled_at")),
            status=data.get("status") or QueueStatus.PENDING.value,
            retry_count=int(data.get("retry_count") or 0),
            max_retries=int(data.get("max_retries") if data.get("max_retries") is not None else DEFAULT_MAX_RETRIES),
            expiry=int(data["expiry"]) if data.get("expiry") is not None else None,
            last_error=data.get("last_error"),
            last_result=json.dumps(result) if isinstance(result, dict) else result,
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )
