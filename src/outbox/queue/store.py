"""OutboxStore — the durable queue of QueueEntry records.

Wraps the QueueEntry repository with the outbox contract: unique
identifiers on insert, NotFound on missing entries, conditional status
updates and secondary lookups. Every mutation goes through the aggregate,
so each one raises a change-feed event carrying the full new record.

Concurrent updates to the same entry are guarded only by the optional
``expected_status`` compare-and-swap; without it the last write wins.
"""

from contextlib import contextmanager
from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from outbox.errors import DuplicateEntry, NotFoundError, OutboxError, StaleStatusError, StoreUnavailable
from outbox.queue.entry import QueueEntry, QueueStatus, as_utc

logger = structlog.get_logger(__name__)

QUERY_LIMIT = 1000

_CLEANUP_STATUSES = (
    QueueStatus.SENT.value,
    QueueStatus.FAILED.value,
    QueueStatus.PERMANENTLY_FAILED.value,
)


@contextmanager
def _store_errors(operation: str, entry_id: str | None = None):
    """Translate unexpected repository failures into StoreUnavailable."""
    try:
        yield
    except (OutboxError, ObjectNotFoundError, ValidationError):
        raise
    except Exception as exc:
        logger.error("Outbox store operation failed", operation=operation, outbox_id=entry_id, error=str(exc))
        raise StoreUnavailable(f"{operation} failed: {exc}") from exc


class OutboxStore:
    """Repository-backed outbox store.

    The repository is resolved from the active domain on every call unless
    one is injected, so the store never holds entry state between calls.
    """

    def __init__(self, repository=None):
        self._repository = repository

    @property
    def repo(self):
        if self._repository is not None:
            return self._repository
        return current_domain.repository_for(QueueEntry)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def enqueue(self, entry: QueueEntry) -> QueueEntry:
        """Persist a new entry. Returns only once the entry is stored."""
        entry_id = str(entry.id)
        with _store_errors("enqueue", entry_id):
            try:
                self.repo.get(entry_id)
            except ObjectNotFoundError:
                pass
            else:
                raise DuplicateEntry(entry_id)

            self.repo.add(entry)

        logger.debug(
            "Outbox entry created",
            outbox_id=entry_id,
            notification_id=str(entry.notification_id),
            channel=entry.channel,
        )
        return entry

    def update_status(
        self,
        entry_id: str,
        status: str,
        error: str | None = None,
        result: dict | None = None,
        expected_status: str | None = None,
    ) -> QueueEntry:
        """Move an entry to ``status``.

        When ``expected_status`` is given the update only applies if the
        entry's current status still matches it (raises StaleStatusError
        otherwise). ``retry_count`` increments only when ``error`` is given.
        """
        entry = self.get(entry_id)

        if expected_status is not None and entry.status != expected_status:
            raise StaleStatusError(entry_id, expected_status, entry.status)

        entry.apply_status(status, error=error, result=result)

        with _store_errors("update_status", entry_id):
            self.repo.add(entry)

        logger.debug(
            "Outbox entry status updated",
            outbox_id=entry_id,
            status=entry.status,
            retry_count=entry.retry_count,
            has_error=error is not None,
        )
        return entry

    def requeue(self, entry_id: str) -> QueueEntry:
        """Reset a failed entry to pending (retry budget permitting)."""
        entry = self.get(entry_id)
        entry.requeue()

        with _store_errors("requeue", entry_id):
            self.repo.add(entry)

        logger.info("Outbox entry requeued", outbox_id=entry_id, retry_count=entry.retry_count)
        return entry

    def delete(self, entry_id: str) -> bool:
        """Remove an entry regardless of status. Missing entries are a no-op."""
        with _store_errors("delete", entry_id):
            try:
                entry = self.repo.get(entry_id)
            except ObjectNotFoundError:
                return False
            self.repo._dao.delete(entry)
        return True

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, entry_id: str) -> QueueEntry:
        with _store_errors("get", entry_id):
            try:
                return self.repo.get(entry_id)
            except ObjectNotFoundError as exc:
                raise NotFoundError("Outbox entry not found", entry_id=entry_id) from exc

    def query_by_status(self, status: str, limit: int = QUERY_LIMIT) -> list[QueueEntry]:
        with _store_errors("query_by_status"):
            return self.repo._dao.query.filter(status=status).order_by("created_at").limit(limit).all().items

    def query_by_notification_id(self, notification_id: str, limit: int = QUERY_LIMIT) -> list[QueueEntry]:
        with _store_errors("query_by_notification_id"):
            return (
                self.repo._dao.query.filter(notification_id=notification_id)
                .order_by("created_at")
                .limit(limit)
                .all()
                .items
            )

    def count_by_status(self, status: str) -> int:
        with _store_errors("count_by_status"):
            return self.repo._dao.query.filter(status=status).all().total

    # -------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------
    def cleanup_terminal(self, days_old: int = 7, as_of: datetime | None = None) -> dict:
        """Delete sent/failed entries created more than ``days_old`` days ago."""
        cutoff = as_utc(as_of or datetime.now(UTC)) - timedelta(days=days_old)

        old_entries = [
            entry
            for status in _CLEANUP_STATUSES
            for entry in self.query_by_status(status)
            if as_utc(entry.created_at) < cutoff
        ]

        logger.info("Found old outbox entries for cleanup", count=len(old_entries), cutoff=cutoff.isoformat())

        deleted = 0
        for entry in old_entries:
            try:
                if self.delete(str(entry.id)):
                    deleted += 1
            except StoreUnavailable as exc:
                logger.error("Error deleting old outbox entry", outbox_id=str(entry.id), error=str(exc))

        logger.info("Outbox cleanup completed", total_found=len(old_entries), deleted=deleted)
        return {"total_found": len(old_entries), "deleted": deleted}

    def evict_expired(self, as_of: datetime | None = None) -> int:
        """Drop entries whose ``expiry`` has passed, whatever their status.

        Run by the ``evict-expired`` maintenance command for backing stores
        without native time-to-live eviction.
        """
        now = int(as_utc(as_of or datetime.now(UTC)).timestamp())
        evicted = 0
        for status in QueueStatus:
            for entry in self.query_by_status(status.value):
                if entry.expiry is not None and entry.expiry < now and self.delete(str(entry.id)):
                    evicted += 1
        if evicted:
            logger.info("Expired outbox entries evicted", count=evicted)
        return evicted
