"""Error taxonomy for the outbox pipeline.

Input validation problems are reported with Protean's ``ValidationError``;
everything here describes a failure of an operation on an existing entry,
a provider call, or an inbound message.
"""


class OutboxError(Exception):
    """Base class for outbox pipeline errors."""


class NotFoundError(OutboxError):
    """A queue entry (or template) does not exist."""

    def __init__(self, message: str, entry_id: str | None = None) -> None:
        super().__init__(message)
        self.entry_id = entry_id


class DuplicateEntry(OutboxError):
    """An entry with the same identifier is already stored."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Queue entry {entry_id} already exists")
        self.entry_id = entry_id


class StoreUnavailable(OutboxError):
    """The backing store could not complete a read or write."""


class StaleStatusError(OutboxError):
    """A conditional status update found a different current status."""

    def __init__(self, entry_id: str, expected: str, actual: str) -> None:
        super().__init__(f"Queue entry {entry_id} is {actual}, expected {expected}")
        self.entry_id = entry_id
        self.expected = expected
        self.actual = actual


class ProviderError(OutboxError):
    """Raised by provider adapters; ``code`` names the provider error category."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class DeliveryError(OutboxError):
    """A send attempt failed. ``retryable`` drives all retry decisions."""

    def __init__(
        self,
        message: str,
        retryable: bool,
        code: str | None = None,
        channel: str | None = None,
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.code = code
        self.channel = channel


class MalformedMessage(OutboxError):
    """An escalation message matches none of the accepted envelope shapes."""


class MissingVariables(OutboxError):
    """A template references placeholders that were not supplied."""

    def __init__(self, missing: list[str], template_name: str | None = None) -> None:
        names = ", ".join(sorted(missing))
        super().__init__(f"Missing template variables: {names}")
        self.missing = sorted(missing)
        self.template_name = template_name
