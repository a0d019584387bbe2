"""Fake email provider — records sent emails for testing."""

from uuid import uuid4

from outbox.delivery.email_port import EmailMessage, EmailProvider
from outbox.errors import ProviderError


class FakeEmailProvider(EmailProvider):
    """Email provider that records messages in memory for test assertions."""

    name = "fake-email"

    def __init__(self):
        self.sent_emails: list[dict] = []
        self.attempts = 0
        self.reset()

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Email delivery failed",
        error_code: str = "MessageRejected",
        times: int | None = None,
    ):
        """Configure the fake provider behavior for testing.

        With ``times`` set, only that many sends fail before the provider
        recovers.
        """
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.error_code = error_code
        self.failures_left = times

    def send_email(self, message: EmailMessage) -> str:
        self.attempts += 1

        if not self.should_succeed:
            if self.failures_left is None or self.failures_left > 0:
                if self.failures_left is not None:
                    self.failures_left -= 1
                raise ProviderError(self.failure_reason, code=self.error_code)

        message_id = f"email-{uuid4().hex[:12]}"
        self.sent_emails.append(
            {
                "message_id": message_id,
                "to": message.to,
                "subject": message.subject,
                "text": message.text,
                "html": message.html,
            }
        )
        return message_id

    def reset(self):
        """Clear sent emails (useful between tests)."""
        self.sent_emails.clear()
        self.attempts = 0
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"
        self.error_code = "MessageRejected"
        self.failures_left = None
