"""Fake SMS provider — records sent messages for testing."""

from uuid import uuid4

from outbox.delivery.sms_port import SmsMessage, SmsProvider
from outbox.errors import ProviderError


class FakeSmsProvider(SmsProvider):
    """SMS provider that records messages in memory for test assertions."""

    name = "fake-sms"

    def __init__(self):
        self.sent_messages: list[dict] = []
        self.attempts = 0
        self.reset()

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "SMS delivery failed",
        error_code: str = "InvalidParameter",
        times: int | None = None,
    ):
        """Configure the fake provider behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.error_code = error_code
        self.failures_left = times

    def send_sms(self, message: SmsMessage) -> str:
        self.attempts += 1

        if not self.should_succeed:
            if self.failures_left is None or self.failures_left > 0:
                if self.failures_left is not None:
                    self.failures_left -= 1
                raise ProviderError(self.failure_reason, code=self.error_code)

        message_id = f"sms-{uuid4().hex[:12]}"
        self.sent_messages.append(
            {
                "message_id": message_id,
                "to": message.to,
                "text": message.text,
                "sms_type": message.sms_type,
            }
        )
        return message_id

    def reset(self):
        """Clear sent messages (useful between tests)."""
        self.sent_messages.clear()
        self.attempts = 0
        self.should_succeed = True
        self.failure_reason = "SMS delivery failed"
        self.error_code = "InvalidParameter"
        self.failures_left = None
