"""SMS provider port — abstract interface for SMS dispatch."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class SmsMessage:
    """A single text message with its delivery classification."""

    to: str
    text: str
    sms_type: str = "Transactional"


class SmsProvider(ABC):
    """Abstract interface for SMS provider adapters."""

    name = "sms"

    @abstractmethod
    def send_sms(self, message: SmsMessage) -> str:
        """Send an SMS message.

        Returns:
            The provider's message id.

        Raises:
            ProviderError: with ``code`` naming the provider error category.
        """
        ...
