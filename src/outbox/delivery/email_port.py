"""Email provider port — abstract interface for email dispatch."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class EmailMessage:
    """A provider-ready email: subject plus text and optional HTML parts."""

    to: str
    subject: str
    text: str
    html: str | None = None


class EmailProvider(ABC):
    """Abstract interface for email provider adapters."""

    name = "email"

    @abstractmethod
    def send_email(self, message: EmailMessage) -> str:
        """Send an email message.

        Returns:
            The provider's message id.

        Raises:
            ProviderError: with ``code`` naming the provider error category.
        """
        ...
