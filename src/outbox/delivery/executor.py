"""Delivery executor — turns a queue entry into exactly one provider call.

The executor is a pure send operation: it never looks at or changes an
entry's status or schedule. Provider failures of any kind come out as a
DeliveryError whose ``retryable`` flag is decided by the classification
allow-list.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

import structlog

from outbox.delivery.classification import error_code, is_retryable
from outbox.delivery.email_port import EmailMessage, EmailProvider
from outbox.delivery.masking import mask_recipient
from outbox.delivery.sms_port import SmsMessage, SmsProvider
from outbox.errors import DeliveryError
from outbox.queue.entry import Channel, QueueEntry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeliveryReceipt:
    """Normalized provider acknowledgement of a send."""

    message_id: str
    provider: str
    channel: str
    status: str = "sent"

    def to_dict(self) -> dict:
        return asdict(self)


class ChannelDelivery(ABC):
    """Send capability for one channel."""

    channel: str

    @abstractmethod
    def send(self, entry: QueueEntry) -> DeliveryReceipt: ...


class EmailDelivery(ChannelDelivery):
    channel = Channel.EMAIL.value

    def __init__(self, provider: EmailProvider):
        self.provider = provider

    def send(self, entry: QueueEntry) -> DeliveryReceipt:
        content = entry.rendered_content
        message = EmailMessage(
            to=entry.recipient,
            subject=content.subject or "",
            text=content.text,
            html=content.html or None,
        )
        message_id = self.provider.send_email(message)
        return DeliveryReceipt(message_id=message_id, provider=self.provider.name, channel=self.channel)


class SmsDelivery(ChannelDelivery):
    channel = Channel.SMS.value

    def __init__(self, provider: SmsProvider, sms_type: str = "Transactional"):
        self.provider = provider
        self.sms_type = sms_type

    def send(self, entry: QueueEntry) -> DeliveryReceipt:
        message = SmsMessage(to=entry.recipient, text=entry.rendered_content.text, sms_type=self.sms_type)
        message_id = self.provider.send_sms(message)
        return DeliveryReceipt(message_id=message_id, provider=self.provider.name, channel=self.channel)


class DeliveryExecutor:
    """Routes entries to their channel's delivery and normalizes failures."""

    def __init__(
        self,
        email_provider: EmailProvider | None = None,
        sms_provider: SmsProvider | None = None,
        sms_type: str = "Transactional",
    ):
        self._deliveries: dict[str, ChannelDelivery] = {}
        if email_provider is not None:
            self._deliveries[Channel.EMAIL.value] = EmailDelivery(email_provider)
        if sms_provider is not None:
            self._deliveries[Channel.SMS.value] = SmsDelivery(sms_provider, sms_type)

    def for_channel(self, channel: str) -> ChannelDelivery:
        try:
            return self._deliveries[channel]
        except KeyError:
            raise DeliveryError(
                f"Unsupported notification channel: {channel}",
                retryable=False,
                code="UnsupportedChannel",
                channel=channel,
            ) from None

    def send(self, entry: QueueEntry) -> DeliveryReceipt:
        delivery = self.for_channel(entry.channel)

        logger.info(
            "Sending notification",
            outbox_id=str(entry.id),
            channel=entry.channel,
            recipient=mask_recipient(entry.recipient),
        )

        try:
            receipt = delivery.send(entry)
        except Exception as exc:
            retryable = is_retryable(exc)
            logger.warning(
                "Notification send failed",
                outbox_id=str(entry.id),
                channel=entry.channel,
                recipient=mask_recipient(entry.recipient),
                code=error_code(exc),
                retryable=retryable,
                error=str(exc),
            )
            raise DeliveryError(
                str(exc),
                retryable=retryable,
                code=error_code(exc),
                channel=entry.channel,
            ) from exc

        logger.info(
            "Notification sent",
            outbox_id=str(entry.id),
            channel=entry.channel,
            message_id=receipt.message_id,
            provider=receipt.provider,
        )
        return receipt
