"""AWS SES email provider.

The boto3 SES client is constructed by the caller and injected, so that one
client can be shared explicitly and tests can hand in a stub.

Usage:
    client = boto3.client("ses", region_name="us-east-1")
    provider = SesEmailProvider(client, source="notifications@example.com")
    message_id = provider.send_email(message)
"""

import boto3
import structlog
from botocore.exceptions import ClientError

from outbox.delivery.email_port import EmailMessage, EmailProvider
from outbox.delivery.masking import mask_recipient
from outbox.errors import ProviderError

logger = structlog.get_logger(__name__)


def build_ses_client(region: str):
    return boto3.client("ses", region_name=region)


class SesEmailProvider(EmailProvider):
    name = "SES"

    def __init__(self, client, source: str):
        self._client = client
        self._source = source

    def send_email(self, message: EmailMessage) -> str:
        body = {"Text": {"Data": message.text, "Charset": "UTF-8"}}
        if message.html:
            body["Html"] = {"Data": message.html, "Charset": "UTF-8"}

        try:
            response = self._client.send_email(
                Source=self._source,
                Destination={"ToAddresses": [message.to]},
                Message={
                    "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                    "Body": body,
                },
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            logger.error(
                "Error sending email",
                recipient=mask_recipient(message.to),
                code=code,
                error=str(exc),
            )
            raise ProviderError(str(exc), code=code) from exc

        message_id = response["MessageId"]
        logger.debug("Email sent via SES", message_id=message_id, recipient=mask_recipient(message.to))
        return message_id
