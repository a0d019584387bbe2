"""AWS SNS SMS provider.

Publishes directly to a phone number with the ``AWS.SNS.SMS.SMSType``
message attribute set from the message's classification.
"""

import boto3
import structlog
from botocore.exceptions import ClientError

from outbox.delivery.masking import mask_recipient
from outbox.delivery.sms_port import SmsMessage, SmsProvider
from outbox.errors import ProviderError

logger = structlog.get_logger(__name__)


def build_sns_client(region: str):
    return boto3.client("sns", region_name=region)


class SnsSmsProvider(SmsProvider):
    name = "SNS"

    def __init__(self, client):
        self._client = client

    def send_sms(self, message: SmsMessage) -> str:
        try:
            response = self._client.publish(
                PhoneNumber=message.to,
                Message=message.text,
                MessageAttributes={
                    "AWS.SNS.SMS.SMSType": {
                        "DataType": "String",
                        "StringValue": message.sms_type,
                    }
                },
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            logger.error("Error sending SMS", recipient=mask_recipient(message.to), code=code, error=str(exc))
            raise ProviderError(str(exc), code=code) from exc

        message_id = response["MessageId"]
        logger.debug("SMS sent via SNS", message_id=message_id, recipient=mask_recipient(message.to))
        return message_id
