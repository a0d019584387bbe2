"""Normalization of escalation messages into queue entries.

Three envelope shapes are accepted:

* a wrapped change-feed record, ``{"record": {"new_image": {...}}}`` or the
  DynamoDB stream form ``{"record": {"dynamodb": {"NewImage": {...}}}}``
* a reference by id, ``{"outbox_id": "..."}`` (or ``outboxId``)
* a raw queue entry record, any mapping with an ``id``

SQS-style wrappers (``{"body": "<json>"}``) and JSON strings are unwrapped
first. Anything else is a MalformedMessage.
"""

import json

from boto3.dynamodb.types import TypeDeserializer
from protean.exceptions import ValidationError

from outbox.errors import MalformedMessage
from outbox.queue.entry import QueueEntry

_deserializer = TypeDeserializer()


def _decode(message):
    if isinstance(message, (str, bytes)):
        try:
            return json.loads(message)
        except ValueError as exc:
            raise MalformedMessage(f"Message body is not valid JSON: {exc}") from exc
    return message


def unwrap_body(message) -> dict:
    """Strip JSON/SQS wrapping and return the payload mapping."""
    payload = _decode(message)
    if isinstance(payload, dict) and "body" in payload and isinstance(payload["body"], (str, bytes, dict)):
        payload = _decode(payload["body"])
    if not isinstance(payload, dict):
        raise MalformedMessage("Unable to extract outbox entry from message: payload is not an object")
    return payload


def from_dynamodb_image(image: dict) -> dict:
    """Convert a DynamoDB-typed attribute map (``{"S": ...}``) to plain values."""
    return {key: _deserializer.deserialize(value) for key, value in image.items()}


def extract_reference(payload: dict) -> str | None:
    return payload.get("outbox_id") or payload.get("outboxId")


def extract_wrapped_record(payload: dict) -> dict | None:
    """The entry image inside a wrapped change-feed record, if any."""
    record = payload.get("record")
    if isinstance(record, dict):
        if isinstance(record.get("new_image"), dict):
            return record["new_image"]
        dynamodb = record.get("dynamodb")
        if isinstance(dynamodb, dict) and isinstance(dynamodb.get("NewImage"), dict):
            return from_dynamodb_image(dynamodb["NewImage"])
    return None


def _build(record: dict) -> QueueEntry:
    try:
        return QueueEntry.from_record(record)
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        raise MalformedMessage(f"Invalid outbox entry record: {exc}") from exc


def normalize_envelope(message, load_entry) -> QueueEntry:
    """Resolve ``message`` to a QueueEntry.

    ``load_entry`` is called with an entry id for reference envelopes.
    """
    payload = unwrap_body(message)

    record = extract_wrapped_record(payload)
    if record is not None:
        return _build(record)

    reference = extract_reference(payload)
    if reference:
        return load_entry(str(reference))

    if payload.get("id"):
        return _build(payload)

    raise MalformedMessage("Unable to extract outbox entry from message")
