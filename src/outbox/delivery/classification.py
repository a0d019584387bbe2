"""Retryable vs non-retryable classification of delivery errors.

This allow-list is the only place that decides whether a failure is worth
retrying; the delivery executor stamps the verdict on every DeliveryError
and the retry engine reads it back from there.
"""

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from outbox.errors import DeliveryError, ProviderError

# Transient provider/network conditions: throttling, timeouts, outages
RETRYABLE_ERROR_CODES = (
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "ServiceUnavailableException",
    "ServiceUnavailable",
    "InternalServerErrorException",
    "InternalFailure",
    "RequestTimeout",
    "NetworkingError",
    "ECONNRESET",
    "ENOTFOUND",
    "ECONNREFUSED",
    "ETIMEDOUT",
)

_RETRYABLE_EXCEPTION_TYPES = (
    ConnectionError,
    TimeoutError,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


def error_code(error: BaseException) -> str:
    """Best available category name for an error."""
    if isinstance(error, (DeliveryError, ProviderError)) and error.code:
        return error.code
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "") or type(error).__name__
    return type(error).__name__


def is_retryable(error: BaseException) -> bool:
    """Return True when ``error`` is a transient condition worth retrying.

    Deterministic for a given error instance: DeliveryErrors carry their own
    verdict, everything else is matched against the allow-list by category
    name or message.
    """
    if isinstance(error, DeliveryError):
        return error.retryable

    if isinstance(error, _RETRYABLE_EXCEPTION_TYPES):
        return True

    code = error_code(error)
    message = str(error)
    return any(candidate in code or candidate in message for candidate in RETRYABLE_ERROR_CODES)
