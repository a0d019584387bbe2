"""Exponential backoff with jitter around a single operation.

Only errors the classification allow-list marks retryable are retried; any
other error is raised at once without using up the remaining attempts.
The delay between attempts is a plain (cancellable) sleep.

Two retry domains exist in the pipeline and must not be confused:

* infrastructure redelivery: a failed change-feed batch or dead-letter
  message is handed back by the surrounding environment; nothing in this
  package loops for it, and the primary dispatcher makes a single attempt
  per event.
* in-process escalation retry: the escalation processor calls
  ``with_backoff`` directly with ``ESCALATION_POLICY``.
"""

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from outbox.delivery.classification import is_retryable

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """Parameters of an exponential backoff schedule. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0
    jitter: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Delay after the 0-indexed ``attempt``, jitter applied when enabled."""
        delay = compute_delay(attempt, self.base_delay, self.max_delay, self.factor)
        if self.jitter:
            delay *= 0.5 + rand() * 0.5
        return delay


# Escalation layer: one try plus 2 retries, 2s base, 10s cap
ESCALATION_POLICY = BackoffPolicy(max_attempts=3, base_delay=2.0, max_delay=10.0, factor=2.0, jitter=True)


def compute_delay(attempt: int, base_delay: float, max_delay: float, factor: float) -> float:
    """Pre-jitter delay: ``min(base_delay * factor**attempt, max_delay)``."""
    return min(base_delay * (factor**attempt), max_delay)


def with_backoff(
    operation: Callable[[], T],
    policy: BackoffPolicy = ESCALATION_POLICY,
    *,
    retry_condition: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
    rand: Callable[[], float] = random.random,
    context: dict | None = None,
) -> T:
    """Call ``operation`` until it succeeds or the policy is exhausted.

    Raises the last observed error once ``policy.max_attempts`` calls have
    failed, or immediately when an error is not retryable.
    """
    context = context or {}

    for attempt in range(policy.max_attempts):
        try:
            return operation()
        except Exception as exc:
            if not retry_condition(exc):
                logger.info("Non-retryable error, giving up", attempt=attempt + 1, error=str(exc), **context)
                raise

            if attempt + 1 >= policy.max_attempts:
                logger.error("Max retries exceeded", attempts=attempt + 1, error=str(exc), **context)
                raise

            delay = policy.delay_for(attempt, rand)
            logger.warning(
                "Operation failed, retrying",
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                delay=round(delay, 3),
                error=str(exc),
                **context,
            )
            sleep(delay)

    # Unreachable: the final attempt either returns or raises
    raise RuntimeError("with_backoff exhausted without a result")
