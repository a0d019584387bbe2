"""Dead-letter queue port and an in-memory implementation.

Messages are SQS-shaped: ``{"message_id": ..., "body": "<json>"}``.
"""

import json
from abc import ABC, abstractmethod
from collections import deque
from uuid import uuid4


class DeadLetterQueue(ABC):
    """Abstract interface for the failure escalation queue."""

    @abstractmethod
    def publish(self, payload: dict) -> str:
        """Enqueue ``payload`` and return the message id."""
        ...

    @abstractmethod
    def drain(self, limit: int | None = None) -> list[dict]:
        """Remove and return up to ``limit`` messages, oldest first."""
        ...

    @abstractmethod
    def redeliver(self, message: dict) -> None:
        """Return a previously drained message to the queue."""
        ...


class InMemoryDeadLetterQueue(DeadLetterQueue):
    def __init__(self):
        self._messages: deque[dict] = deque()

    def publish(self, payload: dict) -> str:
        message_id = uuid4().hex
        self._messages.append({"message_id": message_id, "body": json.dumps(payload), "receive_count": 0})
        return message_id

    def drain(self, limit: int | None = None) -> list[dict]:
        count = len(self._messages) if limit is None else min(limit, len(self._messages))
        drained = []
        for _ in range(count):
            message = self._messages.popleft()
            message["receive_count"] += 1
            drained.append(message)
        return drained

    def redeliver(self, message: dict) -> None:
        self._messages.append(message)

    def __len__(self) -> int:
        return len(self._messages)

    def clear(self) -> None:
        self._messages.clear()
