"""Metrics sink — fire-and-forget counters and durations.

The pipeline only talks to ``SafeMetrics``: a failing sink is logged and
never allowed to interrupt delivery.
"""

from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger(__name__)


class MetricsSink(ABC):
    """Abstract interface for metric backends."""

    @abstractmethod
    def increment(self, name: str, dimensions: dict | None = None, value: float = 1) -> None: ...

    @abstractmethod
    def record_duration(self, name: str, duration_ms: float, dimensions: dict | None = None) -> None: ...


class LoggingMetricsSink(MetricsSink):
    """Emits metrics as structured log lines."""

    def __init__(self, namespace: str = "NotificationService", environment: str = "dev"):
        self.namespace = namespace
        self.environment = environment

    def increment(self, name, dimensions=None, value=1):
        logger.info(
            "metric",
            namespace=self.namespace,
            metric=name,
            value=value,
            unit="Count",
            environment=self.environment,
            **(dimensions or {}),
        )

    def record_duration(self, name, duration_ms, dimensions=None):
        logger.info(
            "metric",
            namespace=self.namespace,
            metric=name,
            value=round(duration_ms, 3),
            unit="Milliseconds",
            environment=self.environment,
            **(dimensions or {}),
        )


class RecordingMetricsSink(MetricsSink):
    """Keeps every data point in memory for test assertions."""

    def __init__(self):
        self.counters: list[dict] = []
        self.durations: list[dict] = []

    def increment(self, name, dimensions=None, value=1):
        self.counters.append({"name": name, "value": value, "dimensions": dict(dimensions or {})})

    def record_duration(self, name, duration_ms, dimensions=None):
        self.durations.append({"name": name, "value": duration_ms, "dimensions": dict(dimensions or {})})

    def total(self, name: str) -> float:
        return sum(point["value"] for point in self.counters if point["name"] == name)

    def reset(self):
        self.counters.clear()
        self.durations.clear()


class SafeMetrics:
    """Wraps a sink so that recording failures are logged and swallowed."""

    def __init__(self, sink: MetricsSink | None = None):
        self.sink = sink or LoggingMetricsSink()

    def increment(self, name: str, dimensions: dict | None = None, value: float = 1) -> None:
        try:
            self.sink.increment(name, dimensions, value)
        except Exception as exc:
            logger.error("Error publishing metric", metric=name, error=str(exc))

    def record_duration(self, name: str, duration_ms: float, dimensions: dict | None = None) -> None:
        try:
            self.sink.record_duration(name, duration_ms, dimensions)
        except Exception as exc:
            logger.error("Error publishing duration metric", metric=name, error=str(exc))

    def record_batch(self, points: list[tuple[str, float, dict | None]]) -> None:
        for name, value, dimensions in points:
            self.increment(name, dimensions, value)
