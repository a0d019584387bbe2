"""Tests for metric sinks."""

from unittest.mock import MagicMock

from outbox.metrics import LoggingMetricsSink, RecordingMetricsSink, SafeMetrics


class TestRecordingMetricsSink:
    def test_counters_and_totals(self):
        sink = RecordingMetricsSink()
        sink.increment("notifications.sent", {"channel": "email"})
        sink.increment("notifications.sent", {"channel": "sms"}, value=2)

        assert sink.total("notifications.sent") == 3
        assert sink.total("notifications.failed") == 0

    def test_durations(self):
        sink = RecordingMetricsSink()
        sink.record_duration("notifications.delivery_duration", 12.5)
        assert sink.durations == [{"name": "notifications.delivery_duration", "value": 12.5, "dimensions": {}}]


class TestSafeMetrics:
    def test_failing_sink_is_swallowed(self):
        sink = MagicMock()
        sink.increment.side_effect = RuntimeError("network down")
        sink.record_duration.side_effect = RuntimeError("network down")
        metrics = SafeMetrics(sink)

        metrics.increment("notifications.sent")
        metrics.record_duration("notifications.delivery_duration", 5.0)
        metrics.record_batch([("a", 1, None), ("b", 2, None)])

        assert sink.increment.call_count == 3

    def test_batch_forwards_every_point(self):
        sink = RecordingMetricsSink()
        SafeMetrics(sink).record_batch([("a", 1, None), ("b", 0, {"source": "outbox"})])

        assert [(p["name"], p["value"]) for p in sink.counters] == [("a", 1), ("b", 0)]
        assert sink.counters[1]["dimensions"] == {"source": "outbox"}

    def test_defaults_to_logging_sink(self):
        assert isinstance(SafeMetrics().sink, LoggingMetricsSink)

    def test_logging_sink_never_raises(self):
        sink = LoggingMetricsSink(environment="test")
        sink.increment("notifications.sent", {"channel": "email"})
        sink.record_duration("notifications.delivery_duration", 3.14159)
