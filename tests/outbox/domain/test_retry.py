"""Tests for the exponential backoff engine."""

import pytest

from outbox.errors import DeliveryError
from outbox.retry import ESCALATION_POLICY, BackoffPolicy, compute_delay, with_backoff


def _retryable(message="Throttling"):
    return DeliveryError(message, retryable=True, code="Throttling")


def _permanent(message="Invalid address"):
    return DeliveryError(message, retryable=False, code="InvalidParameterValue")


class _Flaky:
    """Operation that fails with the given errors, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestComputeDelay:
    def test_grows_by_factor(self):
        assert compute_delay(0, 1.0, 30.0, 2.0) == 1.0
        assert compute_delay(1, 1.0, 30.0, 2.0) == 2.0
        assert compute_delay(3, 1.0, 30.0, 2.0) == 8.0

    def test_capped_at_max_delay(self):
        assert compute_delay(10, 2.0, 10.0, 2.0) == 10.0

    def test_non_decreasing_and_bounded(self):
        delays = [compute_delay(n, 0.5, 7.0, 3.0) for n in range(12)]
        assert delays == sorted(delays)
        assert max(delays) == 7.0


class TestBackoffPolicy:
    def test_escalation_parameters(self):
        assert ESCALATION_POLICY.max_attempts == 3
        assert ESCALATION_POLICY.base_delay == 2.0
        assert ESCALATION_POLICY.max_delay == 10.0
        assert ESCALATION_POLICY.factor == 2.0
        assert ESCALATION_POLICY.jitter is True

    def test_jitter_scales_between_half_and_full(self):
        policy = BackoffPolicy(base_delay=4.0, jitter=True)
        assert policy.delay_for(0, rand=lambda: 0.0) == 2.0
        assert policy.delay_for(0, rand=lambda: 1.0) == 4.0

    def test_no_jitter_returns_raw_delay(self):
        policy = BackoffPolicy(base_delay=4.0, jitter=False)
        assert policy.delay_for(1, rand=lambda: 0.0) == 8.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay": -1}, {"max_delay": -1}, {"factor": 0.5}],
    )
    def test_invalid_parameters_rejected(self, kwargs):
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)


class TestWithBackoff:
    def test_returns_first_success(self):
        sleeps = []
        operation = _Flaky([])
        assert with_backoff(operation, BackoffPolicy(max_attempts=3), sleep=sleeps.append) == "ok"
        assert operation.calls == 1
        assert sleeps == []

    def test_retries_retryable_errors(self):
        sleeps = []
        operation = _Flaky([_retryable(), _retryable()])
        policy = BackoffPolicy(max_attempts=3, base_delay=1.0, jitter=False)

        assert with_backoff(operation, policy, sleep=sleeps.append) == "ok"
        assert operation.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_raises_last_error_when_exhausted(self):
        sleeps = []
        last = _retryable("third")
        operation = _Flaky([_retryable("first"), _retryable("second"), last])
        policy = BackoffPolicy(max_attempts=3, base_delay=1.0, jitter=False)

        with pytest.raises(DeliveryError) as exc:
            with_backoff(operation, policy, sleep=sleeps.append)

        assert exc.value is last
        assert operation.calls == 3
        # No sleep after the final attempt
        assert len(sleeps) == 2

    def test_non_retryable_error_aborts_immediately(self):
        sleeps = []
        operation = _Flaky([_permanent(), _retryable()])

        with pytest.raises(DeliveryError) as exc:
            with_backoff(operation, BackoffPolicy(max_attempts=5), sleep=sleeps.append)

        assert exc.value.retryable is False
        assert operation.calls == 1
        assert sleeps == []

    def test_plain_exceptions_are_classified_by_allow_list(self):
        sleeps = []
        operation = _Flaky([TimeoutError("read timed out")])
        assert with_backoff(operation, BackoffPolicy(max_attempts=2, jitter=False), sleep=sleeps.append) == "ok"
        assert operation.calls == 2

    def test_custom_retry_condition(self):
        operation = _Flaky([KeyError("x")])
        result = with_backoff(
            operation,
            BackoffPolicy(max_attempts=2),
            retry_condition=lambda exc: isinstance(exc, KeyError),
            sleep=lambda _: None,
        )
        assert result == "ok"

    def test_escalation_delays_with_jitter(self):
        sleeps = []
        operation = _Flaky([_retryable()])
        with_backoff(operation, ESCALATION_POLICY, sleep=sleeps.append, rand=lambda: 0.5)
        # 2s base, jitter factor 0.75
        assert sleeps == [1.5]

    def test_escalation_makes_three_calls_with_doubling_delays(self):
        sleeps = []
        operation = _Flaky([_retryable(), _retryable(), _retryable()])

        with pytest.raises(DeliveryError):
            with_backoff(operation, ESCALATION_POLICY, sleep=sleeps.append, rand=lambda: 1.0)

        assert operation.calls == 3
        assert sleeps == [2.0, 4.0]
