"""
Tests for retry logic: the sync backoff decorator and the async executor.
"""

import random
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from jobfilter.errors import ClassifierError, ErrorKind
from jobfilter.retry import (
    RetryError,
    RetryExecutor,
    RetryPolicy,
    apply_jitter,
    backoff_delay,
    exponential_backoff,
    should_retry_http_status,
    suggested_delay,
)


class TestExponentialBackoff:
    """Test exponential backoff decorator."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01)
        def succeeds():
            call_count[0] += 1
            return "success"

        assert succeeds() == "success"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01)
        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        assert fails_twice() == "success"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError after all attempts fail."""
        call_count = [0]

        @exponential_backoff(max_retries=2, base_delay=0.01)
        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError):
            always_fails()

        assert call_count[0] == 3  # Initial + 2 retries

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01, exceptions=(ConnectionError,))
        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            raises_value_error()

        assert call_count[0] == 1

    def test_exponential_delay(self):
        """Delay should increase exponentially."""
        delays = []

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exponential_base=2.0,
            on_retry=lambda attempt, exc, delay: delays.append(delay),
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert delays == [0.01, 0.02, 0.04]


class TestRetryPredicate:
    """Default retryability of classified statuses."""

    def test_retryable_statuses(self):
        assert should_retry_http_status(None)  # network-level
        assert should_retry_http_status(429)
        assert should_retry_http_status(500)
        assert should_retry_http_status(503)
        assert should_retry_http_status(599)

    def test_terminal_statuses(self):
        assert not should_retry_http_status(400)
        assert not should_retry_http_status(401)
        assert not should_retry_http_status(404)
        assert not should_retry_http_status(413)
        assert not should_retry_http_status(600)


class TestSuggestedDelay:
    """Server-suggested delay extraction."""

    def test_retry_after_seconds(self):
        assert suggested_delay({"Retry-After": "3"}, "") == 3.0

    def test_retry_after_header_is_case_insensitive(self):
        assert suggested_delay({"retry-after": 2}, "") == 2.0

    def test_retry_after_http_date(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=10), usegmt=True)
        assert suggested_delay({"Retry-After": header}, "", now=now) == pytest.approx(10.0)

    def test_retry_after_date_in_past_is_ignored(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now - timedelta(seconds=10), usegmt=True)
        assert suggested_delay({"Retry-After": header}, "", now=now) is None

    def test_message_hint_milliseconds(self):
        message = "Rate limit reached. Please try again in 250ms."
        assert suggested_delay({}, message) == pytest.approx(0.25)

    def test_message_hint_seconds(self):
        message = "Rate limit reached. Please try again in 1.5s."
        assert suggested_delay({}, message) == pytest.approx(1.5)

    def test_no_hint(self):
        assert suggested_delay({}, "Internal server error") is None


class TestBackoffAndJitter:
    """Backoff schedule and jitter bounds."""

    def test_backoff_doubles_until_cap(self):
        delays = [backoff_delay(attempt, 0.6, 8.0) for attempt in range(6)]
        assert delays == [0.6, 1.2, 2.4, 4.8, 8.0, 8.0]

    def test_jitter_stays_within_bounds(self):
        rng = random.Random(1)
        for _ in range(500):
            delay = apply_jitter(1.0, 0.4, rng)
            assert 0.6 <= delay <= 1.4

    def test_jitter_never_negative(self):
        rng = random.Random(2)
        for _ in range(200):
            assert apply_jitter(0.5, 1.0, rng) >= 0.0

    def test_zero_ratio_is_exact(self):
        assert apply_jitter(2.0, 0.0, random.Random(3)) == 2.0


class TestRetryPolicy:
    """Policy construction."""

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError, match="retries must be >= 0"):
            RetryPolicy(retries=-1)

    @pytest.mark.asyncio
    async def test_zero_retries_runs_once(self, executor, recording_sleep):
        calls = []

        async def boom():
            calls.append(1)
            raise ClassifierError("down", status=503, kind=ErrorKind.SERVER)

        with pytest.raises(ClassifierError):
            await executor.execute("once", boom, RetryPolicy(retries=0))
        assert calls == [1]
        assert recording_sleep.delays == []

    def test_with_fallback_keeps_every_other_field(self):
        def never(status, error, attempt):
            return False

        async def fallback():
            return []

        policy = RetryPolicy(retries=2, base_delay=1.5, max_delay=3.0, jitter_ratio=0.1, retry_on=never)
        derived = policy.with_fallback(fallback)

        assert derived.on_payload_too_large is fallback
        assert derived.retry_on is never
        assert (derived.retries, derived.base_delay, derived.max_delay, derived.jitter_ratio) == (2, 1.5, 3.0, 0.1)
        assert policy.on_payload_too_large is None



class TestRetryExecutor:
    """Test the async retry executor."""

    @pytest.mark.asyncio
    async def test_success_on_first_try(self, executor, recording_sleep):
        calls = [0]

        async def work():
            calls[0] += 1
            return "ok"

        assert await executor.execute("unit", work) == "ok"
        assert calls[0] == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retry_then_succeed(self, executor, recording_sleep):
        calls = [0]

        async def work():
            calls[0] += 1
            if calls[0] < 3:
                raise ClassifierError("busy", status=503, kind=ErrorKind.SERVER)
            return "ok"

        assert await executor.execute("unit", work, RetryPolicy(retries=5)) == "ok"
        assert calls[0] == 3
        assert len(recording_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_always_failing_unit_is_attempted_retries_plus_one_times(self, executor):
        calls = [0]

        async def work():
            calls[0] += 1
            raise ClassifierError(f"failure {calls[0]}", status=500, kind=ErrorKind.SERVER)

        with pytest.raises(ClassifierError) as excinfo:
            await executor.execute("unit", work, RetryPolicy(retries=3))

        assert calls[0] == 4
        # The last real failure surfaces, not a distinct exhaustion error
        assert excinfo.value.message == "failure 4"

    @pytest.mark.asyncio
    async def test_default_retries_is_five(self, executor):
        calls = [0]

        async def work():
            calls[0] += 1
            raise ConnectionError("reset")

        with pytest.raises(ClassifierError):
            await executor.execute("unit", work)

        assert calls[0] == 6

    @pytest.mark.asyncio
    async def test_client_error_is_terminal(self, executor, recording_sleep):
        calls = [0]

        async def work():
            calls[0] += 1
            raise ClassifierError("bad request", status=400, kind=ErrorKind.CLIENT)

        with pytest.raises(ClassifierError):
            await executor.execute("unit", work)

        assert calls[0] == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_unclassified_exception_is_retried_and_wrapped(self, executor):
        calls = [0]

        async def work():
            calls[0] += 1
            raise RuntimeError("socket closed")

        with pytest.raises(ClassifierError) as excinfo:
            await executor.execute("unit", work, RetryPolicy(retries=2))

        assert calls[0] == 3
        assert excinfo.value.status is None
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_custom_predicate_sees_attempt_number(self, executor):
        seen = []

        def retry_on(status, error, attempt):
            seen.append(attempt)
            return attempt < 1

        async def work():
            raise ClassifierError("busy", status=503)

        with pytest.raises(ClassifierError):
            await executor.execute("unit", work, RetryPolicy(retries=5, retry_on=retry_on))

        assert seen == [0, 1]

    @pytest.mark.asyncio
    async def test_payload_too_large_invokes_fallback_without_retry(self, executor, recording_sleep):
        calls = [0]

        async def work():
            calls[0] += 1
            raise ClassifierError("Request too large for model", status=429, kind=ErrorKind.RATE_LIMIT)

        async def fallback():
            return "smaller"

        policy = RetryPolicy(on_payload_too_large=fallback)
        assert await executor.execute("unit", work, policy) == "smaller"
        assert calls[0] == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_payload_too_large_fallback_failure_is_not_retried(self, executor):
        calls = [0]

        async def work():
            calls[0] += 1
            raise ClassifierError("too big", status=413, kind=ErrorKind.PAYLOAD_TOO_LARGE)

        async def fallback():
            raise ClassifierError("fallback failed", status=500)

        with pytest.raises(ClassifierError, match="fallback failed"):
            await executor.execute("unit", work, RetryPolicy(on_payload_too_large=fallback))
        assert calls[0] == 1

    @pytest.mark.asyncio
    async def test_payload_too_large_without_fallback_propagates(self, executor):
        calls = [0]

        async def work():
            calls[0] += 1
            raise ClassifierError("request too large", status=413, kind=ErrorKind.PAYLOAD_TOO_LARGE)

        with pytest.raises(ClassifierError):
            await executor.execute("unit", work)
        assert calls[0] == 1

    @pytest.mark.asyncio
    async def test_server_suggested_delay_wins_over_backoff(self, recording_sleep):
        executor = RetryExecutor(sleep=recording_sleep, rng=random.Random(0))
        calls = [0]

        async def work():
            calls[0] += 1
            if calls[0] == 1:
                raise ClassifierError(
                    "slow down", status=429, kind=ErrorKind.RATE_LIMIT, headers={"retry-after": "4"}
                )
            return "ok"

        policy = RetryPolicy(base_delay=0.1, max_delay=1.0, jitter_ratio=0.0)
        assert await executor.execute("unit", work, policy) == "ok"
        assert recording_sleep.delays == [4.0]

    @pytest.mark.asyncio
    async def test_backoff_delays_respect_jitter_bounds(self, recording_sleep):
        executor = RetryExecutor(sleep=recording_sleep, rng=random.Random(11))

        async def work():
            raise ClassifierError("busy", status=502)

        policy = RetryPolicy(retries=5, base_delay=0.5, max_delay=4.0, jitter_ratio=0.4)
        with pytest.raises(ClassifierError):
            await executor.execute("unit", work, policy)

        assert len(recording_sleep.delays) == 5
        for attempt, delay in enumerate(recording_sleep.delays):
            base = min(4.0, 0.5 * 2 ** attempt)
            assert 0 <= delay <= base * 1.4
            assert delay >= base * 0.6

    @pytest.mark.asyncio
    async def test_retries_are_counted_in_metrics(self, executor, quiet_logger):
        async def work():
            raise ClassifierError("busy", status=429, kind=ErrorKind.RATE_LIMIT)

        with pytest.raises(ClassifierError):
            await executor.execute("unit", work, RetryPolicy(retries=2))

        metrics = quiet_logger.get_metrics()
        assert metrics["retries"] == 2
        assert metrics["errors_by_type"]["rate_limit"] == 2
