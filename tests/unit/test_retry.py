"""
Unit tests for the exponential backoff retry policy.

Tests cover:
- Backoff delays
- Retry limit
- Error classification
- Credential refresh on expired tokens
"""

import pytest

from kinesis_stream.errors import ProtocolError, ServiceError, TransportError
from kinesis_stream.request.retry import ExponentialBackoffRetryPolicy


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class ScriptedAttempt:
    """Raises the scripted errors in order, then returns the result."""

    def __init__(self, *errors, result=None):
        self.errors = list(errors)
        self.result = result if result is not None else {"ok": True}
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class RefreshRecorder:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1


def throttled():
    return ServiceError("Rate exceeded", status_code=400, name="ProvisionedThroughputExceededException")


class TestExponentialBackoffRetryPolicy:
    """Tests for ExponentialBackoffRetryPolicy."""

    @pytest.fixture
    def sleep(self):
        return SleepRecorder()

    @pytest.fixture
    def refresh(self):
        return RefreshRecorder()

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt()

        assert await policy.run(attempt, refresh) == {"ok": True}
        assert attempt.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_backoff_doubles(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(initial_retry_ms=50, sleep=sleep)
        attempt = ScriptedAttempt(
            TransportError("reset", code="ECONNRESET"),
            TransportError("reset", code="ECONNRESET"),
            TransportError("reset", code="ECONNRESET"),
        )

        await policy.run(attempt, refresh)

        assert attempt.calls == 4
        assert sleep.delays == [0.05, 0.1, 0.2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, sleep, refresh):
        """max_retries=3 means four attempts in total."""
        policy = ExponentialBackoffRetryPolicy(max_retries=3, sleep=sleep)
        attempt = ScriptedAttempt(*[throttled() for _ in range(10)])

        with pytest.raises(ServiceError) as exc_info:
            await policy.run(attempt, refresh)

        assert exc_info.value.name == "ProvisionedThroughputExceededException"
        assert attempt.calls == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_zero_retries(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(max_retries=0, sleep=sleep)
        attempt = ScriptedAttempt(TransportError("reset", code="ECONNRESET"))

        with pytest.raises(TransportError):
            await policy.run(attempt, refresh)
        assert attempt.calls == 1

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt(
            ServiceError("HTTP/1.1 503 Service Unavailable", status_code=503),
            ServiceError("boom", status_code=500, name="InternalFailure"),
        )

        await policy.run(attempt, refresh)
        assert attempt.calls == 3

    @pytest.mark.asyncio
    async def test_throttling_is_retried(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt(
            throttled(),
            ServiceError("slow down", status_code=400, name="ThrottlingException"),
        )

        await policy.run(attempt, refresh)
        assert attempt.calls == 3

    @pytest.mark.asyncio
    async def test_client_error_is_terminal(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt(
            ServiceError("bad", status_code=400, name="ValidationException")
        )

        with pytest.raises(ServiceError):
            await policy.run(attempt, refresh)
        assert attempt.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unknown_transport_code_is_terminal(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt(TransportError("odd", code="EREQUEST"))

        with pytest.raises(TransportError):
            await policy.run(attempt, refresh)
        assert attempt.calls == 1

    @pytest.mark.asyncio
    async def test_protocol_error_is_terminal(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt(ProtocolError("not json", action="ListStreams"))

        with pytest.raises(ProtocolError):
            await policy.run(attempt, refresh)
        assert attempt.calls == 1

    @pytest.mark.asyncio
    async def test_expired_credentials_refresh_once(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt(
            ServiceError("expired", status_code=400, name="ExpiredTokenException")
        )

        assert await policy.run(attempt, refresh) == {"ok": True}
        assert refresh.calls == 1
        assert attempt.calls == 2
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_attempt_after_refresh_is_final(self, sleep, refresh):
        """A failure right after a refresh is not retried."""
        policy = ExponentialBackoffRetryPolicy(sleep=sleep)
        attempt = ScriptedAttempt(
            ServiceError("expired", status_code=400, name="ExpiredTokenException"),
            TransportError("reset", code="ECONNRESET"),
        )

        with pytest.raises(TransportError):
            await policy.run(attempt, refresh)
        assert attempt.calls == 2
        assert refresh.calls == 1

    @pytest.mark.asyncio
    async def test_custom_error_names(self, sleep, refresh):
        policy = ExponentialBackoffRetryPolicy(error_names={"LimitExceededException"}, sleep=sleep)
        attempt = ScriptedAttempt(
            ServiceError("limit", status_code=400, name="LimitExceededException")
        )

        await policy.run(attempt, refresh)
        assert attempt.calls == 2

    def test_delay_ms(self):
        policy = ExponentialBackoffRetryPolicy(initial_retry_ms=50)
        assert [policy.delay_ms(i) for i in range(4)] == [50, 100, 200, 400]
