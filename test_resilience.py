"""
Tests for the error taxonomy, retry with backoff, circuit breakers and the
resilient LLM wrapper.
"""

import asyncio

import pytest

from agent import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
    FatalError,
    ResilientLLM,
    RetryOptions,
    RunInterruptedError,
    ToolError,
    TransientError,
    ValidationError,
    classify_error,
    retry_with_backoff,
)
from agent.cancellation import CancellationToken
from agent.errors import error_from_status, get_retry_delay, is_retryable_error
from conftest import FakeLLM, text_response


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Flaky:
    """Fails with the queued errors, then returns `result`."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def recording_sleep():
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    return delays, sleep


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class TestErrors:
    def test_error_from_status(self):
        assert isinstance(error_from_status(401, "x"), FatalError)
        assert isinstance(error_from_status(403, "x"), FatalError)
        assert isinstance(error_from_status(400, "x"), FatalError)
        rate = error_from_status(429, "slow down", retry_after=12)
        assert isinstance(rate, TransientError)
        assert rate.retry_after == 12
        assert "Rate limit exceeded" in str(rate)
        server = error_from_status(503, "down")
        assert isinstance(server, TransientError)
        assert "Service error (503)" in str(server)
        assert "Network error" in str(error_from_status(0, "reset"))

    def test_classify(self):
        assert classify_error(FatalError("no")).kind == "fatal"
        assert classify_error(TransientError("later", retry_after=3)).retry_after == 3
        assert classify_error(ToolError("bad path")).kind == "tool"
        validation = classify_error(ValidationError("failed", violations=["lint"]))
        assert validation.kind == "validation"
        assert validation.details["violations"] == ["lint"]
        assert classify_error(ConnectionError("connection reset by peer")).kind == "transient"
        assert classify_error(KeyError("x")).kind == "fatal"

    def test_retryable_and_delay(self):
        assert is_retryable_error(TransientError("x"))
        assert not is_retryable_error(ToolError("timeout"))
        assert is_retryable_error(OSError("Request timed out"))
        assert get_retry_delay(TransientError("x", retry_after=7)) == 7
        assert get_retry_delay(RuntimeError("Rate limit hit")) == 60.0
        assert get_retry_delay(RuntimeError("other")) == 1.0

    def test_circuit_open_message(self):
        err = CircuitOpenError("bedrock", 29.2)
        assert "Circuit breaker is OPEN for bedrock" in str(err)
        assert "Retry in 30s" in str(err)
        assert err.to_dict()["code"] == "circuit_open"


# ---------------------------------------------------------------------------
# Retry with backoff
# ---------------------------------------------------------------------------

class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        op = Flaky(TransientError("Rate limit exceeded"), TransientError("Service unavailable"))
        delays, sleep = recording_sleep()

        result = await retry_with_backoff(op, RetryOptions(), sleep=sleep)

        assert result == "ok"
        assert op.calls == 3
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        op = Flaky(ValueError("invalid input"))
        delays, sleep = recording_sleep()

        with pytest.raises(ValueError):
            await retry_with_backoff(op, RetryOptions(), sleep=sleep)

        assert op.calls == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        op = Flaky(*[TransientError(f"timeout {i}") for i in range(10)])
        delays, sleep = recording_sleep()

        with pytest.raises(TransientError, match="timeout 3"):
            await retry_with_backoff(op, RetryOptions(max_retries=3), sleep=sleep)

        assert op.calls == 4
        assert delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_delay_capped_and_retry_after_honoured(self):
        op = Flaky(
            TransientError("Rate limit exceeded", retry_after=30),
            TransientError("Rate limit exceeded", retry_after=3),
            TransientError("timeout"),
        )
        delays, sleep = recording_sleep()

        await retry_with_backoff(op, RetryOptions(max_delay=10.0), sleep=sleep)

        assert delays == [10.0, 3.0, 4.0]

    def test_options_from_config(self, agent_cfg):
        opts = RetryOptions.from_config(agent_cfg)
        assert opts.max_retries == agent_cfg.retry_max_retries
        assert opts.is_retryable(RuntimeError("ECONNRESET"))
        assert not opts.is_retryable(RuntimeError("bad request"))


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

class TestCircuitBreaker:
    def make(self, clock, **kwargs):
        cfg = CircuitBreakerConfig(**{"failure_threshold": 3, "success_threshold": 2,
                                      "timeout": 5.0, "reset_timeout": 60.0, **kwargs})
        return CircuitBreaker("bedrock", cfg, clock=clock)

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_rejects_without_calling(self):
        clock = FakeClock()
        breaker = self.make(clock)
        failing = Flaky(*[RuntimeError("boom")] * 3)

        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(failing)
        assert breaker.state == CircuitState.OPEN

        trial = Flaky()
        with pytest.raises(CircuitOpenError):
            await breaker.execute(trial)
        assert trial.calls == 0

    @pytest.mark.asyncio
    async def test_half_open_closes_after_successes(self):
        clock = FakeClock()
        breaker = self.make(clock)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(Flaky(RuntimeError("boom")))

        clock.advance(61)
        assert await breaker.execute(Flaky()) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.execute(Flaky()) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failure_in_half_open_reopens(self):
        clock = FakeClock()
        breaker = self.make(clock)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(Flaky(RuntimeError("boom")))

        clock.advance(61)
        with pytest.raises(RuntimeError):
            await breaker.execute(Flaky(RuntimeError("still down")))

        assert breaker.state == CircuitState.OPEN
        assert breaker.next_attempt_at == clock.now + 60.0

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = self.make(FakeClock())
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.execute(Flaky(RuntimeError("boom")))
        await breaker.execute(Flaky())

        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_call_timeout_counts_as_failure(self):
        breaker = self.make(FakeClock(), timeout=0.05, failure_threshold=1)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(TransientError, match="Operation timeout"):
            await breaker.execute(slow)
        assert breaker.state == CircuitState.OPEN

    def test_registry_shares_breakers(self):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2))
        a = registry.get("bedrock")
        assert registry.get("bedrock") is a
        assert a.config.failure_threshold == 2
        custom = registry.get("other", failure_threshold=9)
        assert custom.config.failure_threshold == 9

        a.state = CircuitState.OPEN
        registry.reset_all()
        assert a.state == CircuitState.CLOSED
        assert set(registry.stats()) == {"bedrock", "other"}


# ---------------------------------------------------------------------------
# Resilient LLM
# ---------------------------------------------------------------------------

class TestResilientLLM:
    @pytest.mark.asyncio
    async def test_retries_through_breaker(self):
        provider = FakeLLM([TransientError("Service error (503): down"), text_response("hello")])
        registry = CircuitBreakerRegistry()
        llm = ResilientLLM(provider, registry, RetryOptions(initial_delay=0.001, max_delay=0.001))

        response = await llm.step([{"role": "user", "content": "hi"}], "m")

        assert response.text == "hello"
        assert len(provider.calls) == 2
        stats = registry.stats()["fake"]
        assert stats["state"] == "CLOSED"
        assert stats["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        provider = FakeLLM([FatalError("Authentication failed: expired")])
        llm = ResilientLLM(provider, CircuitBreakerRegistry(), RetryOptions(initial_delay=0.001))

        with pytest.raises(FatalError):
            await llm.step([{"role": "user", "content": "hi"}], "m")
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1, reset_timeout=60))
        provider = FakeLLM([RuntimeError("boom")])
        llm = ResilientLLM(provider, registry, RetryOptions(max_retries=0))

        with pytest.raises(RuntimeError):
            await llm.step([], "m")
        with pytest.raises(CircuitOpenError):
            await llm.step([], "m")
        assert len(provider.calls) == 1


class TestCancellationGuard:
    @pytest.mark.asyncio
    async def test_guard_returns_result(self):
        token = CancellationToken()

        async def work():
            return 42

        assert await token.guard(work()) == 42

    @pytest.mark.asyncio
    async def test_guard_abandons_work_on_cancel(self):
        token = CancellationToken()
        inner = asyncio.ensure_future(asyncio.sleep(30))
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        with pytest.raises(RunInterruptedError):
            await token.guard(inner)
        await asyncio.sleep(0)
        assert inner.cancelled()

    @pytest.mark.asyncio
    async def test_guard_cancels_work_when_caller_is_cancelled(self):
        token = CancellationToken()
        inner = asyncio.ensure_future(asyncio.sleep(30))
        outer = asyncio.ensure_future(token.guard(inner))
        await asyncio.sleep(0.05)

        outer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await outer
        await asyncio.sleep(0)
        assert inner.cancelled()
        assert not token.cancelled
