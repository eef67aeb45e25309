"""Tests for the retry policy and its executor."""

from __future__ import annotations

import pytest

from repolens.errors import (
    ContentError,
    FailureKind,
    RateLimitError,
    RequestError,
    RetryExhaustedError,
    TransientError,
)
from repolens.llm.retry import RetryPolicy, execute


def scripted(*outcomes):
    """Attempt function replaying *outcomes*; records the models called."""
    calls: list[str] = []
    remaining = list(outcomes)

    async def attempt(model: str):
        calls.append(model)
        outcome = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return attempt, calls


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------

class TestRetryPolicy:
    def test_requires_candidates(self):
        with pytest.raises(ValueError):
            RetryPolicy(candidates=())

    def test_requires_positive_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(candidates=("m",), max_attempts=0)

    def test_backoff_is_exponential_and_capped(self):
        policy = RetryPolicy(candidates=("m",), base_delay=1.0, max_delay=5.0)
        assert policy.backoff(1) == 2.0
        assert policy.backoff(2) == 4.0
        assert policy.backoff(3) == 5.0

    def test_total_attempts(self):
        assert RetryPolicy(candidates=("a", "b"), max_attempts=3).total_attempts == 6

    def test_with_candidates_keeps_settings(self):
        policy = RetryPolicy(candidates=("a",), max_attempts=4, min_delay=2.0)
        other = policy.with_candidates(["x", "y"])
        assert other.candidates == ("x", "y")
        assert other.max_attempts == 4
        assert other.min_delay == 2.0


# ---------------------------------------------------------------------------
# execute()
# ---------------------------------------------------------------------------

class TestExecute:
    @pytest.mark.asyncio
    async def test_first_success(self, clock):
        attempt, calls = scripted("ok")
        result = await execute(RetryPolicy(candidates=("a", "b")), attempt, sleep=clock.sleep)
        assert result == "ok"
        assert calls == ["a"]
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_rate_limit_retries_same_model_with_retry_after(self, clock):
        attempt, calls = scripted(RateLimitError(retry_after=7), "ok")
        policy = RetryPolicy(candidates=("a", "b"), max_attempts=2)
        assert await execute(policy, attempt, sleep=clock.sleep) == "ok"
        assert calls == ["a", "a"]
        assert clock.sleeps == [7]

    @pytest.mark.asyncio
    async def test_rate_limit_without_hint_uses_backoff(self, clock):
        attempt, calls = scripted(RateLimitError(), "ok")
        policy = RetryPolicy(candidates=("a",), max_attempts=2, base_delay=1.0)
        await execute(policy, attempt, sleep=clock.sleep)
        assert clock.sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_min_delay_is_a_floor(self, clock):
        attempt, _ = scripted(TransientError("503"), "ok")
        policy = RetryPolicy(candidates=("a",), max_attempts=2, base_delay=0.1, min_delay=3.5)
        await execute(policy, attempt, sleep=clock.sleep)
        assert clock.sleeps == [3.5]

    @pytest.mark.asyncio
    async def test_request_error_advances_immediately(self, clock):
        attempt, calls = scripted(RequestError("unknown model", status=404), "ok")
        policy = RetryPolicy(candidates=("a", "b"), max_attempts=3)
        assert await execute(policy, attempt, sleep=clock.sleep) == "ok"
        assert calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_content_error_capped(self, clock):
        attempt, calls = scripted(ContentError("blocked", FailureKind.SAFETY), "ok")
        policy = RetryPolicy(candidates=("a", "b"), max_attempts=3, content_attempts=1)
        assert await execute(policy, attempt, sleep=clock.sleep) == "ok"
        assert calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_content_attempts_per_model(self, clock):
        attempt, calls = scripted(
            ContentError("empty"),
            ContentError("empty"),
            "ok",
        )
        policy = RetryPolicy(candidates=("a", "b"), max_attempts=3, content_attempts=2)
        assert await execute(policy, attempt, sleep=clock.sleep) == "ok"
        assert calls == ["a", "a", "b"]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_with_last_kind(self, clock):
        attempt, calls = scripted(RateLimitError())
        policy = RetryPolicy(candidates=("a", "b"), max_attempts=2)
        with pytest.raises(RetryExhaustedError) as info:
            await execute(policy, attempt, sleep=clock.sleep)
        assert info.value.kind == FailureKind.RATE_LIMIT
        assert info.value.attempts == 4
        assert calls == ["a", "a", "b", "b"]
        assert len(calls) == policy.total_attempts

    @pytest.mark.asyncio
    async def test_fallback_receives_exhaustion(self, clock):
        attempt, _ = scripted(TransientError("down"))
        policy = RetryPolicy(candidates=("a",), max_attempts=2)
        result = await execute(
            policy, attempt, fallback=lambda exc: f"fallback:{exc.kind.value}", sleep=clock.sleep,
        )
        assert result == "fallback:transient"

    @pytest.mark.asyncio
    async def test_unexpected_exception_treated_as_transient(self, clock):
        attempt, calls = scripted(KeyError("x"), "ok")
        policy = RetryPolicy(candidates=("a",), max_attempts=2)
        assert await execute(policy, attempt, sleep=clock.sleep) == "ok"
        assert calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_model_switch_waits_min_delay(self, clock):
        attempt, _ = scripted(RequestError("bad", status=400), "ok")
        policy = RetryPolicy(candidates=("a", "b"), min_delay=3.5)
        await execute(policy, attempt, sleep=clock.sleep)
        assert clock.sleeps == [3.5]
