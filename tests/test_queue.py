"""Tests for the process-wide request queue."""

from __future__ import annotations

import asyncio

import pytest

from repolens.llm.queue import RequestQueue, get_default_queue, reset_default_queue


def recorder(clock, log: list, name: str, result=None, exc: Exception | None = None, yields: int = 0):
    async def operation():
        log.append((name, clock()))
        for _ in range(yields):
            await asyncio.sleep(0)
        if exc is not None:
            raise exc
        return result
    return operation


class TestRequestQueue:
    @pytest.mark.asyncio
    async def test_results_returned(self, queue, clock):
        log: list = []
        task = queue.schedule(recorder(clock, log, "a", result=42))
        assert await task == 42

    @pytest.mark.asyncio
    async def test_fifo_order(self, queue, clock):
        log: list = []
        tasks = [
            queue.schedule(recorder(clock, log, "slow", yields=5)),
            queue.schedule(recorder(clock, log, "fast")),
            queue.schedule(recorder(clock, log, "last", yields=2)),
        ]
        await asyncio.gather(*tasks)
        assert [name for name, _ in log] == ["slow", "fast", "last"]

    @pytest.mark.asyncio
    async def test_minimum_spacing_between_starts(self, queue, clock):
        log: list = []
        tasks = [queue.schedule(recorder(clock, log, str(i))) for i in range(4)]
        await asyncio.gather(*tasks)
        starts = [t for _, t in log]
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= queue.min_interval for gap in gaps)
        assert starts[0] == 1000.0

    @pytest.mark.asyncio
    async def test_no_wait_when_interval_already_elapsed(self, queue, clock):
        log: list = []
        await queue.schedule(recorder(clock, log, "a"))
        clock.now += 10
        await queue.schedule(recorder(clock, log, "b"))
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_partial_wait(self, queue, clock):
        log: list = []
        await queue.schedule(recorder(clock, log, "a"))
        clock.now += 1.5
        await queue.schedule(recorder(clock, log, "b"))
        assert clock.sleeps == [pytest.approx(2.0)]

    @pytest.mark.asyncio
    async def test_failure_does_not_block_successors(self, queue, clock):
        log: list = []
        failing = queue.schedule(recorder(clock, log, "boom", exc=RuntimeError("boom")))
        ok = queue.schedule(recorder(clock, log, "ok", result="fine"))
        with pytest.raises(RuntimeError):
            await failing
        assert await ok == "fine"
        assert [name for name, _ in log] == ["boom", "ok"]

    @pytest.mark.asyncio
    async def test_pending_count(self, queue, clock):
        log: list = []
        tasks = [queue.schedule(recorder(clock, log, str(i))) for i in range(3)]
        assert queue.pending == 3
        await asyncio.gather(*tasks)
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_spacing_shared_across_callers(self, clock):
        shared = RequestQueue(2.0, clock=clock, sleep=clock.sleep)
        log: list = []

        async def caller(prefix: str):
            for i in range(2):
                await shared.schedule(recorder(clock, log, f"{prefix}{i}"))

        await asyncio.gather(caller("x"), caller("y"))
        starts = sorted(t for _, t in log)
        assert all(b - a >= 2.0 for a, b in zip(starts, starts[1:]))


class TestPace:
    @pytest.mark.asyncio
    async def test_first_call_of_slot_does_not_wait(self, queue, clock):
        async def operation():
            await queue.pace()
            return clock()

        assert await queue.schedule(operation) == 1000.0
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_every_call_in_a_slot_is_spaced(self, queue, clock):
        calls: list[float] = []

        async def three_calls():
            for _ in range(3):
                await queue.pace()
                calls.append(clock())

        await queue.schedule(three_calls)
        assert calls == [1000.0, 1003.5, 1007.0]

    @pytest.mark.asyncio
    async def test_next_slot_measured_from_last_call(self, queue, clock):
        calls: list[float] = []

        async def two_calls():
            for _ in range(2):
                await queue.pace()
                calls.append(clock())

        async def one_call():
            await queue.pace()
            calls.append(clock())

        await asyncio.gather(queue.schedule(two_calls), queue.schedule(one_call))
        assert calls == [1000.0, 1003.5, 1007.0]


class TestDefaultQueue:
    def test_singleton_until_reset(self):
        reset_default_queue()
        first = get_default_queue()
        assert get_default_queue() is first
        reset_default_queue()
        assert get_default_queue() is not first
        reset_default_queue()
