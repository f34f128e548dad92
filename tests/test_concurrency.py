"""Tests for CancelToken, wait_cancellable, the FIFO Semaphore and map_in_parallel."""

from __future__ import annotations

import asyncio
import random

import pytest

from chunkscribe.domain.errors import PipelineCancelled
from chunkscribe.use_cases.concurrency import (
    CancelToken, Semaphore, map_in_parallel, sleep_cancellable, wait_cancellable,
)


# ---------------------------------------------------------------------------
# CancelToken / wait_cancellable
# ---------------------------------------------------------------------------


class TestCancelToken:
    def test_cancel_is_idempotent_and_keeps_first_reason(self) -> None:
        async def scenario() -> CancelToken:
            token = CancelToken()
            token.cancel("first")
            token.cancel("second")
            return token

        token = asyncio.run(scenario())
        assert token.cancelled
        assert token.reason == "first"

    def test_raise_if_cancelled(self) -> None:
        async def scenario() -> None:
            token = CancelToken()
            token.raise_if_cancelled()
            token.cancel("stop")
            with pytest.raises(PipelineCancelled):
                token.raise_if_cancelled()

        asyncio.run(scenario())


class TestWaitCancellable:
    def test_returns_value_when_not_cancelled(self) -> None:
        async def work() -> int:
            await asyncio.sleep(0.01)
            return 42

        async def scenario() -> int:
            return await wait_cancellable(work(), CancelToken())

        assert asyncio.run(scenario()) == 42

    def test_cancel_abandons_the_awaitable(self) -> None:
        state = {"interrupted": False}

        async def slow() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                state["interrupted"] = True
                raise

        async def scenario() -> None:
            token = CancelToken()
            asyncio.get_running_loop().call_later(0.02, token.cancel, "user")
            with pytest.raises(PipelineCancelled):
                await asyncio.wait_for(wait_cancellable(slow(), token), timeout=2)
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        asyncio.run(scenario())
        assert state["interrupted"]

    def test_already_cancelled_token_raises_immediately(self) -> None:
        async def scenario() -> None:
            token = CancelToken()
            token.cancel()
            with pytest.raises(PipelineCancelled):
                await wait_cancellable(asyncio.sleep(10), token)

        asyncio.run(scenario())

    def test_sleep_cancellable_wakes_on_cancel(self) -> None:
        async def scenario() -> float:
            loop = asyncio.get_running_loop()
            token = CancelToken()
            loop.call_later(0.02, token.cancel)
            started = loop.time()
            with pytest.raises(PipelineCancelled):
                await sleep_cancellable(10, token)
            return loop.time() - started

        assert asyncio.run(scenario()) < 1.0


# ---------------------------------------------------------------------------
# Semaphore
# ---------------------------------------------------------------------------


class TestSemaphore:
    def test_rejects_non_positive_limit(self) -> None:
        with pytest.raises(ValueError):
            Semaphore(0)

    def test_never_exceeds_limit_under_random_load(self) -> None:
        rng = random.Random(7)
        delays = [rng.uniform(0, 0.01) for _ in range(40)]

        async def scenario() -> tuple[int, int]:
            sem = Semaphore(3, "test")
            state = {"active": 0, "peak": 0, "done": 0}

            async def job(delay: float) -> None:
                async with sem.slot():
                    state["active"] += 1
                    state["peak"] = max(state["peak"], state["active"])
                    assert sem.active <= 3
                    await asyncio.sleep(delay)
                    state["active"] -= 1
                state["done"] += 1

            await asyncio.gather(*(job(d) for d in delays))
            assert sem.active == 0
            return state["peak"], state["done"]

        peak, done = asyncio.run(scenario())
        assert peak <= 3
        assert done == 40

    def test_waiters_are_served_in_arrival_order(self) -> None:
        async def scenario() -> list[str]:
            sem = Semaphore(1)
            order: list[str] = []
            await sem.acquire()

            async def job(name: str) -> None:
                async with sem.slot():
                    order.append(name)

            tasks = []
            for name in ("a", "b", "c"):
                tasks.append(asyncio.create_task(job(name)))
                await asyncio.sleep(0)
            assert sem.waiting == 3
            sem.release()
            await asyncio.gather(*tasks)
            return order

        assert asyncio.run(scenario()) == ["a", "b", "c"]

    def test_cancelled_waiter_does_not_leak_a_slot(self) -> None:
        async def scenario() -> Semaphore:
            sem = Semaphore(1)
            token = CancelToken()
            await sem.acquire()

            waiter = asyncio.create_task(sem.acquire(token))
            await asyncio.sleep(0)
            assert sem.waiting == 1
            token.cancel()
            with pytest.raises(PipelineCancelled):
                await waiter
            assert sem.waiting == 0

            sem.release()
            assert sem.active == 0
            await asyncio.wait_for(sem.acquire(), timeout=1)
            sem.release()
            return sem

        assert asyncio.run(scenario()).active == 0

    def test_acquire_after_cancel_raises(self) -> None:
        async def scenario() -> None:
            sem = Semaphore(2)
            token = CancelToken()
            token.cancel()
            with pytest.raises(PipelineCancelled):
                await sem.acquire(token)
            assert sem.active == 0

        asyncio.run(scenario())

    def test_release_without_acquire_raises(self) -> None:
        with pytest.raises(RuntimeError):
            Semaphore(1).release()


# ---------------------------------------------------------------------------
# map_in_parallel
# ---------------------------------------------------------------------------


class TestMapInParallel:
    def test_results_keep_input_order(self) -> None:
        async def fn(item: int, position: int) -> int:
            await asyncio.sleep(0.002 * (10 - item))
            return item * 10

        result = asyncio.run(map_in_parallel(range(10), 4, fn))
        assert result == [i * 10 for i in range(10)]

    def test_limits_in_flight_invocations(self) -> None:
        state = {"active": 0, "peak": 0}

        async def fn(item: int, position: int) -> None:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.005)
            state["active"] -= 1

        asyncio.run(map_in_parallel(range(12), 3, fn))
        assert state["peak"] == 3

    def test_empty_input(self) -> None:
        async def fn(item: int, position: int) -> int:
            return item

        assert asyncio.run(map_in_parallel([], 3, fn)) == []

    def test_first_error_raised_after_in_flight_items_settle(self) -> None:
        started: list[int] = []
        finished: list[int] = []

        async def fn(item: int, position: int) -> int:
            started.append(position)
            if position == 1:
                raise ValueError("boom")
            await asyncio.sleep(0.02)
            finished.append(position)
            return item

        with pytest.raises(ValueError, match="boom"):
            asyncio.run(map_in_parallel(range(6), 2, fn))
        assert started == [0, 1]
        assert finished == [0]

    def test_cancel_stops_dispatch(self) -> None:
        started: list[int] = []

        async def scenario() -> None:
            token = CancelToken()

            async def fn(item: int, position: int) -> int:
                started.append(position)
                if position == 1:
                    token.cancel("stop")
                await asyncio.sleep(0.01)
                return item

            await map_in_parallel(range(10), 2, fn, token)

        with pytest.raises(PipelineCancelled):
            asyncio.run(scenario())
        assert sorted(started) == [0, 1]

    def test_invalid_limit(self) -> None:
        async def fn(item: int, position: int) -> int:
            return item

        with pytest.raises(ValueError):
            asyncio.run(map_in_parallel([1], 0, fn))
