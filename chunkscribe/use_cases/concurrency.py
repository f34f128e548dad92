"""Cooperative concurrency primitives for the chunk pipeline.

CancelToken carries the run-wide abort signal. wait_cancellable is the one
place where a wait is raced against it; the semaphore, the shared futures,
retry backoff and the inference adapters all go through it.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, TypeVar

from chunkscribe.domain.errors import PipelineCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancelToken:
    """Run-scoped cancellation signal. Fires at most once."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by user") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        logger.info(f"Cancellation requested: {reason}")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


def _discard(task: "asyncio.Future[Any]") -> None:
    """Cancel an abandoned awaitable and retrieve its outcome so nothing is logged as lost."""
    def _consume(fut: "asyncio.Future[Any]") -> None:
        if not fut.cancelled():
            fut.exception()

    task.cancel()
    task.add_done_callback(_consume)


async def wait_cancellable(awaitable: Awaitable[T], cancel: Optional[CancelToken] = None) -> T:
    """Await awaitable unless cancel fires first.

    On cancellation the awaitable is cancelled and PipelineCancelled is raised.
    Wrap shared tasks in asyncio.shield() so only this waiter is abandoned.
    """
    if cancel is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if cancel.cancelled:
        _discard(task)
        raise PipelineCancelled(cancel.reason or "cancelled")

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        _discard(task)
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()
    _discard(task)
    raise PipelineCancelled(cancel.reason or "cancelled")


async def sleep_cancellable(delay: float, cancel: Optional[CancelToken] = None) -> None:
    if delay <= 0:
        if cancel is not None:
            cancel.raise_if_cancelled()
        return
    await wait_cancellable(asyncio.sleep(delay), cancel)


class Semaphore:
    """FIFO counting semaphore with abandonable queued acquires.

    release() hands the slot straight to the oldest waiter, so late arrivals
    cannot overtake queued callers.
    """

    def __init__(self, limit: int, name: str = "semaphore"):
        if limit < 1:
            raise ValueError(f"Semaphore limit must be >= 1, got {limit}")
        self.limit = limit
        self.name = name
        self._active = 0
        self._waiters: deque = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self, cancel: Optional[CancelToken] = None) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        if self._active < self.limit and not self._waiters:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await wait_cancellable(waiter, cancel)
        except BaseException:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over before the caller gave up.
                self.release()
            else:
                waiter.cancel()
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self._active <= 0:
            raise RuntimeError(f"{self.name}: release() without a matching acquire()")
        self._active -= 1

    @asynccontextmanager
    async def slot(self, cancel: Optional[CancelToken] = None) -> AsyncIterator[None]:
        await self.acquire(cancel)
        try:
            yield
        finally:
            self.release()


async def map_in_parallel(
    items: Iterable[T],
    limit: int,
    fn: Callable[[T, int], Awaitable[R]],
    cancel: Optional[CancelToken] = None,
) -> list[R]:
    """Run fn(item, position) over items with at most `limit` invocations in flight.

    Results keep input order. Once cancel fires or an invocation raises, no
    new invocations start. After every in-flight invocation has settled the
    first error is raised and later ones are logged. If cancellation left items
    undispatched, PipelineCancelled is raised.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    pending = list(items)
    results: list = [None] * len(pending)
    errors: list[tuple[int, Exception]] = []
    next_position = 0

    async def worker() -> None:
        nonlocal next_position
        while next_position < len(pending):
            if errors or (cancel is not None and cancel.cancelled):
                return
            position = next_position
            next_position += 1
            try:
                results[position] = await fn(pending[position], position)
            except Exception as e:
                errors.append((position, e))

    workers = [asyncio.create_task(worker()) for _ in range(min(limit, len(pending)))]
    if workers:
        await asyncio.gather(*workers)

    if errors:
        _, first = errors[0]
        for position, error in errors[1:]:
            if isinstance(error, PipelineCancelled):
                continue
            logger.error(f"Parallel item {position} also failed: {error}", exc_info=error)
        raise first
    if cancel is not None and cancel.cancelled and next_position < len(pending):
        raise PipelineCancelled(cancel.reason or "cancelled")
    return results
