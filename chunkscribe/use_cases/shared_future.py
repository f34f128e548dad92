"""SharedFuture — a value computed once and awaited by many chunk tasks.

Used for the run glossary and the speaker profile set. The producer runs in
its own task; consumers wait on a shield of that task so an abandoned wait
never cancels the producer. A failing producer resolves to the default.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from chunkscribe.domain.errors import PipelineCancelled
from chunkscribe.use_cases.concurrency import CancelToken, wait_cancellable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SharedFuture(Generic[T]):
    def __init__(self, producer: Optional[Callable[[], Awaitable[T]]], default: T, name: str = "shared"):
        self._producer = producer
        self._default = default
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._ready = False
        self._value: T = default
        self.error: Optional[BaseException] = None

    @classmethod
    def resolved(cls, value: T, name: str = "shared") -> "SharedFuture[T]":
        """A future that is ready from the start, for disabled producers."""
        future = cls(None, value, name)
        future._value = value
        future._ready = True
        return future

    def start(self) -> Optional[asyncio.Task]:
        """Launch the producer if it has not been launched. Idempotent."""
        if self._task is None and not self._ready:
            self._task = asyncio.create_task(self._run(), name=f"shared-future:{self.name}")
        return self._task

    async def _run(self) -> T:
        try:
            value = await self._producer()
        except PipelineCancelled as e:
            logger.info(f"{self.name}: producer cancelled, publishing default")
            value, self.error = self._default, e
        except Exception as e:
            logger.warning(f"{self.name}: producer failed, publishing default: {e}", exc_info=True)
            value, self.error = self._default, e
        self._value = value
        self._ready = True
        return value

    async def get(self, cancel: Optional[CancelToken] = None) -> T:
        """Return the published value, waiting for the producer if needed."""
        if self._ready:
            return self._value
        task = self.start()
        return await wait_cancellable(asyncio.shield(task), cancel)

    def is_ready(self) -> bool:
        """Non-blocking peek for progress display. Consumers still call get()."""
        return self._ready

    async def settle(self) -> T:
        """Wait for the producer to finish, whatever the outcome."""
        task = self.start()
        if task is not None:
            await task
        return self._value
