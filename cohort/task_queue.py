"""Per-agent serialization domain.

Every mutation of an agent's memory (decision ticks, inbound messages,
heartbeats) runs through one ``TaskQueue``. The queue holds an
``asyncio.Lock``; tasks acquire it in FIFO order, so at most one of them is
ever between "read memory" and "persist memory" for a given agent.

Periodic work is *not* stacked: if the previous firing of a timer is still
queued or running when the interval elapses again, that firing is skipped.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Set, TypeVar

from cohort.logging_utils import log_error


T = TypeVar("T")
TaskFn = Callable[[], Awaitable[T]]


class TaskQueue:
    """FIFO, one-at-a-time execution of async callables."""

    def __init__(self, name: str = "queue") -> None:
        self.name = name
        self._lock = asyncio.Lock()
        self._timers: List[asyncio.Task] = []
        self._inflight: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def busy(self) -> bool:
        """True while a task holds the queue."""
        return self._lock.locked()

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def run(self, fn: TaskFn[T]) -> T:
        """Wait for the queue, then run ``fn`` exclusively and return its result."""
        async with self._lock:
            return await fn()

    def submit(self, fn: TaskFn[T]) -> asyncio.Task:
        """Schedule ``fn`` on the queue without waiting for it."""
        task = asyncio.create_task(self.run(fn))
        self._inflight.add(task)
        task.add_done_callback(self._on_done)
        return task

    def run_periodically(self, fn: TaskFn[object], interval: float) -> asyncio.Task:
        """Submit ``fn`` every ``interval`` seconds, skipping overlapping firings."""
        if interval <= 0:
            raise ValueError("interval must be positive")

        async def _timer() -> None:
            pending: Optional[asyncio.Task] = None
            while not self._stopped:
                await asyncio.sleep(interval)
                if pending is not None and not pending.done():
                    continue
                pending = self.submit(fn)

        timer = asyncio.create_task(_timer())
        self._timers.append(timer)
        return timer

    async def stop(self) -> None:
        """Cancel timers and any queued or running tasks.

        Safe to call from inside a queued task; the calling task is left to
        finish on its own.
        """
        self._stopped = True
        current = asyncio.current_task()
        pending = [t for t in [*self._timers, *self._inflight] if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._timers.clear()

    async def drain(self) -> None:
        """Wait until every submitted task has finished."""
        current = asyncio.current_task()
        while True:
            pending = [t for t in self._inflight if t is not current and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_error(f"[{self.name}] Task failed: {type(exc).__name__}: {exc}")
