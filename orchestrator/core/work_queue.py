# orchestrator/core/work_queue.py
# @ai-rules:
# 1. [Constraint]: At most `concurrency` tasks in flight. Slot released in finally, success or failure.
# 2. [Pattern]: FIFO start order. Completion order is whatever the tasks take.
# 3. [Constraint]: No lock needed -- single asyncio event loop. add() is synchronous and non-blocking.
# 4. [Gotcha]: Exceptions from a task land on its Future. The queue itself never raises from a task.
"""
WorkQueue -- bounded-concurrency FIFO of coroutine factories.

    queue = WorkQueue("voice", concurrency=1)
    future = queue.add(lambda: speak(text))
    await queue.on_idle()
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from .errors import QueueClosedError

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class WorkQueue:
    """Runs zero-argument coroutine factories, `concurrency` at a time."""

    def __init__(self, name: str, concurrency: int = 1) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.name = name
        self.concurrency = concurrency
        self._waiting: deque[tuple[TaskFactory, asyncio.Future]] = deque()
        self._running: set[asyncio.Task] = set()
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def size(self) -> int:
        """Queued, not yet started."""
        return len(self._waiting)

    @property
    def pending(self) -> int:
        """In flight."""
        return len(self._running)

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, factory: TaskFactory) -> asyncio.Future:
        """Submit a task. Returns a Future resolved with the task's result or exception."""
        if self._closed:
            raise QueueClosedError(self.name)
        future = asyncio.get_running_loop().create_future()
        self._waiting.append((factory, future))
        self._idle.clear()
        self._pump()
        return future

    def _pump(self) -> None:
        while self._waiting and len(self._running) < self.concurrency:
            factory, future = self._waiting.popleft()
            if future.cancelled():
                continue
            task = asyncio.create_task(self._run(factory, future))
            self._running.add(task)
            task.add_done_callback(self._on_task_done)
        if not self._waiting and not self._running:
            self._idle.set()

    async def _run(self, factory: TaskFactory, future: asyncio.Future) -> None:
        # The slot is freed before the future resolves so counts agree with what callers observe.
        try:
            result = await factory()
        except asyncio.CancelledError:
            self._release(asyncio.current_task())
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            self._release(asyncio.current_task())
            if not future.done():
                future.set_exception(e)
        else:
            self._release(asyncio.current_task())
            if not future.done():
                future.set_result(result)

    def _release(self, task: Optional[asyncio.Task]) -> None:
        if task in self._running:
            self._running.discard(task)
            self._pump()

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Covers tasks cancelled before their first step.
        self._release(task)

    async def on_idle(self) -> None:
        """Wait until nothing is queued or in flight."""
        await self._idle.wait()

    def close(self) -> None:
        """Stop accepting submissions. Already-queued tasks still run."""
        if not self._closed:
            self._closed = True
            logger.info(f"Queue {self.name} closed ({self.size} queued, {self.pending} in flight)")
