"""
Detached background tasks for fire-and-forget side effects
(view tracking, confirmation emails, in-app notifications)
"""
from typing import Awaitable, Set
import asyncio
import logging

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """
    Runs coroutines as detached asyncio tasks.

    The caller never awaits the result; failures are logged here and never
    propagated. Strong references are kept until each task finishes so the
    event loop does not garbage-collect a running task.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        """Schedule a coroutine without waiting for it"""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def drain(self, timeout: float = 10.0):
        """Wait for outstanding tasks (shutdown and tests)"""
        if not self._tasks:
            return
        logger.info(f"Waiting for {len(self._tasks)} background task(s)...")
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            logger.warning(f"Cancelling background task {task.get_name()}")
            task.cancel()
