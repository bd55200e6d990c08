"""
Superseding task runner.

Runs at most one job of a kind at a time. Starting a job while an earlier one
is in flight cancels the earlier task; its caller receives None instead of a
result. Every run gets a generation number so a job can check, right before
publishing shared state, that it has not been superseded.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SupersedingRunner:
    """Cancellable single-flight runner for scans and bulk repairs."""

    def __init__(self, name: str):
        self.name = name
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def run(self, job: Callable[[int], Awaitable[T]]) -> Optional[T]:
        """
        Run job(generation), superseding any outstanding run.

        Returns the job's result, or None when a newer run superseded this one.
        Cancelling the caller itself still propagates CancelledError.
        """
        self._generation += 1
        generation = self._generation

        previous = self._task
        if previous is not None and not previous.done():
            logger.info(f"{self.name}: superseding run {generation - 1}")
            previous.cancel()

        task = asyncio.ensure_future(job(generation))
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if not self.is_current(generation):
                logger.info(f"{self.name}: run {generation} discarded")
                return None
            raise
        finally:
            if self._task is task and task.done():
                self._task = None

        if not self.is_current(generation):
            logger.info(f"{self.name}: run {generation} finished after being superseded, result discarded")
            return None
        return result
