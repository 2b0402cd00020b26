from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCEL_GRACE_SECONDS = 1.0


@dataclass
class TaskOutcome(Generic[T]):
    done: bool
    result: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.done and self.error is None


async def _bounded(awaitable: Awaitable[T], semaphore: asyncio.Semaphore | None) -> T:
    if semaphore is None:
        return await awaitable
    async with semaphore:
        return await awaitable


async def gather_best_effort(
    awaitables: Iterable[Awaitable[Any]], timeout: float | None, limit: int | None = None
) -> list[TaskOutcome]:
    """Run awaitables concurrently (at most ``limit`` at a time) under one deadline.

    Returns one ``TaskOutcome`` per input, in input order. Whatever has not
    finished when the deadline passes is cancelled and reported with
    ``done=False``; exceptions are captured on the outcome instead of raised.
    """
    semaphore = asyncio.Semaphore(limit) if limit else None
    tasks = [asyncio.create_task(_bounded(item, semaphore)) for item in awaitables]
    if not tasks:
        return []

    try:
        done, pending = await asyncio.wait(tasks, timeout=timeout)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise

    if pending:
        logger.debug("[concurrency] abandoning %d unfinished task(s) at deadline", len(pending))
        for task in pending:
            task.cancel()
        await asyncio.wait(pending, timeout=CANCEL_GRACE_SECONDS)

    outcomes: list[TaskOutcome] = []
    for task in tasks:
        if task not in done or task.cancelled():
            outcomes.append(TaskOutcome(done=False))
        elif task.exception() is not None:
            outcomes.append(TaskOutcome(done=True, error=task.exception()))
        else:
            outcomes.append(TaskOutcome(done=True, result=task.result()))
    return outcomes
