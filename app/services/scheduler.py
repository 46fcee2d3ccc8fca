"""Bounded-concurrency runner for independent asynchronous lookups."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Literal, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskThunk = Callable[[], Awaitable[T]]


@dataclass(slots=True)
class TaskResult(Generic[T]):
    """Outcome of a single scheduled task, kept at the task's input index."""

    status: Literal["fulfilled", "rejected"]
    value: T | None = None
    reason: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status == "fulfilled"


async def run_bounded(
    tasks: Sequence[TaskThunk[T]],
    concurrency: int,
    *,
    timeout: float | None = None,
) -> list[TaskResult[T]]:
    """Run ``tasks`` with at most ``concurrency`` of them in flight.

    Every task runs to completion or failure independently; a failure is
    recorded as a ``rejected`` result and never cancels its siblings. The
    returned list has one entry per task, in input order. When ``timeout`` is
    given each task is abandoned after that many seconds and reported as
    rejected with a :class:`TimeoutError`.
    """

    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    if not tasks:
        return []

    semaphore = asyncio.Semaphore(concurrency)
    results: list[TaskResult[T] | None] = [None] * len(tasks)

    async def _run(index: int, task: TaskThunk[T]) -> None:
        async with semaphore:
            try:
                if timeout is None:
                    value = await task()
                else:
                    value = await asyncio.wait_for(task(), timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                results[index] = TaskResult(status="rejected", reason=exc)
            else:
                results[index] = TaskResult(status="fulfilled", value=value)

    await asyncio.gather(*(_run(index, task) for index, task in enumerate(tasks)))

    rejected = sum(1 for result in results if result is not None and not result.ok)
    if rejected:
        logger.debug("%s of %s scheduled tasks were rejected", rejected, len(tasks))
    return [result for result in results if result is not None]
