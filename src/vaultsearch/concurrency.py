"""Async init-once guard shared by every consumer of the index."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Run an expensive coroutine at most once at a time, sharing its outcome.

    The first caller of :meth:`run` starts the coroutine; callers arriving
    while it is in flight await the same task and receive the same result
    or exception. A successful result is cached for all later callers. On
    failure the guard returns to "not started" so a later caller may retry.
    """

    def __init__(self, factory: Callable[[], Awaitable[T]], name: str = "operation") -> None:
        self._factory = factory
        self._name = name
        self._task: asyncio.Future[T] | None = None
        self._done = False
        self._result: T | None = None

    @property
    def done(self) -> bool:
        """True once the operation has completed successfully."""
        return self._done

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> T:
        if self._done:
            return self._result  # type: ignore[return-value]

        if self._task is None:
            logger.debug("Starting %s", self._name)
            self._task = asyncio.ensure_future(self._factory())
        else:
            logger.debug("Joining in-flight %s", self._name)

        task = self._task
        try:
            # Shield so one cancelled waiter does not cancel the shared task
            result = await asyncio.shield(task)
        except Exception:
            if self._task is task:
                self._task = None
            raise

        self._done = True
        self._result = result
        return result

    def reset(self) -> None:
        """Forget a completed result so the next :meth:`run` starts over."""
        if self.in_flight:
            return
        self._task = None
        self._done = False
        self._result = None
