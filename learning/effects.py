"""Post-commit side effects.

Persistence that follows a primary operation (linking a paper trade to its
session, recording an auto-close outcome) runs here, after the primary result
is already committed. A failure is logged and kept in ``failures``; it is
never raised into the code that scheduled it.

Effects scheduled under the same ``key`` run in scheduling order: each one
starts only after the previous effect for that key has finished.
"""
import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Optional

from common.logger import get_logger
from common.models import utcnow

logger = get_logger("side_effects")


@dataclass
class SideEffectFailure:
    name: str
    error: str
    at: datetime


class SideEffectRunner:
    def __init__(self, max_failures: int = 100):
        self.failures: deque[SideEffectFailure] = deque(maxlen=max_failures)
        self._tasks: set[asyncio.Task] = set()
        self._last: dict[str, asyncio.Task] = {}

    def schedule(self, name: str, coro: Awaitable, key: Optional[str] = None) -> asyncio.Task:
        previous = self._last.get(key) if key is not None else None
        task = asyncio.create_task(self._run(name, coro, previous))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if key is not None:
            self._last[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        return task

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._last.get(key) is task:
            del self._last[key]

    async def _run(self, name: str, coro: Awaitable, previous: Optional[asyncio.Task] = None) -> None:
        if previous is not None:
            # _run never raises, so waiting on the previous effect cannot fail
            await previous
        try:
            await coro
        except Exception as e:
            logger.error(f"❌ Side effect '{name}' failed: {e!r}")
            self.failures.append(SideEffectFailure(name=name, error=repr(e), at=utcnow()))

    async def drain(self) -> None:
        """Wait for everything scheduled so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
