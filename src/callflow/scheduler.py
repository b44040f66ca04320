"""Deferred actions (audio cleanup and the like).

Every scheduled action either runs or its failure is logged. On shutdown
`flush()` runs whatever is still waiting instead of dropping it.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)

Action = Callable[[], Union[Awaitable[None], None]]


class DeferredActions:
    def __init__(self):
        self._pending: dict[asyncio.Task, tuple[str, Action]] = {}

    def schedule(self, delay: float, action: Action, label: str = "deferred action") -> asyncio.Task:
        task = asyncio.create_task(self._run_later(delay, action, label))
        self._pending[task] = (label, action)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._pending.pop(task, None)

    async def _run_later(self, delay: float, action: Action, label: str) -> None:
        await asyncio.sleep(delay)
        # Once running, flush() must not run it a second time
        self._pending.pop(asyncio.current_task(), None)
        await self._execute(action, label)

    @staticmethod
    async def _execute(action: Action, label: str) -> None:
        try:
            result = action()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("%s failed: %s", label, e)

    async def flush(self) -> None:
        """Run every pending action now."""
        pending = list(self._pending.items())
        self._pending.clear()
        for task, (label, action) in pending:
            task.cancel()
            await self._execute(action, label)
        if pending:
            logger.info("Flushed %d deferred actions", len(pending))

    def __len__(self) -> int:
        return len(self._pending)
