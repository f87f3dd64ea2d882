"""Trailing-edge debounce for async callbacks.

Bursts of change notifications collapse into one callback run: every
``trigger`` pushes the deadline out, but never pulls an already scheduled
later deadline in.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class DebouncedTask:
    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float, *, name: str = "debounce") -> None:
        self._callback = callback
        self._delay = float(delay)
        self._name = name
        self._deadline: float | None = None
        self._task: asyncio.Task[None] | None = None
        self.fired = 0

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, delay: float | None = None) -> None:
        """Schedule (or push back) the callback ``delay`` seconds from now."""
        loop = asyncio.get_running_loop()
        wait = self._delay if delay is None else max(0.0, float(delay))
        deadline = loop.time() + wait
        if self.pending and self._deadline is not None:
            self._deadline = max(self._deadline, deadline)
            return
        self._deadline = deadline
        self._task = loop.create_task(self._run(), name=self._name)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._deadline is not None:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        self._deadline = None
        self._task = None
        await self._fire()

    async def _fire(self) -> None:
        self.fired += 1
        try:
            await self._callback()
        except Exception as e:
            logger.exception("%s: callback failed: %s", self._name, e)

    def cancel(self) -> None:
        task = self._task
        self._task = None
        self._deadline = None
        if task is not None and not task.done():
            task.cancel()

    async def flush(self) -> None:
        """Run a pending callback immediately; no-op when nothing is pending."""
        if not self.pending:
            return
        self.cancel()
        await self._fire()


__all__ = ["DebouncedTask"]
