"""Progress notices for slow requests.

While a request is being answered, a background task posts short "still
working" notices to the thread every few seconds, up to a fixed cap. A
shared :class:`ResponseState` flag is checked before each notice is
composed and again after every await, so once the real answer is out at
most one in-flight notice can still land.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from dataclasses import dataclass
from typing import Protocol

from src.config import settings

logger = logging.getLogger(__name__)

PROGRESS_MESSAGES = [
    "Still digging through the transcript...",
    "Working on it, almost there...",
    "Pulling the details together now...",
    "Thanks for your patience, wrapping up...",
]


class Notifier(Protocol):
    async def send(self, thread_id: str, text: str) -> None: ...


@dataclass
class ResponseState:
    """Shared flag flipped once the real response has been sent."""

    sent: bool = False

    def mark_sent(self) -> None:
        self.sent = True


class ProgressNotifier:
    """Posts up to ``max_messages`` notices, one every ``delay_seconds``."""

    def __init__(
        self,
        notifier: Notifier,
        thread_id: str,
        state: ResponseState | None = None,
        delay_seconds: float | None = None,
        max_messages: int | None = None,
        messages: list[str] | None = None,
    ) -> None:
        self._notifier = notifier
        self._thread_id = thread_id
        self.state = state or ResponseState()
        self._delay = settings.progress_delay_seconds if delay_seconds is None else delay_seconds
        self._max = settings.max_progress_messages if max_messages is None else max_messages
        self._messages = itertools.cycle(messages or PROGRESS_MESSAGES)
        self._task: asyncio.Task[None] | None = None
        self.count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the notice loop on the running event loop (idempotent)."""
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the notice loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while self.count < self._max:
            await asyncio.sleep(self._delay)
            if self.state.sent:
                return

            text = next(self._messages)
            try:
                await self._notifier.send(self._thread_id, text)
            except Exception:
                logger.exception("Failed to send progress notice to thread %s", self._thread_id)
            self.count += 1
            logger.debug("Progress notice #%d for thread %s", self.count, self._thread_id)

            if self.state.sent:
                return


class ProgressRegistry:
    """Live progress notifiers keyed by thread id.

    Owned by the application lifespan: ``close()`` on shutdown stops
    anything still running.
    """

    def __init__(self) -> None:
        self._active: dict[str, ProgressNotifier] = {}

    def __len__(self) -> int:
        return len(self._active)

    def start(self, thread_id: str, notifier: Notifier, **kwargs) -> ProgressNotifier:
        existing = self._active.get(thread_id)
        if existing is not None and existing.running:
            return existing

        progress = ProgressNotifier(notifier, thread_id, **kwargs)
        self._active[thread_id] = progress
        progress.start()
        return progress

    async def finish(self, thread_id: str) -> None:
        """Mark the thread's response as sent and stop its notices."""
        progress = self._active.pop(thread_id, None)
        if progress is None:
            return
        progress.state.mark_sent()
        await progress.stop()

    async def close(self) -> None:
        for thread_id in list(self._active):
            await self.finish(thread_id)
