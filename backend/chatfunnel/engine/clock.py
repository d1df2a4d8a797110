import asyncio
import heapq
import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Set, Tuple

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class Clock:
    """Source of time and scheduled transitions for interpreter runs."""

    def now(self) -> datetime:
        raise NotImplementedError

    def call_later(self, delay_ms: int, callback: TimerCallback) -> None:
        raise NotImplementedError


class AsyncioClock(Clock):
    """
    Wall clock backed by the running event loop. Every pending timer is a
    task; stop() cancels whatever is still waiting.
    """

    def __init__(self):
        self.timers: Set[asyncio.Task] = set()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay_ms: int, callback: TimerCallback) -> None:
        task = asyncio.create_task(self._fire(delay_ms, callback))
        self.timers.add(task)
        task.add_done_callback(self.timers.discard)

    async def _fire(self, delay_ms: int, callback: TimerCallback):
        try:
            await asyncio.sleep(delay_ms / 1000)
            await callback()
        except asyncio.CancelledError:
            logger.debug("[CLOCK] Timer cancelled")
            raise
        except Exception as e:
            logger.error(f"[CLOCK] Timer callback failed: {e}", exc_info=True)

    async def stop(self):
        pending = list(self.timers)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self.timers.clear()
        logger.info(f"[CLOCK] Stopped, cancelled {len(pending)} pending timers")


class VirtualClock(Clock):
    """
    Deterministic clock for tests: time only moves when advance() is awaited,
    and due callbacks run in order of their due time.
    """

    def __init__(self, start: datetime = None):
        self._start = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self.elapsed_ms = 0
        self._queue: List[Tuple[int, int, TimerCallback]] = []
        self._sequence = itertools.count()

    def now(self) -> datetime:
        return self._start + timedelta(milliseconds=self.elapsed_ms)

    def call_later(self, delay_ms: int, callback: TimerCallback) -> None:
        heapq.heappush(self._queue, (self.elapsed_ms + delay_ms, next(self._sequence), callback))

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def advance(self, delay_ms: int):
        target = self.elapsed_ms + delay_ms
        while self._queue and self._queue[0][0] <= target:
            due, _, callback = heapq.heappop(self._queue)
            self.elapsed_ms = due
            await callback()
        self.elapsed_ms = target

    async def run_until_idle(self, limit_ms: int = 600000):
        """Fire timers until none are pending or limit_ms of virtual time has passed."""
        deadline = self.elapsed_ms + limit_ms
        while self._queue and self._queue[0][0] <= deadline:
            await self.advance(self._queue[0][0] - self.elapsed_ms)
