"""
Timers for SlotSniper

Single-slot action timer, 1 Hz ticker, retry strategy and human-like delays.
"""
import asyncio
import random
import logging
from datetime import datetime, date
from typing import Callable, Awaitable, Optional, Set
import pytz

logger = logging.getLogger(__name__)


class SessionClock:
    """Wall clock in the configured timezone"""

    def __init__(self, timezone: str = "Europe/London"):
        self.tz = pytz.timezone(timezone)

    def now(self) -> datetime:
        """Get current time in configured timezone"""
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


class ActionTimer:
    """
    Holds at most one pending callback.

    Scheduling always cancels whatever is pending first, so two schedules
    never add up to two timers. A callback that has already started is
    detached instead of cancelled and runs to completion; ``generation``
    tells it whether it has been replaced in the meantime.
    """

    def __init__(self, name: str = "action"):
        self.name = name
        self.generation = 0
        self._task: Optional[asyncio.Task] = None
        self._firing: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, delay: float, callback: Callable[[], Awaitable]) -> asyncio.Task:
        self.cancel()
        self._task = asyncio.create_task(self._run(delay, callback), name=f"{self.name}-timer")
        logger.debug(f"{self.name}: next run in {delay:.2f}s")
        return self._task

    def cancel(self):
        """Cancel the pending callback if it is still waiting"""
        task = self._task
        self._task = None
        self.generation += 1
        if task is not None and not task.done() and task not in self._firing:
            task.cancel()

    async def _run(self, delay: float, callback: Callable[[], Awaitable]):
        await asyncio.sleep(max(0.0, delay))
        task = asyncio.current_task()
        self._firing.add(task)
        try:
            await callback()
        finally:
            self._firing.discard(task)
            if self._task is task:
                self._task = None


class Ticker:
    """
    Calls an async callback at a fixed interval until stopped.

    Starting an already running ticker is refused rather than doubled.
    """

    def __init__(self, interval: float = 1.0, name: str = "ticker"):
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: Callable[[], Awaitable]) -> bool:
        if self.running:
            logger.debug(f"{self.name} already running, not restarting")
            return False
        self._task = asyncio.create_task(self._loop(callback), name=self.name)
        return True

    def stop(self):
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _loop(self, callback: Callable[[], Awaitable]):
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            await callback()


class RetryStrategy:
    """
    Configurable retry strategy for page commands.
    """

    def __init__(
        self,
        max_attempts: int = 2,
        base_delay_ms: int = 3000,
        max_delay_ms: int = 30000,
        exponential_backoff: bool = False
    ):
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.exponential_backoff = exponential_backoff
        self.attempts = 0

    def should_retry(self) -> bool:
        """Check if another attempt should be made"""
        return self.attempts < self.max_attempts

    def record_attempt(self):
        """Record an attempt"""
        self.attempts += 1

    async def wait(self):
        """Wait appropriate time before next attempt"""
        if self.exponential_backoff:
            delay_ms = min(
                self.base_delay_ms * (2 ** (self.attempts - 1)),
                self.max_delay_ms
            )
        else:
            delay_ms = self.base_delay_ms

        await asyncio.sleep(delay_ms / 1000)

    def reset(self):
        """Reset attempt counter"""
        self.attempts = 0


def jitter(minimum: float, maximum: float, rng: Optional[random.Random] = None) -> float:
    """Uniform random delay in seconds"""
    return (rng or random).uniform(minimum, maximum)


async def human_pause(minimum: float, maximum: float, rng: Optional[random.Random] = None) -> float:
    """Sleep a randomized, human-looking amount of time"""
    delay = jitter(minimum, maximum, rng)
    await asyncio.sleep(delay)
    return delay


def format_countdown(total_seconds: int) -> str:
    """Format remaining time as human-readable string"""
    total_seconds = int(total_seconds)

    if total_seconds <= 0:
        return "0s"

    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")

    return " ".join(parts)
