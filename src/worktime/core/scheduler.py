"""Time sources and cancellable scheduled callbacks for the session clock."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TimerHandle(Protocol):
    """Handle of a scheduled callback."""

    def cancel(self) -> None:
        """Cancel the callback if it has not run yet."""


class Scheduler(Protocol):
    """Schedules single-shot callbacks."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay seconds.

        Args:
            delay: Delay in seconds
            callback: Callable to run

        Returns:
            Handle that cancels the pending callback
        """


class AsyncioScheduler:
    """Scheduler backed by the asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Initialize scheduler.

        Args:
            loop: Event loop to use. Defaults to the running loop at call time.
        """
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)
