"""Injectable clock so polling and token expiry can be tested without waiting."""
from __future__ import annotations

import asyncio
import time


class Clock:
    """Wall clock, monotonic clock and sleep in one seam."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
