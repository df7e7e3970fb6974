"""Fixed-window rate limiting per caller."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from release_agent.config import RateLimitConfig
from release_agent.core.clock import SYSTEM_CLOCK, Clock
from release_agent.core.errors import RateLimitExceeded
from release_agent.core.store import MemoryStore, Store

logger = logging.getLogger(__name__)

USAGE_KINDS = ("chat", "generate", "release", "artist")


@dataclass(slots=True)
class Window:
    count: int
    reset_at: float


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float


class RateLimiter:
    """Counts requests per ``(kind, caller)`` in fixed wall-clock windows.

    Kinds without an explicit limit fall back to ``default``.
    """

    def __init__(
        self,
        config: RateLimitConfig = RateLimitConfig(),
        store: Optional[Store[str, Window]] = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._config = config
        self._store: Store[str, Window] = store or MemoryStore()
        self._clock = clock

    def limit_for(self, kind: str) -> Tuple[int, int]:
        limit = getattr(self._config, kind, None)
        return limit if isinstance(limit, tuple) else self._config.default

    async def hit(self, caller_id: str, kind: str = "default") -> RateLimitResult:
        """Count one request and report whether it is within the limit."""
        limit, window_seconds = self.limit_for(kind)
        if not self._config.enabled:
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, reset_at=0.0)

        key = f"ratelimit:{kind}:{caller_id}"
        now = self._clock.time()
        window = await self._store.get(key)
        if window is None or now > window.reset_at:
            window = Window(count=1, reset_at=now + window_seconds)
        else:
            window = Window(count=window.count + 1, reset_at=window.reset_at)
        await self._store.put(key, window)
        return RateLimitResult(
            allowed=window.count <= limit,
            limit=limit,
            remaining=max(0, limit - window.count),
            reset_at=window.reset_at,
        )

    async def check(self, caller_id: str, kind: str = "default") -> RateLimitResult:
        """Like :meth:`hit`, but raises :class:`RateLimitExceeded` when over the limit."""
        result = await self.hit(caller_id, kind)
        if not result.allowed:
            logger.info(f"Caller {caller_id} exceeded the {kind} rate limit")
            raise RateLimitExceeded(kind, result.limit, result.reset_at)
        return result

    async def usage(self, caller_id: str) -> Dict[str, RateLimitResult]:
        """Report the current window of every limited kind without counting a request."""
        now = self._clock.time()
        report = {}
        for kind in USAGE_KINDS:
            limit, _ = self.limit_for(kind)
            window = await self._store.get(f"ratelimit:{kind}:{caller_id}")
            if window is None or now > window.reset_at:
                report[kind] = RateLimitResult(allowed=True, limit=limit, remaining=limit, reset_at=0.0)
            else:
                report[kind] = RateLimitResult(
                    allowed=window.count < limit,
                    limit=limit,
                    remaining=max(0, limit - window.count),
                    reset_at=window.reset_at,
                )
        return report
