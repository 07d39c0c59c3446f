"""Minimum-interval rate limiting for scraper adapters."""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Awaitable, Callable

from pricescan.config import settings

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Enforce a minimum interval between calls per key, with optional cooldowns."""

    def __init__(
        self,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sleep = sleep
        self._clock = clock
        self.locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.last_request: dict[str, float] = {}
        self.cooldowns: dict[str, float] = {}  # key -> cooldown until timestamp

    async def acquire_with_interval(self, key: str, min_interval: float) -> float:
        """
        Wait until ``min_interval`` seconds have passed since the previous call for ``key``.

        The first call for a key never waits. Calls for the same key are
        serialized, so concurrent callers are spaced out one after another.

        Returns:
            Seconds actually waited
        """
        async with self.locks[key]:
            waited = 0.0
            now = self._clock()

            cooldown_until = self.cooldowns.get(key, 0.0)
            if now < cooldown_until:
                wait_time = cooldown_until - now
                logger.debug(f"{key} in cooldown, waiting {wait_time:.1f}s")
                await self._sleep(wait_time)
                waited += wait_time
                now = self._clock()

            last_time = self.last_request.get(key)
            if last_time is not None:
                wait_needed = max(0.0, min_interval - (now - last_time))
                if wait_needed > 0:
                    await self._sleep(wait_needed)
                    waited += wait_needed

            self.last_request[key] = self._clock()
            return waited

    def set_cooldown(self, key: str, seconds: float) -> None:
        """Block calls for ``key`` for the next ``seconds`` seconds."""
        self.cooldowns[key] = self._clock() + seconds

    async def wait_for_backoff(
        self,
        attempt: int,
        multiplier: float | None = None,
        max_seconds: float | None = None,
    ) -> float:
        """
        Wait with exponential backoff after a failed attempt.

        Args:
            attempt: Attempt number (1-based)
            multiplier: Backoff multiplier (defaults to config)
            max_seconds: Maximum backoff in seconds (defaults to config)
        """
        multiplier = multiplier if multiplier is not None else settings.backoff_multiplier
        max_seconds = max_seconds if max_seconds is not None else settings.max_backoff_seconds
        wait_time = min(multiplier ** (attempt - 1), max_seconds)
        await self._sleep(wait_time)
        return wait_time
