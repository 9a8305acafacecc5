"""Per-client request window and concurrency gate.

``RateLimiter`` owns all of its state; build one at startup, ``start()`` it
so expired entries are swept, and hand it to whatever needs admission
control. State lives in process memory and relies on the event loop for
atomicity, so a multi-process deployment needs a shared counter store.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Mapping, Optional

from app.core.errors import ErrorKind, PipelineError
from app.core.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float
    active_requests: int = 0
    waiters: deque[asyncio.Future[None]] = field(default_factory=deque)


def client_key_from_headers(headers: Mapping[str, str]) -> str:
    """First ``x-forwarded-for`` hop, else ``x-real-ip``, else ``unknown``."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_CLIENT


class RateLimiter:
    def __init__(
        self,
        *,
        window_seconds: float = 60.0,
        max_requests: int = 10,
        max_concurrent: int = 2,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.max_concurrent = max(1, int(max_concurrent))
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._sweeper: Optional[asyncio.Task[None]] = None

    # --- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Evicted %d idle rate-limit entries", removed)

    def sweep(self) -> int:
        """Drop entries whose window expired and that have nothing in flight."""
        now = self._clock()
        stale = [
            key
            for key, entry in self._entries.items()
            if now >= entry.reset_at
            and entry.active_requests == 0
            and not entry.waiters
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    # --- admission -------------------------------------------------------

    def entry(self, key: str) -> Optional[RateLimitEntry]:
        return self._entries.get(key)

    def _check_window(self, key: str) -> RateLimitEntry:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            entry = RateLimitEntry(count=0, reset_at=now + self.window_seconds)
            self._entries[key] = entry
        elif now >= entry.reset_at:
            entry.count = 0
            entry.reset_at = now + self.window_seconds

        if entry.count >= self.max_requests:
            retry_after = max(1, math.ceil(entry.reset_at - now))
            logger.info(
                "Rate limit hit for %s, retry in %ss",
                key,
                retry_after,
                extra={"client": key},
            )
            raise PipelineError(
                ErrorKind.RATE_LIMITED,
                f"Too many requests. Please wait {retry_after} seconds.",
                retry_after=retry_after,
            )
        entry.count += 1
        return entry

    async def acquire(self, key: str) -> None:
        """Count the request and wait for a concurrency slot.

        Raises ``PipelineError(RATE_LIMITED)`` without taking a slot when the
        window is exhausted. Requests over the concurrency cap wait in FIFO
        order.
        """
        entry = self._check_window(key)
        if entry.active_requests < self.max_concurrent and not entry.waiters:
            entry.active_requests += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry.waiters.append(waiter)
        logger.debug(
            "Queued request for %s (%d waiting)",
            key,
            len(entry.waiters),
            extra={"client": key},
        )
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over before the cancel landed.
                self.release(key)
            else:
                try:
                    entry.waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self, key: str) -> None:
        """Free a slot, handing it straight to the next waiter if any."""
        entry = self._entries.get(key)
        if entry is None:
            return
        while entry.waiters:
            waiter = entry.waiters.popleft()
            if not waiter.done():
                # Slot transfers; active_requests stays the same.
                waiter.set_result(None)
                return
        entry.active_requests = max(0, entry.active_requests - 1)

    @asynccontextmanager
    async def admit(self, key: str) -> AsyncIterator[None]:
        await self.acquire(key)
        try:
            yield
        finally:
            self.release(key)


__all__ = [
    "RateLimitEntry",
    "RateLimiter",
    "UNKNOWN_CLIENT",
    "client_key_from_headers",
]
