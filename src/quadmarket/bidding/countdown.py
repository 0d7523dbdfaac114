"""Live countdown for a displayed listing.

A recurring timer produces one tick per interval while the listing view is
open. The timer is a background task owned by the ``Countdown`` context:
leaving the context, or the listing closing, cancels it.

    async with Countdown(listing) as countdown:
        async for tick in countdown:
            render(tick)
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from ..config import get_settings
from ..models import BiddingStatus, Listing, utcnow
from .lifecycle import compute_remaining, evaluate_status, format_remaining

logger = structlog.get_logger()


@dataclass(frozen=True)
class CountdownTick:
    """One recomputation of a listing's bidding window."""
    listing_id: int
    status: BiddingStatus
    remaining: Optional[timedelta]
    label: str
    at: datetime

    @property
    def final(self) -> bool:
        return self.status is not BiddingStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "status": self.status.value,
            "remaining_seconds": self.remaining.total_seconds() if self.remaining else None,
            "label": self.label,
            "at": self.at.isoformat(),
        }


def make_tick(listing: Listing, now: datetime) -> CountdownTick:
    """Evaluate the listing once. Idempotent and side-effect free."""
    status = evaluate_status(listing, now)
    remaining = compute_remaining(listing, now)
    label = format_remaining(remaining) if status is not BiddingStatus.DISABLED else ""
    return CountdownTick(listing.id, status, remaining, label, now)


class Countdown:
    """Recurring one-tick-per-interval timer for a single listing view."""

    def __init__(
        self,
        listing: Listing,
        interval: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.listing = listing
        self.interval = interval if interval is not None else get_settings().countdown_interval_seconds
        self.clock = clock
        self._queue: asyncio.Queue[CountdownTick] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._finished = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "Countdown":
        self._task = asyncio.create_task(self._run())
        logger.debug("countdown_started", listing_id=self.listing.id, interval=self.interval)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def stop(self) -> None:
        """Cancel the timer. Safe to call more than once."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("countdown_stopped", listing_id=self.listing.id)

    async def _run(self) -> None:
        while True:
            tick = make_tick(self.listing, self.clock())
            await self._queue.put(tick)
            if tick.final:
                return
            await asyncio.sleep(self.interval)

    def __aiter__(self) -> "Countdown":
        return self

    async def __anext__(self) -> CountdownTick:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None and self._queue.empty():
            # Not entered, or already stopped
            raise StopAsyncIteration
        tick = await self._queue.get()
        if tick.final:
            self._finished = True
        return tick
