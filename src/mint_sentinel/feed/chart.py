"""Per-second price ticks for a live chart."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal

from mint_sentinel.feed.backoff import Backoff
from mint_sentinel.feed.models import ChartStats, ChartTick, SubscriptionState

logger = logging.getLogger(__name__)

DEFAULT_MIN_BACKOFF_SECONDS = 1.0
DEFAULT_MAX_BACKOFF_SECONDS = 30.0
DEFAULT_RECHECK_SECONDS = 0.1

ChartCallback = Callable[[ChartTick], Awaitable[None]]
PriceSource = Callable[[], Awaitable[Decimal]]


class ChartTickStream:
    """Polls a price source at most once per wall-clock second.

    Each successful quote with a positive price becomes a flat one-second
    candle. Quote failures back off exponentially up to
    ``max_backoff_seconds``.
    """

    def __init__(
        self,
        mint: str,
        callback: ChartCallback,
        price_source: PriceSource,
        *,
        min_backoff_seconds: float = DEFAULT_MIN_BACKOFF_SECONDS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
        recheck_seconds: float = DEFAULT_RECHECK_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.mint = mint
        self._callback = callback
        self._price_source = price_source
        self._backoff = Backoff(min_backoff_seconds, max_backoff_seconds)
        self._recheck = recheck_seconds
        self._clock = clock

        self._state = SubscriptionState.IDLE
        self._stats = ChartStats()
        self._last_second: int | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def stats(self) -> ChartStats:
        return self._stats

    @property
    def backoff_delay(self) -> float:
        return self._backoff.delay

    async def start(self) -> None:
        if self._state is not SubscriptionState.IDLE:
            raise RuntimeError(f"Chart stream for {self.mint} already started")
        self._run_in_background()

    def _run_in_background(self) -> None:
        self._state = SubscriptionState.STREAMING
        self._backoff.reset()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def tick_once(self) -> ChartTick | None:
        """Quote once for the current second and deliver the tick.

        Returns None when this second was already quoted or the price is not
        positive.

        Raises:
            Exception: Whatever the price source raised.
        """
        second = int(self._clock())
        if second == self._last_second:
            return None
        self._last_second = second

        price = await self._price_source()
        self._stats.last_price = price
        if price <= 0 or self._state is not SubscriptionState.STREAMING:
            return None

        tick = ChartTick.flat(second, price)
        try:
            await self._callback(tick)
        except Exception:
            self._stats.callback_errors += 1
            logger.exception("Chart callback failed for %s", self.mint)
            return tick
        self._stats.ticks_delivered += 1
        return tick

    async def _run(self) -> None:
        while self._state is SubscriptionState.STREAMING:
            if int(self._clock()) != self._last_second:
                try:
                    await self.tick_once()
                except Exception as e:
                    self._stats.quote_failures += 1
                    delay = self._backoff.failure()
                    logger.warning("Price quote for %s failed (%s); retrying in %.0fs", self.mint, e, delay)
                    await asyncio.sleep(delay)
                    continue
                self._backoff.success()
            await asyncio.sleep(self._recheck)

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def suspend(self) -> None:
        if self._state in (SubscriptionState.SUSPENDED, SubscriptionState.STOPPED):
            return
        self._state = SubscriptionState.SUSPENDED
        await self._cancel_task()

    async def resume(self) -> None:
        if self._state is not SubscriptionState.SUSPENDED:
            return
        self._run_in_background()

    async def set_visible(self, visible: bool) -> None:
        if visible:
            await self.resume()
        else:
            await self.suspend()

    async def stop(self) -> None:
        if self._state is SubscriptionState.STOPPED:
            return
        self._state = SubscriptionState.STOPPED
        await self._cancel_task()
        logger.debug("Stopped chart stream for %s", self.mint)
