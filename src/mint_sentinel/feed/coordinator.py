"""Live swap feed with push subscription and polling fallback.

Each :class:`SwapFeedSubscription` follows one mint for one consumer:

- ``IDLE -> SUBSCRIBING``: open a log subscription on the mint.
- ``STREAMING`` in ``PUSH`` mode once the node acknowledges it. If opening
  fails, or the socket later drops, the handle switches to ``POLL`` mode and
  lists recent signatures with exponential backoff.
- ``SUSPENDED`` while the consumer is hidden; the push channel and poll task
  are torn down and rebuilt (push first) on resume.
- ``STOPPED`` is terminal.

Every observed signature passes through a bounded dedupe window before it is
decoded, so a transaction seen by both push and poll is delivered once.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import TYPE_CHECKING

from mint_sentinel.feed.backoff import Backoff
from mint_sentinel.feed.chart import ChartCallback, ChartTickStream
from mint_sentinel.feed.dedupe import BoundedCache, DedupeWindow
from mint_sentinel.feed.filters import SWAP_PROGRAM_IDS, is_swap_candidate
from mint_sentinel.feed.models import (
    WHALE_SIGNAL,
    FeedHandle,
    FeedMode,
    FeedStats,
    SubscriptionState,
    SwapEvent,
)
from mint_sentinel.ingestor.models import ClassifiedSwap, LogNotification
from mint_sentinel.ingestor.price_oracle import PriceQuoteError

if TYPE_CHECKING:
    from mint_sentinel.config import FeedSettings
    from mint_sentinel.ingestor.decoder import SwapDecoder
    from mint_sentinel.ingestor.log_stream import LogStreamHandler
    from mint_sentinel.ingestor.price_oracle import PriceQuoteClient
    from mint_sentinel.ingestor.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

DEFAULT_DEDUPE_CAPACITY = 1000
DEFAULT_EVENT_CACHE_CAPACITY = 500
DEFAULT_POLL_FLOOR_SECONDS = 2.0
DEFAULT_POLL_CEILING_SECONDS = 60.0
DEFAULT_POLL_SIGNATURE_LIMIT = 10
DEFAULT_WHALE_NATIVE_THRESHOLD = Decimal("25")
DEFAULT_WHALE_USD_THRESHOLD = Decimal("3750")

SwapCallback = Callable[[SwapEvent], Awaitable[None]]


def swap_labels(
    swap: ClassifiedSwap,
    *,
    whale_native_threshold: Decimal = DEFAULT_WHALE_NATIVE_THRESHOLD,
    whale_usd_threshold: Decimal = DEFAULT_WHALE_USD_THRESHOLD,
) -> tuple[str, ...]:
    if swap.native_amount > whale_native_threshold or swap.usd_amount > whale_usd_threshold:
        return (WHALE_SIGNAL,)
    return ()


class SwapFeedSubscription:
    """Delivers classified swaps of one mint to one consumer.

    Example:
        ```python
        handle = SwapFeedSubscription(mint, on_swap, rpc=rpc, decoder=decoder)
        await handle.start()
        ...
        await handle.stop()
        ```
    """

    def __init__(
        self,
        mint: str,
        callback: SwapCallback,
        *,
        rpc: SolanaRpcClient,
        decoder: SwapDecoder,
        dedupe_capacity: int = DEFAULT_DEDUPE_CAPACITY,
        event_cache_capacity: int = DEFAULT_EVENT_CACHE_CAPACITY,
        poll_floor_seconds: float = DEFAULT_POLL_FLOOR_SECONDS,
        poll_ceiling_seconds: float = DEFAULT_POLL_CEILING_SECONDS,
        poll_signature_limit: int = DEFAULT_POLL_SIGNATURE_LIMIT,
        whale_native_threshold: Decimal = DEFAULT_WHALE_NATIVE_THRESHOLD,
        whale_usd_threshold: Decimal = DEFAULT_WHALE_USD_THRESHOLD,
        program_ids: frozenset[str] = SWAP_PROGRAM_IDS,
    ) -> None:
        self.mint = mint
        self._callback = callback
        self._rpc = rpc
        self._decoder = decoder
        self._poll_limit = poll_signature_limit
        self._whale_native = whale_native_threshold
        self._whale_usd = whale_usd_threshold
        self._program_ids = program_ids

        self._dedupe = DedupeWindow(dedupe_capacity)
        self._events: BoundedCache[SwapEvent] = BoundedCache(event_cache_capacity)
        self._backoff = Backoff(poll_floor_seconds, poll_ceiling_seconds)

        self._state = SubscriptionState.IDLE
        self._mode: FeedMode | None = None
        self._stats = FeedStats()
        self._push: LogStreamHandler | None = None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def mode(self) -> FeedMode | None:
        return self._mode

    @property
    def stats(self) -> FeedStats:
        return self._stats

    @property
    def poll_delay(self) -> float:
        return self._backoff.delay

    @property
    def seen_count(self) -> int:
        return len(self._dedupe)

    def recent_events(self) -> list[SwapEvent]:
        """Decoded events still held in the event cache, oldest first."""
        return self._events.values()

    async def start(self) -> None:
        if self._state is not SubscriptionState.IDLE:
            raise RuntimeError(f"Subscription for {self.mint} already started")
        await self._open()

    async def _open(self) -> None:
        self._state = SubscriptionState.SUBSCRIBING
        self._mode = None
        try:
            push = await self._rpc.subscribe_logs(
                self.mint,
                on_logs=self._on_logs,
                on_closed=self._on_push_closed,
            )
        except Exception as e:
            if self._state is SubscriptionState.SUBSCRIBING:
                logger.warning("Push subscription for %s failed (%s); polling instead", self.mint, e)
                self._start_polling()
            return

        if self._state is not SubscriptionState.SUBSCRIBING:
            # Suspended, stopped or already polling while the socket opened.
            await push.close()
            return
        self._push = push
        self._state = SubscriptionState.STREAMING
        self._mode = FeedMode.PUSH
        logger.info("Streaming swaps for %s over push", self.mint)

    def _accepting(self) -> bool:
        return self._state in (SubscriptionState.SUBSCRIBING, SubscriptionState.STREAMING)

    async def _on_logs(self, notification: LogNotification) -> None:
        if not self._accepting() or self._mode is FeedMode.POLL:
            return
        self._stats.candidates_seen += 1
        if notification.err is not None:
            self._stats.filtered_out += 1
            return
        if not is_swap_candidate(notification.logs, self._program_ids):
            self._stats.filtered_out += 1
            return
        await self._process(notification.signature)

    async def _on_push_closed(self, error: BaseException | None) -> None:
        if not self._accepting() or self._mode is FeedMode.POLL:
            return
        self._push = None
        self._stats.push_disconnects += 1
        logger.warning("Push feed for %s lost (%s); falling back to polling", self.mint, error)
        self._start_polling()

    def _start_polling(self) -> None:
        self._state = SubscriptionState.STREAMING
        self._mode = FeedMode.POLL
        self._backoff.reset()
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    def _polling(self) -> bool:
        return self._state is SubscriptionState.STREAMING and self._mode is FeedMode.POLL

    async def _poll_loop(self) -> None:
        while self._polling():
            try:
                await self.poll_once()
            except Exception as e:
                self._stats.poll_failures += 1
                delay = self._backoff.failure()
                logger.warning("Polling %s failed (%s); retrying in %.0fs", self.mint, e, delay)
            else:
                delay = self._backoff.success()
            if not self._polling():
                break
            await asyncio.sleep(delay)

    async def poll_once(self) -> None:
        """List the latest signatures and process unseen ones oldest first.

        Raises:
            LedgerClientError: If the signature listing failed.
        """
        signatures = await self._rpc.get_signatures_for_address(self.mint, limit=self._poll_limit)
        self._stats.poll_cycles += 1
        for info in reversed(signatures):
            if self._state is not SubscriptionState.STREAMING:
                break
            if not info.succeeded:
                continue
            self._stats.candidates_seen += 1
            await self._process(info.signature)

    async def _process(self, signature: str) -> None:
        if not self._dedupe.add(signature):
            self._stats.duplicates_dropped += 1
            return

        event = self._events.get(signature)
        if event is None:
            try:
                swap = await self._decoder.decode(signature, self.mint)
            except Exception as e:
                self._stats.decode_failures += 1
                logger.warning("Decode failed for %s: %s", signature, e)
                return
            if swap is None:
                return
            self._stats.decoded += 1
            event = SwapEvent(
                signature=signature,
                mint=self.mint,
                swap=swap,
                labels=swap_labels(
                    swap,
                    whale_native_threshold=self._whale_native,
                    whale_usd_threshold=self._whale_usd,
                ),
            )
            self._events.put(signature, event)

        if self._state is SubscriptionState.STOPPED:
            return
        if self._state is SubscriptionState.SUSPENDED:
            # Let a later observation deliver it from the event cache.
            self._dedupe.discard(signature)
            return
        await self._deliver(event)

    async def _deliver(self, event: SwapEvent) -> None:
        try:
            await self._callback(event)
        except Exception:
            self._stats.callback_errors += 1
            logger.exception("Swap callback failed for %s", event.signature)
            return
        self._stats.delivered += 1

    async def _teardown(self) -> None:
        push, self._push = self._push, None
        if push is not None:
            await push.close()
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def suspend(self) -> None:
        if self._state in (SubscriptionState.SUSPENDED, SubscriptionState.STOPPED):
            return
        self._state = SubscriptionState.SUSPENDED
        self._mode = None
        logger.debug("Suspending swap feed for %s", self.mint)
        await self._teardown()

    async def resume(self) -> None:
        if self._state is not SubscriptionState.SUSPENDED:
            return
        logger.debug("Resuming swap feed for %s", self.mint)
        await self._open()

    async def set_visible(self, visible: bool) -> None:
        if visible:
            await self.resume()
        else:
            await self.suspend()

    async def stop(self) -> None:
        if self._state is SubscriptionState.STOPPED:
            return
        self._state = SubscriptionState.STOPPED
        self._mode = None
        await self._teardown()
        self._dedupe.clear()
        self._events.clear()
        logger.info("Stopped swap feed for %s", self.mint)


class LiveFeedCoordinator:
    """Owns every live subscription and broadcasts visibility changes."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        decoder: SwapDecoder,
        price_client: PriceQuoteClient,
        *,
        settings: FeedSettings | None = None,
        fallback_price_client: PriceQuoteClient | None = None,
    ) -> None:
        self._rpc = rpc
        self._decoder = decoder
        self._price_client = price_client
        self._fallback_price_client = fallback_price_client
        self._settings = settings
        self._handles: list[FeedHandle] = []
        self._visible = True

    @property
    def handles(self) -> list[FeedHandle]:
        return list(self._handles)

    @property
    def visible(self) -> bool:
        return self._visible

    async def _register(self, handle: FeedHandle) -> None:
        self._handles.append(handle)
        if self._visible:
            await handle.start()
        else:
            await handle.suspend()

    async def subscribe_swaps(self, mint: str, callback: SwapCallback) -> SwapFeedSubscription:
        s = self._settings
        if s is None:
            handle = SwapFeedSubscription(mint, callback, rpc=self._rpc, decoder=self._decoder)
        else:
            handle = SwapFeedSubscription(
                mint,
                callback,
                rpc=self._rpc,
                decoder=self._decoder,
                dedupe_capacity=s.dedupe_capacity,
                event_cache_capacity=s.event_cache_capacity,
                poll_floor_seconds=s.poll_floor_seconds,
                poll_ceiling_seconds=s.poll_ceiling_seconds,
                poll_signature_limit=s.poll_signature_limit,
                whale_native_threshold=s.whale_native_threshold,
                whale_usd_threshold=s.whale_usd_threshold,
            )
        await self._register(handle)
        return handle

    async def chart_price(self, mint: str) -> Decimal:
        """Quote ``mint`` for the chart, trying the fallback source after a primary failure.

        Raises:
            PriceQuoteError: If every quote source failed.
        """
        try:
            return await self._price_client.fetch_price(mint)
        except PriceQuoteError as e:
            if self._fallback_price_client is None:
                raise
            logger.debug("Primary quote for %s failed (%s); trying fallback", mint, e)
            return await self._fallback_price_client.fetch_price(mint)

    async def subscribe_chart(self, mint: str, callback: ChartCallback) -> ChartTickStream:
        async def price_source() -> Decimal:
            return await self.chart_price(mint)

        if self._settings is None:
            handle = ChartTickStream(mint, callback, price_source)
        else:
            handle = ChartTickStream(
                mint,
                callback,
                price_source,
                max_backoff_seconds=self._settings.chart_max_backoff_seconds,
            )
        await self._register(handle)
        return handle

    async def unsubscribe(self, handle: FeedHandle) -> None:
        await handle.stop()
        with contextlib.suppress(ValueError):
            self._handles.remove(handle)

    async def set_visibility(self, visible: bool) -> None:
        """Suspend (hidden) or resume (visible) every live subscription."""
        self._visible = visible
        await asyncio.gather(*(h.set_visible(visible) for h in self._handles))

    async def stop_all(self) -> None:
        handles, self._handles = self._handles, []
        await asyncio.gather(*(h.stop() for h in handles), return_exceptions=True)
