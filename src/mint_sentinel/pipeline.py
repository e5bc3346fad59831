"""Main pipeline orchestrator for Mint Sentinel.

This module provides the Pipeline class that wires together the ledger
client, decoder, risk analyzers and live feed, and exposes them to the
consuming application.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import aiohttp
from redis.asyncio import Redis

from mint_sentinel.config import Settings, get_settings
from mint_sentinel.detector.bundle import BundleAnalyzer
from mint_sentinel.detector.concentration import HolderConcentrationAnalyzer
from mint_sentinel.feed.coordinator import LiveFeedCoordinator, SwapCallback
from mint_sentinel.ingestor.decoder import SwapDecoder
from mint_sentinel.ingestor.price_oracle import DexScreenerQuoteClient, PriceOracleCache, PriceQuoteClient
from mint_sentinel.ingestor.rpc import SolanaRpcClient
from mint_sentinel.profiler.funding import FundingTracer
from mint_sentinel.sink import EventSink, RedisStreamSink

if TYPE_CHECKING:
    from mint_sentinel.detector.models import BundleRisk, HolderConcentration
    from mint_sentinel.feed.chart import ChartCallback, ChartTickStream
    from mint_sentinel.feed.coordinator import SwapFeedSubscription
    from mint_sentinel.feed.models import FeedHandle, SwapEvent
    from mint_sentinel.ingestor.models import ClassifiedSwap

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    swaps_delivered: int = 0
    events_published: int = 0
    publish_failures: int = 0
    analyses_run: int = 0
    last_error: str | None = None


class Pipeline:
    """Main orchestrator for Mint Sentinel.

    Pipeline flow:
        Log subscription / signature polling -> Swap Decoder -> consumer
        callback (+ optional Redis stream sink)

    Example:
        ```python
        from mint_sentinel.config import get_settings
        from mint_sentinel.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            handle = await pipeline.subscribe_swaps(mint, on_swap)
            risk = await pipeline.analyze(mint)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        sink: EventSink | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            sink: Destination for delivered swaps. Defaults to a Redis stream
                when Redis is configured.
        """
        self._settings = settings or get_settings()
        self._sink = sink

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._session: aiohttp.ClientSession | None = None
        self._rpc: SolanaRpcClient | None = None
        self._price_client: PriceQuoteClient | None = None
        self._fallback_price_client: DexScreenerQuoteClient | None = None
        self._price_oracle: PriceOracleCache | None = None
        self._decoder: SwapDecoder | None = None
        self._bundle_analyzer: BundleAnalyzer | None = None
        self._concentration_analyzer: HolderConcentrationAnalyzer | None = None
        self._coordinator: LiveFeedCoordinator | None = None

        self._publish_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def coordinator(self) -> LiveFeedCoordinator:
        return self._require(self._coordinator)

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        logger.info("Starting pipeline...")
        logger.debug("Settings: %s", self._settings.redacted_summary())

        try:
            await self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop every subscription and release resources."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._coordinator:
            await self._coordinator.stop_all()
        if self._publish_tasks:
            await asyncio.gather(*self._publish_tasks, return_exceptions=True)
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        settings = self._settings

        if settings.redis.enabled:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(str(settings.redis.url))
            if self._sink is None:
                self._sink = RedisStreamSink(
                    self._redis,
                    stream_key=settings.redis.swap_stream_key,
                    maxlen=settings.redis.swap_stream_maxlen,
                )

        self._session = aiohttp.ClientSession()

        logger.debug("Initializing Solana RPC client (%d endpoints)...", len(settings.rpc.endpoint_urls))
        self._rpc = SolanaRpcClient(
            settings.rpc.endpoint_urls,
            ws_url=settings.rpc.ws_url,
            commitment=settings.rpc.commitment,
            session=self._session,
            redis=self._redis,
            transaction_cache_ttl_seconds=settings.rpc.transaction_cache_ttl_seconds,
            max_requests_per_second=settings.rpc.max_requests_per_second,
            request_timeout_seconds=settings.rpc.request_timeout_seconds,
            rate_limit_pause_seconds=settings.rpc.rate_limit_pause_seconds,
            transient_pause_seconds=settings.rpc.transient_pause_seconds,
            degraded_cooldown_seconds=settings.rpc.degraded_cooldown_seconds,
        )

        self._price_client = PriceQuoteClient(
            settings.price.quote_url,
            session=self._session,
            request_timeout_seconds=settings.price.request_timeout_seconds,
        )
        self._fallback_price_client = DexScreenerQuoteClient(
            settings.price.fallback_quote_url,
            session=self._session,
            request_timeout_seconds=settings.price.request_timeout_seconds,
        )
        self._price_oracle = PriceOracleCache(
            self._price_client,
            native_mint=settings.price.native_mint,
            ttl_seconds=settings.price.cache_ttl_seconds,
            default_price=settings.price.default_native_price,
            retry_after_seconds=settings.price.retry_after_seconds,
        )

        self._decoder = SwapDecoder(
            self._rpc,
            self._price_oracle,
            noise_threshold_sol=settings.decoder.noise_threshold_sol,
            min_stablecoin_usd=settings.decoder.min_stablecoin_usd,
        )

        self._bundle_analyzer = BundleAnalyzer(
            self._rpc,
            FundingTracer(self._rpc, lookback=settings.risk.funding_lookback),
            signature_limit=settings.risk.signature_limit,
            early_buyer_count=settings.risk.early_buyer_count,
            shared_funder_floor=settings.risk.shared_funder_floor,
            bucket_granularity=settings.risk.bucket_granularity,
        )
        self._concentration_analyzer = HolderConcentrationAnalyzer(self._rpc)

        self._coordinator = LiveFeedCoordinator(
            self._rpc,
            self._decoder,
            self._price_client,
            settings=settings.feed,
            fallback_price_client=self._fallback_price_client,
        )

    async def _cleanup(self) -> None:
        """Clean up resources."""
        self._coordinator = None
        self._decoder = None
        self._bundle_analyzer = None
        self._concentration_analyzer = None
        self._price_oracle = None
        self._price_client = None
        self._fallback_price_client = None

        if self._rpc:
            await self._rpc.aclose()
            self._rpc = None

        if self._session:
            await self._session.close()
            self._session = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    @staticmethod
    def _require(component: Any) -> Any:
        if component is None:
            raise RuntimeError("Pipeline is not running")
        return component

    async def decode(self, signature: str, mint: str) -> ClassifiedSwap | None:
        """Classify one transaction for ``mint``.

        Raises:
            EndpointsExhaustedError: If no RPC endpoint could serve the record.
        """
        decoder: SwapDecoder = self._require(self._decoder)
        return await decoder.decode(signature, mint)

    async def analyze(self, mint: str) -> BundleRisk:
        """Bundle risk of ``mint`` (never raises once running)."""
        analyzer: BundleAnalyzer = self._require(self._bundle_analyzer)
        self._stats.analyses_run += 1
        return await analyzer.analyze(mint)

    async def holder_concentration(self, mint: str) -> HolderConcentration:
        analyzer: HolderConcentrationAnalyzer = self._require(self._concentration_analyzer)
        return await analyzer.analyze(mint)

    def _hand_off(self, event: SwapEvent) -> None:
        if self._sink is None:
            return
        task = asyncio.create_task(self._sink.publish(event))
        self._publish_tasks.add(task)
        task.add_done_callback(self._on_publish_done)

    def _on_publish_done(self, task: asyncio.Task[None]) -> None:
        self._publish_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._stats.publish_failures += 1
            logger.warning("Swap publish failed: %s", error)
        else:
            self._stats.events_published += 1

    async def subscribe_swaps(self, mint: str, callback: SwapCallback) -> SwapFeedSubscription:
        """Follow classified swaps of ``mint``.

        Each delivered swap is also handed to the sink without waiting on it.
        """
        coordinator = self.coordinator

        async def on_swap(event: SwapEvent) -> None:
            self._stats.swaps_delivered += 1
            self._hand_off(event)
            await callback(event)

        return await coordinator.subscribe_swaps(mint, on_swap)

    async def subscribe_chart(self, mint: str, callback: ChartCallback) -> ChartTickStream:
        return await self.coordinator.subscribe_chart(mint, callback)

    async def unsubscribe(self, handle: FeedHandle) -> None:
        await self.coordinator.unsubscribe(handle)

    async def set_visibility(self, visible: bool) -> None:
        await self.coordinator.set_visibility(visible)

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
