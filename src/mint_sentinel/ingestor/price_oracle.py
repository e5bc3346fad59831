"""Reference price lookups with a time-bounded cache.

The decoder needs the native-asset (SOL) USD price to convert stablecoin
volume into native units. Quotes come from an HTTP price API; the cache
serves a recent value without a network call and falls back to the last
known (or a configured default) value when a refresh fails.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_QUOTE_URL = "https://api.jup.ag/price/v2"
DEFAULT_FALLBACK_QUOTE_URL = "https://api.dexscreener.com/latest/dex/tokens"
DEFAULT_CACHE_TTL_SECONDS = 60.0
DEFAULT_NATIVE_PRICE = Decimal("150")
DEFAULT_REQUEST_TIMEOUT_SECONDS = 5.0
DEFAULT_RETRY_AFTER_SECONDS = 5.0


class PriceQuoteError(Exception):
    """Raised when a price quote cannot be obtained or parsed."""


class PriceQuoteClient:
    """Thin client for a Jupiter-style ``?ids=<mint>`` price endpoint."""

    def __init__(
        self,
        quote_url: str = DEFAULT_QUOTE_URL,
        *,
        session: aiohttp.ClientSession | None = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._quote_url = quote_url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    @staticmethod
    def _extract_price(body: Any, mint: str) -> Decimal:
        try:
            entry = body["data"][mint]
            price = Decimal(str(entry["price"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            raise PriceQuoteError(f"no price for {mint} in quote response") from e
        if price <= 0:
            raise PriceQuoteError(f"non-positive price for {mint}: {price}")
        return price

    async def fetch_price(self, mint: str) -> Decimal:
        """Fetch the current USD price of ``mint``.

        Raises:
            PriceQuoteError: On transport failure, non-200 status or a
                response without a usable price.
        """
        session = self._get_session()
        try:
            async with session.get(self._quote_url, params={"ids": mint}, timeout=self._timeout) as resp:
                if resp.status != 200:
                    raise PriceQuoteError(f"price API returned HTTP {resp.status}")
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise PriceQuoteError(f"price request failed: {e}") from e
        return self._extract_price(body, mint)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class DexScreenerQuoteClient(PriceQuoteClient):
    """Quotes from DexScreener's ``/tokens/<mint>`` endpoint (first pair's USD price)."""

    def __init__(
        self,
        quote_url: str = DEFAULT_FALLBACK_QUOTE_URL,
        *,
        session: aiohttp.ClientSession | None = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(quote_url, session=session, request_timeout_seconds=request_timeout_seconds)

    @staticmethod
    def _extract_price(body: Any, mint: str) -> Decimal:
        try:
            price = Decimal(str(body["pairs"][0]["priceUsd"]))
        except (KeyError, IndexError, TypeError, InvalidOperation) as e:
            raise PriceQuoteError(f"no DexScreener pair price for {mint}") from e
        if price <= 0:
            raise PriceQuoteError(f"non-positive price for {mint}: {price}")
        return price

    async def fetch_price(self, mint: str) -> Decimal:
        session = self._get_session()
        try:
            async with session.get(f"{self._quote_url}/{mint}", timeout=self._timeout) as resp:
                if resp.status != 200:
                    raise PriceQuoteError(f"DexScreener returned HTTP {resp.status}")
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise PriceQuoteError(f"DexScreener request failed: {e}") from e
        return self._extract_price(body, mint)


class PriceOracleCache:
    """Caches the native asset's reference price.

    ``get_reference_price`` never raises: within the TTL it returns the cached
    value, otherwise it refreshes and, when the refresh fails, keeps serving
    the previous value (or the configured default before any success). After a
    failed refresh no new quote is requested for ``retry_after_seconds``.
    """

    def __init__(
        self,
        quote_client: PriceQuoteClient,
        *,
        native_mint: str,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        default_price: Decimal = DEFAULT_NATIVE_PRICE,
        retry_after_seconds: float = DEFAULT_RETRY_AFTER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._quote_client = quote_client
        self._native_mint = native_mint
        self._ttl = ttl_seconds
        self._default_price = default_price
        self._clock = clock
        self._retry_after = retry_after_seconds

        self._price: Decimal | None = None
        self._fetched_at: float | None = None
        self._failed_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def last_price(self) -> Decimal | None:
        return self._price

    def _is_fresh(self) -> bool:
        return self._fetched_at is not None and self._clock() - self._fetched_at < self._ttl

    def _in_retry_pause(self) -> bool:
        return self._failed_at is not None and self._clock() - self._failed_at < self._retry_after

    def _fallback(self) -> Decimal:
        return self._price if self._price is not None else self._default_price

    async def get_reference_price(self) -> Decimal:
        """Return the native asset USD price, refreshing when stale."""
        if self._price is not None and self._is_fresh():
            return self._price
        if self._in_retry_pause():
            return self._fallback()

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self._price is not None and self._is_fresh():
                return self._price
            if self._in_retry_pause():
                return self._fallback()
            try:
                price = await self._quote_client.fetch_price(self._native_mint)
            except PriceQuoteError as e:
                self._failed_at = self._clock()
                fallback = self._fallback()
                logger.warning("Reference price refresh failed (%s); using %s", e, fallback)
                return fallback
            self._price = price
            self._fetched_at = self._clock()
            self._failed_at = None
            return price
