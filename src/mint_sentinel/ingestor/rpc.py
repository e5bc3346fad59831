"""Solana JSON-RPC client with endpoint rotation and failover.

This module provides:
- ``ResilientClient``: runs a caller-supplied query against a prioritized
  endpoint pool (primary first, the rest shuffled per call) with a timeout
  per attempt, pauses between attempts and a degraded flag for
  auth/rate-limit storms.
- ``SolanaRpcClient``: the ledger queries the core consumes, built on the
  rotation, with token-bucket rate limiting and optional Redis caching of
  immutable transaction records.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar, cast

import aiohttp
from websockets.exceptions import InvalidStatus, WebSocketException

from mint_sentinel.ingestor.models import (
    LogNotification,
    ParsedTransaction,
    SignatureInfo,
    TokenHolder,
    TokenSupply,
    TransactionParseError,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from mint_sentinel.ingestor.log_stream import LogStreamHandler

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default configuration
DEFAULT_REQUEST_TIMEOUT_SECONDS = 8.0
DEFAULT_RATE_LIMIT_PAUSE_SECONDS = 1.0
DEFAULT_TRANSIENT_PAUSE_SECONDS = 0.2
DEFAULT_DEGRADED_COOLDOWN_SECONDS = 60.0
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_TRANSACTION_CACHE_TTL_SECONDS = 3600

AUTH_OR_RATE_LIMIT_STATUS_CODES = (401, 403, 429)
# JSON-RPC server-side error range plus "internal error"; everything else
# (invalid params, unknown method) is a caller bug and is not retried.
TRANSIENT_RPC_ERROR_CODES = frozenset(range(-32099, -31999)) | {-32603}


class LedgerClientError(Exception):
    """Base exception for ledger client errors."""


class RpcTimeoutError(LedgerClientError):
    """Raised when a single endpoint attempt exceeds its timeout."""


class RateLimitError(LedgerClientError):
    """Raised when an endpoint rejects a call for auth or rate-limit reasons."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RpcTransportError(LedgerClientError):
    """Raised for retryable transport failures (network, HTTP 5xx)."""


class LogSubscriptionError(RpcTransportError):
    """Raised when a node refuses or fails to acknowledge a log subscription."""


class RpcResponseError(LedgerClientError):
    """Raised when the node answers with an error object or unexpected status."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class EndpointsExhaustedError(LedgerClientError):
    """Raised when every endpoint in the rotation failed."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class FailureKind(str, Enum):
    AUTH_OR_RATE_LIMIT = "auth_or_rate_limit"
    TRANSIENT = "transient"


def classify_failure(error: BaseException) -> FailureKind | None:
    """Classify an attempt failure; None means fatal (do not rotate)."""
    if isinstance(error, RateLimitError):
        return FailureKind.AUTH_OR_RATE_LIMIT
    if isinstance(error, aiohttp.ClientResponseError):
        if error.status in AUTH_OR_RATE_LIMIT_STATUS_CODES:
            return FailureKind.AUTH_OR_RATE_LIMIT
        return FailureKind.TRANSIENT if error.status >= 500 else None
    if isinstance(error, InvalidStatus):
        if error.response.status_code in AUTH_OR_RATE_LIMIT_STATUS_CODES:
            return FailureKind.AUTH_OR_RATE_LIMIT
        return FailureKind.TRANSIENT
    if isinstance(error, RpcResponseError):
        return FailureKind.TRANSIENT if error.code in TRANSIENT_RPC_ERROR_CODES else None
    if isinstance(
        error,
        (
            RpcTimeoutError,
            RpcTransportError,
            TimeoutError,
            aiohttp.ClientError,
            WebSocketException,
            ConnectionError,
            OSError,
        ),
    ):
        return FailureKind.TRANSIENT
    return None


def derive_ws_url(http_url: str) -> str:
    """Map an HTTP(S) RPC URL onto its conventional WebSocket URL."""
    if http_url.startswith("https://"):
        return "wss://" + http_url[len("https://") :]
    if http_url.startswith("http://"):
        return "ws://" + http_url[len("http://") :]
    return http_url


@dataclass
class Endpoint:
    """An RPC endpoint and its liveness/backoff state."""

    url: str
    ws_url: str
    last_failure_at: float | None = None
    consecutive_failures: int = 0

    @classmethod
    def from_url(cls, url: str, *, ws_url: str | None = None) -> Endpoint:
        return cls(url=url, ws_url=ws_url or derive_ws_url(url))


@dataclass
class RotationStats:
    calls: int = 0
    attempts: int = 0
    failures: int = 0
    exhausted: int = 0
    last_error: str | None = None


class ResilientClient(Generic[T]):
    """Runs ledger queries against a rotating endpoint pool.

    Index 0 of the pool is the designated primary and is always tried first;
    the remaining endpoints are shuffled on every call so that fallbacks share
    the load. Each attempt is bounded by ``request_timeout_seconds``; there is
    no overall deadline across the rotation.

    Example:
        ```python
        client = ResilientClient([Endpoint.from_url(u) for u in urls])
        slot = await client.execute(lambda ep: fetch_slot(ep.url))
        ```
    """

    def __init__(
        self,
        endpoints: Sequence[Endpoint],
        *,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        rate_limit_pause_seconds: float = DEFAULT_RATE_LIMIT_PAUSE_SECONDS,
        transient_pause_seconds: float = DEFAULT_TRANSIENT_PAUSE_SECONDS,
        degraded_cooldown_seconds: float = DEFAULT_DEGRADED_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        if not endpoints:
            raise ValueError("at least one RPC endpoint is required")
        self._endpoints = list(endpoints)
        self._timeout = request_timeout_seconds
        self._rate_limit_pause = rate_limit_pause_seconds
        self._transient_pause = transient_pause_seconds
        self._degraded_cooldown = degraded_cooldown_seconds
        self._clock = clock
        self._rng = rng or random.Random()

        self._degraded_since: float | None = None
        self._stats = RotationStats()

    @property
    def endpoints(self) -> list[Endpoint]:
        return list(self._endpoints)

    @property
    def primary(self) -> Endpoint:
        return self._endpoints[0]

    @property
    def is_degraded(self) -> bool:
        return self._degraded_since is not None

    @property
    def stats(self) -> RotationStats:
        return self._stats

    def _ordered_endpoints(self) -> list[Endpoint]:
        fallbacks = self._endpoints[1:]
        self._rng.shuffle(fallbacks)
        return [self._endpoints[0], *fallbacks]

    def _maybe_recover(self) -> None:
        if self._degraded_since is None:
            return
        if self._clock() - self._degraded_since > self._degraded_cooldown:
            self._degraded_since = None
            logger.info("RPC pool cooldown elapsed; attempting recovery from degraded status")

    def _mark_failure(self, endpoint: Endpoint) -> None:
        endpoint.last_failure_at = self._clock()
        endpoint.consecutive_failures += 1
        self._stats.failures += 1

    async def execute(self, op: Callable[[Endpoint], Awaitable[T]]) -> T:
        """Run ``op`` against endpoints in rotation order until one succeeds.

        Args:
            op: Query to run; receives the endpoint to use.

        Returns:
            The first successful result.

        Raises:
            EndpointsExhaustedError: If every endpoint failed with a
                rotatable error.
            Exception: Any error not recognised as transient, unchanged.
        """
        self._stats.calls += 1
        self._maybe_recover()

        ordered = self._ordered_endpoints()
        last_error: BaseException | None = None

        for position, endpoint in enumerate(ordered):
            is_last = position == len(ordered) - 1
            self._stats.attempts += 1
            try:
                try:
                    result = await asyncio.wait_for(op(endpoint), timeout=self._timeout)
                except TimeoutError as e:
                    raise RpcTimeoutError(
                        f"RPC attempt timed out after {self._timeout:.1f}s ({endpoint.url})"
                    ) from e
            except Exception as e:
                kind = classify_failure(e)
                if kind is None:
                    raise
                last_error = e
                self._stats.last_error = str(e)
                self._mark_failure(endpoint)

                if kind is FailureKind.AUTH_OR_RATE_LIMIT:
                    if not self.is_degraded:
                        logger.warning("RPC endpoint %s rejected call (%s); rotating", endpoint.url, e)
                    self._degraded_since = self._clock()
                    if not is_last:
                        await asyncio.sleep(self._rate_limit_pause)
                    continue

                logger.warning("RPC endpoint %s failed: %s", endpoint.url, e)
                if not is_last:
                    await asyncio.sleep(self._transient_pause)
                continue

            endpoint.consecutive_failures = 0
            return result

        self._stats.exhausted += 1
        raise EndpointsExhaustedError(
            f"All {len(ordered)} RPC endpoints failed: {last_error}",
            last_error=last_error,
        ) from last_error


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


LogsCallback = Callable[[LogNotification], Awaitable[None]]
ClosedCallback = Callable[[BaseException | None], Awaitable[None]]


class SolanaRpcClient:
    """Solana ledger queries over a resilient endpoint pool.

    Example:
        ```python
        client = SolanaRpcClient(["https://mainnet.helius-rpc.com/?api-key=..."])
        tx = await client.get_parsed_transaction(signature)
        sigs = await client.get_signatures_for_address(mint, limit=100)
        await client.aclose()
        ```
    """

    def __init__(
        self,
        urls: Sequence[str],
        *,
        ws_url: str | None = None,
        commitment: str = "confirmed",
        session: aiohttp.ClientSession | None = None,
        redis: Redis | None = None,
        transaction_cache_ttl_seconds: int = DEFAULT_TRANSACTION_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        rate_limit_pause_seconds: float = DEFAULT_RATE_LIMIT_PAUSE_SECONDS,
        transient_pause_seconds: float = DEFAULT_TRANSIENT_PAUSE_SECONDS,
        degraded_cooldown_seconds: float = DEFAULT_DEGRADED_COOLDOWN_SECONDS,
        resilient: ResilientClient[Any] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            urls: RPC endpoints in priority order; the first is the primary.
            ws_url: WebSocket URL for the primary (derived when omitted).
            commitment: Commitment level for queries and subscriptions.
            session: Optional shared aiohttp session (created lazily otherwise).
            redis: Optional Redis client for caching transaction records.
            transaction_cache_ttl_seconds: Cache TTL for transaction records.
            max_requests_per_second: Outbound request rate cap.
            request_timeout_seconds: Per-endpoint attempt timeout.
            rate_limit_pause_seconds: Pause after an auth/rate-limit failure.
            transient_pause_seconds: Pause after a transient failure.
            degraded_cooldown_seconds: Degraded-flag cooldown.
            resilient: Pre-built rotation (overrides the endpoint arguments).
        """
        if resilient is None:
            endpoints = [
                Endpoint.from_url(url, ws_url=ws_url if i == 0 else None) for i, url in enumerate(urls)
            ]
            resilient = ResilientClient(
                endpoints,
                request_timeout_seconds=request_timeout_seconds,
                rate_limit_pause_seconds=rate_limit_pause_seconds,
                transient_pause_seconds=transient_pause_seconds,
                degraded_cooldown_seconds=degraded_cooldown_seconds,
            )
        self._resilient = resilient
        self._commitment = commitment
        self._session = session
        self._owns_session = session is None
        self._redis = redis
        self._cache_ttl = transaction_cache_ttl_seconds
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._request_id = 0
        self._cache_prefix = "solana:"

    @property
    def resilient(self) -> ResilientClient[Any]:
        return self._resilient

    @property
    def commitment(self) -> str:
        return self._commitment

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl or self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def _post(self, endpoint: Endpoint, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request to one endpoint."""
        await self._rate_limiter.acquire()
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        session = self._get_session()
        try:
            async with session.post(endpoint.url, json=payload) as resp:
                if resp.status in AUTH_OR_RATE_LIMIT_STATUS_CODES:
                    raise RateLimitError(f"{method} rejected with HTTP {resp.status}", status=resp.status)
                if resp.status >= 500:
                    raise RpcTransportError(f"{method} failed with HTTP {resp.status}")
                if resp.status != 200:
                    raise RpcResponseError(f"{method} failed with HTTP {resp.status}", code=resp.status)
                body = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RpcTransportError(f"{method} transport error: {e}") from e
        except json.JSONDecodeError as e:
            raise RpcTransportError(f"{method} returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise RpcTransportError(f"{method} returned a non-object body")
        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            if code == 429:
                raise RateLimitError(f"{method}: {message}", status=429)
            raise RpcResponseError(f"{method}: {message}", code=code)
        return body.get("result")

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Execute a JSON-RPC call with rotation and failover.

        Raises:
            EndpointsExhaustedError: If every endpoint failed.
            RpcResponseError: If the node rejected the request itself.
        """
        return await self._resilient.execute(lambda endpoint: self._post(endpoint, method, params or []))

    async def get_parsed_transaction(self, signature: str) -> ParsedTransaction | None:
        """Fetch a transaction with jsonParsed encoding.

        Returns:
            The parsed record, or None when the node does not know it (yet).

        Raises:
            TransactionParseError: If the record does not match the schema.
        """
        cache_key = f"{self._cache_prefix}tx:{signature}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            raw = json.loads(cached)
        else:
            raw = await self.request(
                "getTransaction",
                [
                    signature,
                    {
                        "encoding": "jsonParsed",
                        "maxSupportedTransactionVersion": 0,
                        "commitment": self._commitment,
                    },
                ],
            )
            if raw is None:
                return None
            await self._set_cached(cache_key, json.dumps(raw))

        try:
            return ParsedTransaction.from_rpc(signature, cast(dict[str, Any], raw))
        except TransactionParseError:
            raise
        except (ValueError, TypeError, AttributeError) as e:
            raise TransactionParseError(f"transaction {signature}: {e}") from e

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int = 10,
        before: str | None = None,
    ) -> list[SignatureInfo]:
        """List recent signatures touching an account, newest first."""
        options: dict[str, Any] = {"limit": limit, "commitment": self._commitment}
        if before:
            options["before"] = before
        raw = await self.request("getSignaturesForAddress", [address, options])
        signatures: list[SignatureInfo] = []
        for item in raw or []:
            try:
                signatures.append(SignatureInfo.from_rpc(item))
            except (TransactionParseError, ValueError, TypeError) as e:
                logger.debug("Skipping malformed signature entry for %s: %s", address, e)
        return signatures

    async def get_token_largest_accounts(self, mint: str) -> list[TokenHolder]:
        """Fetch the largest token accounts of a mint."""
        raw = await self.request("getTokenLargestAccounts", [mint, {"commitment": self._commitment}])
        value = (raw or {}).get("value") or []
        return [TokenHolder.from_rpc(item) for item in value]

    async def get_token_supply(self, mint: str) -> TokenSupply:
        """Fetch the total supply of a mint."""
        raw = await self.request("getTokenSupply", [mint, {"commitment": self._commitment}])
        value = (raw or {}).get("value")
        if not isinstance(value, dict):
            raise TransactionParseError(f"token supply for {mint}: missing value")
        return TokenSupply.from_rpc(value)

    async def subscribe_logs(
        self,
        address: str,
        *,
        on_logs: LogsCallback,
        on_closed: ClosedCallback | None = None,
    ) -> LogStreamHandler:
        """Open a push log subscription on the first endpoint that accepts it.

        The returned handler is already acknowledged by the node.

        Raises:
            EndpointsExhaustedError: If no endpoint accepted the subscription.
        """
        from mint_sentinel.ingestor.log_stream import LogStreamHandler

        async def open_on(endpoint: Endpoint) -> LogStreamHandler:
            handler = LogStreamHandler(
                ws_url=endpoint.ws_url,
                address=address,
                on_logs=on_logs,
                on_closed=on_closed,
                commitment=self._commitment,
            )
            await handler.open()
            return handler

        return await self._resilient.execute(open_on)

    async def health_check(self) -> bool:
        """Check if any endpoint reports healthy."""
        try:
            result = await self.request("getHealth")
        except LedgerClientError:
            return False
        return result == "ok"

    async def aclose(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
