"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Mint Sentinel core, loading and validating environment variables at
startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

SOL_MINT = "So11111111111111111111111111111111111111112"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


class RpcSettings(BaseSettings):
    """Solana JSON-RPC endpoint pool settings."""

    model_config = SettingsConfigDict(env_prefix="RPC_", extra="ignore")

    urls: str = Field(
        default=DEFAULT_RPC_URL,
        alias="RPC_URLS",
        description="Comma-separated RPC endpoints; the first one is the primary",
    )
    ws_url: str | None = Field(
        default=None,
        alias="RPC_WS_URL",
        description="WebSocket URL for the primary endpoint (derived from the HTTP URL if unset)",
    )
    commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed",
        alias="RPC_COMMITMENT",
        description="Commitment level for queries and log subscriptions",
    )
    request_timeout_seconds: float = Field(
        default=8.0,
        alias="RPC_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="Per-endpoint attempt timeout",
    )
    rate_limit_pause_seconds: float = Field(
        default=1.0,
        alias="RPC_RATE_LIMIT_PAUSE_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause before the next endpoint after an auth/rate-limit failure",
    )
    transient_pause_seconds: float = Field(
        default=0.2,
        alias="RPC_TRANSIENT_PAUSE_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause before the next endpoint after a transient failure",
    )
    degraded_cooldown_seconds: float = Field(
        default=60.0,
        alias="RPC_DEGRADED_COOLDOWN_SECONDS",
        ge=0.0,
        le=3600.0,
        description="How long the degraded flag stays set after a rate-limit failure",
    )
    max_requests_per_second: float = Field(
        default=25.0,
        alias="RPC_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Outbound JSON-RPC request rate cap",
    )
    transaction_cache_ttl_seconds: int = Field(
        default=3600,
        alias="RPC_TRANSACTION_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="Redis TTL for cached parsed transactions",
    )

    @field_validator("urls")
    @classmethod
    def validate_urls(cls, v: str) -> str:
        """Validate that every configured endpoint is an HTTP(S) URL."""
        urls = [u.strip() for u in v.split(",") if u.strip()]
        if not urls:
            raise ValueError("RPC_URLS must list at least one endpoint")
        for url in urls:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"RPC endpoint must be an HTTP(S) URL: {url}")
        return ",".join(urls)

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str | None) -> str | None:
        """Validate WebSocket URL format."""
        if v is None:
            return v
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("RPC_WS_URL must start with ws:// or wss://")
        return v

    @property
    def endpoint_urls(self) -> list[str]:
        """Endpoint URLs in priority order."""
        return self.urls.split(",")


class RedisSettings(BaseSettings):
    """Redis connection settings (optional transaction cache and swap stream)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; leave unset to disable caching and publishing",
    )
    swap_stream_key: str = Field(
        default="mint_sentinel:swaps",
        alias="REDIS_SWAP_STREAM_KEY",
        description="Redis stream that receives delivered swap events",
    )
    swap_stream_maxlen: int = Field(
        default=10_000,
        alias="REDIS_SWAP_STREAM_MAXLEN",
        ge=100,
        le=10_000_000,
        description="Approximate maximum length of the swap stream",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        """Check if Redis is configured."""
        return self.url is not None


class PriceSettings(BaseSettings):
    """Reference price oracle settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_", extra="ignore")

    quote_url: str = Field(
        default="https://api.jup.ag/price/v2",
        alias="PRICE_QUOTE_URL",
        description="HTTP price-quote endpoint (Jupiter price v2 compatible)",
    )
    fallback_quote_url: str = Field(
        default="https://api.dexscreener.com/latest/dex/tokens",
        alias="PRICE_FALLBACK_QUOTE_URL",
        description="DexScreener tokens endpoint tried for chart ticks when the primary quote fails",
    )
    native_mint: str = Field(
        default=SOL_MINT,
        alias="PRICE_NATIVE_MINT",
        description="Mint whose price normalizes stablecoin-denominated flows",
    )
    cache_ttl_seconds: float = Field(
        default=60.0,
        alias="PRICE_CACHE_TTL_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Reference price cache TTL",
    )
    default_native_price: Decimal = Field(
        default=Decimal("150"),
        alias="PRICE_DEFAULT_NATIVE_PRICE",
        gt=Decimal("0"),
        description="Conservative fallback when no price was ever fetched",
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        alias="PRICE_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Timeout for a single quote request",
    )
    retry_after_seconds: float = Field(
        default=5.0,
        alias="PRICE_RETRY_AFTER_SECONDS",
        ge=0.0,
        le=600.0,
        description="Pause before another reference refresh after a failed one",
    )

    @field_validator("quote_url", "fallback_quote_url")
    @classmethod
    def validate_quote_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("price quote URLs must be HTTP(S) endpoints")
        return v.rstrip("/")


class DecoderSettings(BaseSettings):
    """Swap decoder thresholds."""

    model_config = SettingsConfigDict(env_prefix="DECODER_", extra="ignore")

    noise_threshold_sol: Decimal = Field(
        default=Decimal("0.05"),
        alias="DECODER_NOISE_THRESHOLD_SOL",
        ge=Decimal("0"),
        description="Native deltas below this are treated as routing noise",
    )
    min_stablecoin_usd: Decimal = Field(
        default=Decimal("10"),
        alias="DECODER_MIN_STABLECOIN_USD",
        ge=Decimal("0"),
        description="Stablecoin flow above which a low-SOL swap is re-denominated",
    )


class FeedSettings(BaseSettings):
    """Live feed coordinator settings."""

    model_config = SettingsConfigDict(env_prefix="FEED_", extra="ignore")

    dedupe_capacity: int = Field(
        default=1000,
        alias="FEED_DEDUPE_CAPACITY",
        ge=1,
        le=1_000_000,
        description="Signatures remembered per subscription",
    )
    event_cache_capacity: int = Field(
        default=500,
        alias="FEED_EVENT_CACHE_CAPACITY",
        ge=1,
        le=1_000_000,
        description="Decoded events remembered per subscription",
    )
    poll_floor_seconds: float = Field(
        default=2.0,
        alias="FEED_POLL_FLOOR_SECONDS",
        gt=0.0,
        le=600.0,
        description="Polling interval after a successful poll",
    )
    poll_ceiling_seconds: float = Field(
        default=60.0,
        alias="FEED_POLL_CEILING_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Maximum polling backoff",
    )
    poll_signature_limit: int = Field(
        default=10,
        alias="FEED_POLL_SIGNATURE_LIMIT",
        ge=1,
        le=1000,
        description="Signatures fetched per poll",
    )
    chart_max_backoff_seconds: float = Field(
        default=30.0,
        alias="FEED_CHART_MAX_BACKOFF_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Maximum chart polling backoff",
    )
    whale_native_threshold: Decimal = Field(
        default=Decimal("25"),
        alias="FEED_WHALE_NATIVE_THRESHOLD",
        ge=Decimal("0"),
        description="SOL amount above which a swap is labelled WHALE_SIGNAL",
    )
    whale_usd_threshold: Decimal = Field(
        default=Decimal("3750"),
        alias="FEED_WHALE_USD_THRESHOLD",
        ge=Decimal("0"),
        description="Stablecoin amount above which a swap is labelled WHALE_SIGNAL",
    )

    @field_validator("poll_ceiling_seconds")
    @classmethod
    def validate_ceiling(cls, v: float, info: ValidationInfo) -> float:
        floor = info.data.get("poll_floor_seconds")
        if floor is not None and v < floor:
            raise ValueError("FEED_POLL_CEILING_SECONDS must be >= FEED_POLL_FLOOR_SECONDS")
        return v


class RiskSettings(BaseSettings):
    """Cluster risk analyzer settings."""

    model_config = SettingsConfigDict(env_prefix="RISK_", extra="ignore")

    signature_limit: int = Field(
        default=100,
        alias="RISK_SIGNATURE_LIMIT",
        ge=1,
        le=1000,
        description="Recent signatures inspected for temporal density",
    )
    early_buyer_count: int = Field(
        default=5,
        alias="RISK_EARLY_BUYER_COUNT",
        ge=2,
        le=50,
        description="Earliest buyers inspected for a shared funding source",
    )
    funding_lookback: int = Field(
        default=5,
        alias="RISK_FUNDING_LOOKBACK",
        ge=1,
        le=100,
        description="Recent signatures per buyer searched for the funding transfer",
    )
    shared_funder_floor: float = Field(
        default=85.0,
        alias="RISK_SHARED_FUNDER_FLOOR",
        ge=0.0,
        le=100.0,
        description="Score floor when two or more early buyers share a funder",
    )
    bucket_granularity: Literal["second", "slot"] = Field(
        default="second",
        alias="RISK_BUCKET_GRANULARITY",
        description="Bucket signatures by block time (second) or by slot",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from mint_sentinel.config import get_settings

        settings = get_settings()
        print(settings.rpc.endpoint_urls)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    rpc: RpcSettings = Field(
        default_factory=lambda: RpcSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    price: PriceSettings = Field(
        default_factory=lambda: PriceSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    decoder: DecoderSettings = Field(
        default_factory=lambda: DecoderSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    feed: FeedSettings = Field(
        default_factory=lambda: FeedSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    risk: RiskSettings = Field(
        default_factory=lambda: RiskSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        RPC providers commonly embed API keys in the query string, so those
        are masked along with Redis credentials.
        """
        return {
            "rpc": {
                "endpoints": ", ".join(self._redact_url(u) for u in self.rpc.endpoint_urls),
                "ws_url": self._redact_url(self.rpc.ws_url) if self.rpc.ws_url else "(derived)",
                "commitment": self.rpc.commitment,
                "request_timeout_seconds": str(self.rpc.request_timeout_seconds),
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "price": {
                "quote_url": self.price.quote_url,
                "cache_ttl_seconds": str(self.price.cache_ttl_seconds),
                "default_native_price": str(self.price.default_native_price),
            },
            "feed": {
                "dedupe_capacity": str(self.feed.dedupe_capacity),
                "poll_floor_seconds": str(self.feed.poll_floor_seconds),
                "poll_ceiling_seconds": str(self.feed.poll_ceiling_seconds),
            },
            "risk": {
                "signature_limit": str(self.risk.signature_limit),
                "bucket_granularity": self.risk.bucket_granularity,
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact passwords and api-key query parameters from a URL."""
        redacted = url
        if "?" in redacted:
            base, _, query = redacted.partition("?")
            params = []
            for pair in query.split("&"):
                key, sep, _value = pair.partition("=")
                if sep and "key" in key.lower():
                    params.append(f"{key}=***")
                else:
                    params.append(pair)
            redacted = f"{base}?{'&'.join(params)}"
        if "@" in redacted and "://" in redacted:
            protocol_end = redacted.index("://") + 3
            at_pos = redacted.index("@")
            creds_part = redacted[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{redacted[:protocol_end]}{username}:***@{redacted[at_pos + 1 :]}"
        return redacted


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
