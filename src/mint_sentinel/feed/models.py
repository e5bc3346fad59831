"""Data models for the live feed."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol

from mint_sentinel.ingestor.models import ClassifiedSwap, now_utc

WHALE_SIGNAL = "WHALE_SIGNAL"


class SubscriptionState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    SUSPENDED = "suspended"
    STOPPED = "stopped"


class FeedMode(str, Enum):
    PUSH = "push"
    POLL = "poll"


@dataclass(frozen=True)
class SwapEvent:
    """A classified swap delivered to a feed consumer."""

    signature: str
    mint: str
    swap: ClassifiedSwap
    labels: tuple[str, ...] = ()
    observed_at: datetime = field(default_factory=now_utc)

    @property
    def is_whale(self) -> bool:
        return WHALE_SIGNAL in self.labels

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for Redis stream publishing."""
        return {
            "signature": self.signature,
            "mint": self.mint,
            **self.swap.to_dict(),
            "labels": list(self.labels),
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class ChartTick:
    """A one-second OHLC candle (flat when built from a single quote)."""

    time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal(0)

    @classmethod
    def flat(cls, time: int, price: Decimal) -> ChartTick:
        return cls(time=time, open=price, high=price, low=price, close=price)

    def to_dict(self) -> dict[str, object]:
        return {
            "time": self.time,
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": str(self.volume),
        }


@dataclass
class FeedStats:
    candidates_seen: int = 0
    duplicates_dropped: int = 0
    filtered_out: int = 0
    decoded: int = 0
    delivered: int = 0
    decode_failures: int = 0
    callback_errors: int = 0
    poll_cycles: int = 0
    poll_failures: int = 0
    push_disconnects: int = 0


@dataclass
class ChartStats:
    ticks_delivered: int = 0
    quote_failures: int = 0
    callback_errors: int = 0
    last_price: Decimal | None = None


class FeedHandle(Protocol):
    """Lifecycle surface shared by swap and chart subscriptions."""

    @property
    def state(self) -> SubscriptionState: ...

    async def start(self) -> None: ...

    async def suspend(self) -> None: ...

    async def resume(self) -> None: ...

    async def set_visible(self, visible: bool) -> None: ...

    async def stop(self) -> None: ...
