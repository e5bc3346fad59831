"""Tests for the chart tick stream."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

from mint_sentinel.feed.chart import ChartTickStream
from mint_sentinel.feed.models import ChartTick, SubscriptionState


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.002)

    await asyncio.wait_for(poll(), timeout=timeout)


def ticking_clock(start: int = 1_700_000_000) -> Callable[[], float]:
    """A clock that advances one second per reading."""
    counter = itertools.count(start)
    return lambda: float(next(counter))


def make_stream(price_source: Any, ticks: list[ChartTick], **kwargs: Any) -> ChartTickStream:
    async def on_tick(tick: ChartTick) -> None:
        ticks.append(tick)

    kwargs.setdefault("min_backoff_seconds", 0.001)
    kwargs.setdefault("max_backoff_seconds", 0.004)
    kwargs.setdefault("recheck_seconds", 0.001)
    return ChartTickStream("Mint111", on_tick, price_source, **kwargs)


class TestChartTickStream:
    """Tests for ChartTickStream."""

    async def test_emits_flat_ticks(self) -> None:
        ticks: list[ChartTick] = []
        stream = make_stream(AsyncMock(return_value=Decimal("2.5")), ticks, clock=ticking_clock())

        await stream.start()
        await eventually(lambda: len(ticks) >= 3)
        await stream.stop()

        times = [t.time for t in ticks]
        assert times == sorted(set(times))
        assert all(t.open == t.high == t.low == t.close == Decimal("2.5") for t in ticks)
        assert ticks[0].volume == 0

    async def test_at_most_one_quote_per_second(self) -> None:
        price_source = AsyncMock(return_value=Decimal("1"))
        ticks: list[ChartTick] = []
        stream = make_stream(price_source, ticks, clock=lambda: 1_700_000_000.4)

        await stream.start()
        await asyncio.sleep(0.05)
        await stream.stop()

        assert price_source.await_count == 1
        assert len(ticks) == 1

    async def test_non_positive_price_skipped(self) -> None:
        price_source = AsyncMock(return_value=Decimal("0"))
        ticks: list[ChartTick] = []
        stream = make_stream(price_source, ticks, clock=ticking_clock())

        await stream.start()
        await eventually(lambda: price_source.await_count >= 3)
        await stream.stop()

        assert ticks == []

    async def test_failures_back_off_to_ceiling(self) -> None:
        price_source = AsyncMock(side_effect=ConnectionError("quote API down"))
        stream = make_stream(price_source, [], clock=ticking_clock())

        await stream.start()
        await eventually(lambda: stream.stats.quote_failures >= 3)
        await stream.stop()

        assert stream.backoff_delay == pytest.approx(0.004)

    async def test_success_resets_backoff(self) -> None:
        outcomes: list[Any] = [ConnectionError("a"), ConnectionError("b"), Decimal("3")]

        async def price_source() -> Decimal:
            outcome = outcomes.pop(0) if outcomes else Decimal("3")
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        ticks: list[ChartTick] = []
        stream = make_stream(price_source, ticks, clock=ticking_clock())

        await stream.start()
        await eventually(lambda: len(ticks) >= 1)
        await stream.stop()

        assert stream.backoff_delay == pytest.approx(0.001)

    async def test_callback_error_does_not_stop_stream(self) -> None:
        calls = 0

        async def on_tick(tick: ChartTick) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("chart widget gone")

        stream = ChartTickStream(
            "Mint111",
            on_tick,
            AsyncMock(return_value=Decimal("1")),
            recheck_seconds=0.001,
            clock=ticking_clock(),
        )

        await stream.start()
        await eventually(lambda: calls >= 2)
        await stream.stop()

        assert stream.stats.callback_errors >= 2

    async def test_suspend_resume_stop(self) -> None:
        price_source = AsyncMock(return_value=Decimal("1"))
        stream = make_stream(price_source, [], clock=ticking_clock())

        await stream.start()
        await stream.suspend()
        assert stream.state is SubscriptionState.SUSPENDED
        count = price_source.await_count
        await asyncio.sleep(0.01)
        assert price_source.await_count == count

        await stream.set_visible(True)
        assert stream.state is SubscriptionState.STREAMING

        await stream.stop()
        await stream.resume()
        assert stream.state is SubscriptionState.STOPPED
