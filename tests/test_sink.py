"""Tests for the Redis stream sink."""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock

from mint_sentinel.feed.models import WHALE_SIGNAL, SwapEvent
from mint_sentinel.ingestor.models import ClassifiedSwap, SwapDirection
from mint_sentinel.sink import RedisStreamSink


async def test_publish_appends_capped_stream_entry(mint, wallet, signature) -> None:
    redis = AsyncMock()
    sink = RedisStreamSink(redis, stream_key="swaps", maxlen=500)
    event = SwapEvent(
        signature=signature,
        mint=mint,
        swap=ClassifiedSwap(
            direction=SwapDirection.SELL,
            native_amount=Decimal("30"),
            usd_amount=Decimal("0"),
            asset_amount_delta=Decimal("-5"),
            primary_signer=wallet,
        ),
        labels=(WHALE_SIGNAL,),
    )

    await sink.publish(event)

    redis.xadd.assert_awaited_once()
    key, fields = redis.xadd.call_args.args
    assert key == "swaps"
    assert redis.xadd.call_args.kwargs == {"maxlen": 500, "approximate": True}
    data = json.loads(fields["data"])
    assert data["direction"] == "SELL"
    assert data["asset_amount_delta"] == "-5"
    assert data["labels"] == [WHALE_SIGNAL]
