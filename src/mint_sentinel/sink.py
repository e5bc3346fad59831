"""Downstream hand-off of delivered swap events.

The feed never waits on the sink: the pipeline schedules ``publish`` as a
background task and only logs its outcome.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from mint_sentinel.feed.models import SwapEvent

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Best-effort destination for delivered swap events."""

    async def publish(self, event: SwapEvent) -> None: ...


class RedisStreamSink:
    """Appends swap events to a capped Redis stream."""

    def __init__(self, redis: Redis, *, stream_key: str, maxlen: int) -> None:
        self._redis = redis
        self._stream_key = stream_key
        self._maxlen = maxlen

    async def publish(self, event: SwapEvent) -> None:
        payload = {"data": json.dumps(event.to_dict())}
        await self._redis.xadd(self._stream_key, payload, maxlen=self._maxlen, approximate=True)
        logger.debug("Published swap %s to %s", event.signature, self._stream_key)
