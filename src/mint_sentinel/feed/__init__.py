"""Live feed - swap subscriptions with push/poll failover and chart ticks."""

from mint_sentinel.feed.chart import ChartTickStream
from mint_sentinel.feed.coordinator import LiveFeedCoordinator, SwapFeedSubscription
from mint_sentinel.feed.dedupe import BoundedCache, DedupeWindow
from mint_sentinel.feed.models import ChartTick, FeedMode, SubscriptionState, SwapEvent

__all__ = [
    "BoundedCache",
    "ChartTick",
    "ChartTickStream",
    "DedupeWindow",
    "FeedMode",
    "LiveFeedCoordinator",
    "SubscriptionState",
    "SwapEvent",
    "SwapFeedSubscription",
]
