"""Holder concentration analysis."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from mint_sentinel.detector.models import HolderConcentration, RiskLevel

if TYPE_CHECKING:
    from mint_sentinel.ingestor.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

TOP_HOLDER_COUNT = 10
HIGH_CONCENTRATION_PERCENT = 70.0
CLUSTER_CONCENTRATION_PERCENT = 50.0


class HolderConcentrationAnalyzer:
    """Computes the share of supply held by the ten largest token accounts."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        high_threshold: float = HIGH_CONCENTRATION_PERCENT,
        cluster_threshold: float = CLUSTER_CONCENTRATION_PERCENT,
    ) -> None:
        self._rpc = rpc
        self.high_threshold = high_threshold
        self.cluster_threshold = cluster_threshold

    async def analyze(self, mint: str) -> HolderConcentration:
        """Assess ``mint``; failures and empty supplies yield LOW."""
        try:
            holders = await self._rpc.get_token_largest_accounts(mint)
            supply = await self._rpc.get_token_supply(mint)
        except Exception as e:
            logger.warning("Holder concentration failed for %s; reporting LOW: %s", mint, e)
            return HolderConcentration.low()

        if supply.ui_amount <= 0 or not holders:
            return HolderConcentration.low()

        top = sorted(holders, key=lambda h: h.ui_amount, reverse=True)[:TOP_HOLDER_COUNT]
        held = sum((h.ui_amount for h in top), Decimal(0))
        percent = round(float(held / supply.ui_amount * 100), 2)

        if percent > self.high_threshold:
            level = RiskLevel.HIGH
        elif percent > self.cluster_threshold:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW
        return HolderConcentration(
            top10_percent=percent,
            holders_sampled=len(top),
            cluster_detected=percent > self.cluster_threshold,
            risk_level=level,
        )
