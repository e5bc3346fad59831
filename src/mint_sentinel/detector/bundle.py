"""Bundle (coordinated launch) detection.

This module estimates whether a mint's recent activity was coordinated: a
burst of transactions landing in the same block time, or early buyers that
were all funded by the same wallet.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Sequence
from typing import TYPE_CHECKING, Literal

from mint_sentinel.detector.models import BundleRisk
from mint_sentinel.ingestor.decoder import signer_asset_delta
from mint_sentinel.ingestor.models import SignatureInfo
from mint_sentinel.profiler.funding import FundingFingerprint, FundingTracer

if TYPE_CHECKING:
    from mint_sentinel.ingestor.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

BucketGranularity = Literal["second", "slot"]

DEFAULT_SIGNATURE_LIMIT = 100
DEFAULT_EARLY_BUYER_COUNT = 5
DEFAULT_SHARED_FUNDER_FLOOR = 85.0


def bucket_density(signatures: Sequence[SignatureInfo], granularity: BucketGranularity = "second") -> float:
    """Percentage of signatures in the most populated time bucket.

    Signatures without a block time are bucketed by slot.
    """
    if not signatures:
        return 0.0
    buckets: Counter[tuple[str, int]] = Counter()
    for info in signatures:
        if granularity == "second" and info.block_time is not None:
            buckets[("t", info.block_time)] += 1
        else:
            buckets[("s", info.slot)] += 1
    largest = max(buckets.values())
    return largest / len(signatures) * 100


class BundleAnalyzer:
    """Scores a mint's recent activity for coordinated buying.

    The score is the bucket density of the latest signatures. If two or more
    of the earliest buyers in that window share a funding source the score is
    floored at ``shared_funder_floor``.

    Attributes:
        signature_limit: Number of recent signatures analysed (default 100).
        early_buyer_count: Earliest successful signatures inspected for
            buyers (default 5).
        shared_funder_floor: Minimum score when funders are shared (default 85).
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        funding_tracer: FundingTracer,
        *,
        signature_limit: int = DEFAULT_SIGNATURE_LIMIT,
        early_buyer_count: int = DEFAULT_EARLY_BUYER_COUNT,
        shared_funder_floor: float = DEFAULT_SHARED_FUNDER_FLOOR,
        bucket_granularity: BucketGranularity = "second",
    ) -> None:
        self._rpc = rpc
        self._funding = funding_tracer
        self.signature_limit = signature_limit
        self.early_buyer_count = early_buyer_count
        self.shared_funder_floor = shared_funder_floor
        self.bucket_granularity = bucket_granularity

    async def analyze(self, mint: str) -> BundleRisk:
        """Assess ``mint``; any internal failure yields a LOW assessment."""
        try:
            return await self._analyze(mint)
        except Exception as e:
            logger.warning("Bundle analysis failed for %s; reporting LOW: %s", mint, e)
            return BundleRisk.low()

    async def _analyze(self, mint: str) -> BundleRisk:
        signatures = await self._rpc.get_signatures_for_address(mint, limit=self.signature_limit)
        if not signatures:
            return BundleRisk.low()

        score = bucket_density(signatures, self.bucket_granularity)

        shared = await self._shared_funders(mint, signatures)
        if shared:
            logger.info("Early buyers of %s share funders: %s", mint, ", ".join(shared))
            score = max(score, self.shared_funder_floor)

        return BundleRisk.from_score(
            score,
            shared_funders=tuple(shared),
            signatures_analyzed=len(signatures),
        )

    async def _early_buyer(self, signature: str, mint: str) -> str | None:
        tx = await self._rpc.get_parsed_transaction(signature)
        if tx is None or not tx.signers:
            return None
        if signer_asset_delta(tx, mint) <= 0:
            return None
        return tx.signers[0]

    async def _shared_funders(self, mint: str, signatures: Sequence[SignatureInfo]) -> list[str]:
        # Node returns newest first.
        earliest = [s.signature for s in reversed(signatures) if s.succeeded][: self.early_buyer_count]
        if len(earliest) < 2:
            return []

        buyer_results = await asyncio.gather(
            *(self._early_buyer(sig, mint) for sig in earliest),
            return_exceptions=True,
        )
        buyers: dict[str, str] = {}
        for sig, result in zip(earliest, buyer_results, strict=True):
            if isinstance(result, BaseException):
                logger.debug("Could not resolve buyer of %s: %s", sig, result)
                continue
            if result is not None and result not in buyers:
                buyers[result] = sig
        if len(buyers) < 2:
            return []

        trace_results = await asyncio.gather(
            *(
                self._funding.find_funding_source(wallet, exclude_signature=sig)
                for wallet, sig in buyers.items()
            ),
            return_exceptions=True,
        )
        fingerprints: list[FundingFingerprint] = []
        for wallet, result in zip(buyers, trace_results, strict=True):
            if isinstance(result, BaseException):
                logger.debug("Funding trace failed for %s: %s", wallet, result)
                continue
            if result is not None:
                fingerprints.append(result)

        return sorted(FundingTracer.shared_funders(fingerprints))
