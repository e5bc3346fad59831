"""Funding-source tracing (bounded and strict).

A wallet's funder is the source of the earliest System Program transfer into
the wallet found within its most recent signatures. Only a small, fixed
window of history is inspected; wallets with a longer history simply report
no funder rather than triggering a deep scan.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from mint_sentinel.ingestor.models import LAMPORTS_PER_SOL, ParsedTransaction

if TYPE_CHECKING:
    from mint_sentinel.ingestor.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

DEFAULT_FUNDING_LOOKBACK = 5


@dataclass(frozen=True)
class FundingFingerprint:
    """Where a wallet's SOL came from."""

    wallet: str
    source: str
    signature: str
    amount_sol: Decimal
    block_time: int | None = None


def find_inbound_transfer(tx: ParsedTransaction, wallet: str) -> FundingFingerprint | None:
    """Return the first system transfer into ``wallet`` in ``tx``, if any."""
    for instruction in tx.instructions:
        if not instruction.is_system_transfer:
            continue
        info = instruction.info
        source = info.get("source")
        if info.get("destination") != wallet or not source or source == wallet:
            continue
        lamports = Decimal(str(info.get("lamports") or 0))
        return FundingFingerprint(
            wallet=wallet,
            source=str(source),
            signature=tx.signature,
            amount_sol=lamports / LAMPORTS_PER_SOL,
            block_time=tx.block_time,
        )
    return None


class FundingTracer:
    """Finds the funding source of a wallet from its recent history."""

    def __init__(self, rpc: SolanaRpcClient, *, lookback: int = DEFAULT_FUNDING_LOOKBACK) -> None:
        if lookback < 1:
            raise ValueError("lookback must be >= 1")
        self._rpc = rpc
        self._lookback = lookback

    async def find_funding_source(
        self,
        wallet: str,
        *,
        exclude_signature: str | None = None,
    ) -> FundingFingerprint | None:
        """Trace who funded ``wallet``.

        Args:
            wallet: Wallet to trace.
            exclude_signature: The buy itself; only history older than it is searched.

        Returns:
            The earliest inbound system transfer within the lookback window,
            or None if none is found.

        Raises:
            LedgerClientError: If the ledger could not be queried.
        """
        if exclude_signature is None:
            signatures = await self._rpc.get_signatures_for_address(wallet, limit=self._lookback)
        else:
            signatures = await self._rpc.get_signatures_for_address(
                wallet, limit=self._lookback, before=exclude_signature
            )
        # Newest first from the node; the funding transfer is the oldest.
        for info in reversed(signatures):
            if info.signature == exclude_signature or not info.succeeded:
                continue
            tx = await self._rpc.get_parsed_transaction(info.signature)
            if tx is None:
                continue
            fingerprint = find_inbound_transfer(tx, wallet)
            if fingerprint is not None:
                logger.debug("Wallet %s funded by %s (%s)", wallet, fingerprint.source, info.signature)
                return fingerprint
        return None

    @staticmethod
    def shared_funders(fingerprints: Iterable[FundingFingerprint]) -> dict[str, list[str]]:
        """Group wallets by funder, keeping only funders seen more than once."""
        by_source: dict[str, list[str]] = defaultdict(list)
        for fp in fingerprints:
            if fp.wallet not in by_source[fp.source]:
                by_source[fp.source].append(fp.wallet)
        return {source: wallets for source, wallets in by_source.items() if len(wallets) > 1}
