"""Swap classification from a transaction's balance deltas.

A transaction is a swap for a mint when the signers' combined holdings of
that mint changed. The native amount is derived from the signers' SOL
balance change with the network fee removed; stablecoin-only trades are
converted to native units through the reference price.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from mint_sentinel.ingestor.models import (
    LAMPORTS_PER_SOL,
    ClassifiedSwap,
    ParsedTransaction,
    SwapDirection,
    TokenBalance,
    TransactionParseError,
)

if TYPE_CHECKING:
    from mint_sentinel.ingestor.price_oracle import PriceOracleCache
    from mint_sentinel.ingestor.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
STABLECOIN_MINTS = frozenset({USDC_MINT, USDT_MINT})

DEFAULT_NOISE_THRESHOLD_SOL = Decimal("0.05")
DEFAULT_MIN_STABLECOIN_USD = Decimal("10")

NATIVE_QUANTUM = Decimal("0.000001")
USD_QUANTUM = Decimal("0.01")


def signer_asset_delta(tx: ParsedTransaction, mint: str) -> Decimal:
    """Net change of ``mint`` held by any signer of ``tx`` (post minus pre)."""
    signers = set(tx.signers)

    def total(balances: Iterable[TokenBalance]) -> Decimal:
        return sum(
            (b.ui_amount for b in balances if b.mint == mint and b.owner in signers),
            Decimal(0),
        )

    return total(tx.post_token_balances) - total(tx.pre_token_balances)


def signer_native_delta(tx: ParsedTransaction) -> int:
    """Net lamport change across signer accounts (fee included)."""
    return sum(tx.post_balances[i] - tx.pre_balances[i] for i in tx.signer_indexes)


def native_amount_net_of_fee(tx: ParsedTransaction) -> Decimal:
    """SOL actually exchanged by the signers, with the network fee removed.

    A spend includes the fee, so it is subtracted; a receipt was reduced by
    the fee, so it is added back.
    """
    raw = signer_native_delta(tx)
    if raw < 0:
        lamports = abs(raw) - tx.fee
    elif raw > 0:
        lamports = raw + tx.fee
    else:
        lamports = 0
    return Decimal(max(lamports, 0)) / LAMPORTS_PER_SOL


class SwapDecoder:
    """Classifies transactions as buys or sells of a given mint."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        price_oracle: PriceOracleCache,
        *,
        noise_threshold_sol: Decimal = DEFAULT_NOISE_THRESHOLD_SOL,
        min_stablecoin_usd: Decimal = DEFAULT_MIN_STABLECOIN_USD,
        stablecoin_mints: frozenset[str] = STABLECOIN_MINTS,
    ) -> None:
        self._rpc = rpc
        self._price_oracle = price_oracle
        self._noise_threshold = noise_threshold_sol
        self._min_stablecoin_usd = min_stablecoin_usd
        self._stablecoin_mints = stablecoin_mints

    async def decode(self, signature: str, mint: str) -> ClassifiedSwap | None:
        """Fetch and classify one transaction.

        Returns:
            The classified swap, or None when the transaction is unknown,
            malformed or does not move ``mint`` for its signers.

        Raises:
            LedgerClientError: If the transaction could not be fetched.
        """
        try:
            tx = await self._rpc.get_parsed_transaction(signature)
        except TransactionParseError as e:
            logger.warning("Skipping unparsable transaction %s: %s", signature, e)
            return None
        if tx is None:
            logger.debug("Transaction %s not available", signature)
            return None
        return await self.classify(tx, mint)

    async def classify(self, tx: ParsedTransaction, mint: str) -> ClassifiedSwap | None:
        """Classify an already fetched transaction."""
        asset_delta = signer_asset_delta(tx, mint)
        if asset_delta == 0:
            return None

        native_amount = native_amount_net_of_fee(tx)
        usd_amount = sum(
            (abs(signer_asset_delta(tx, stable)) for stable in self._stablecoin_mints),
            Decimal(0),
        )

        if native_amount < self._noise_threshold and usd_amount > self._min_stablecoin_usd:
            price = await self._price_oracle.get_reference_price()
            if price > 0:
                native_amount = usd_amount / price

        return ClassifiedSwap(
            direction=SwapDirection.BUY if asset_delta > 0 else SwapDirection.SELL,
            native_amount=native_amount.quantize(NATIVE_QUANTUM, rounding=ROUND_HALF_UP),
            usd_amount=usd_amount.quantize(USD_QUANTUM, rounding=ROUND_HALF_UP),
            asset_amount_delta=asset_delta,
            primary_signer=tx.signers[0] if tx.signers else tx.account_keys[0].pubkey,
        )
