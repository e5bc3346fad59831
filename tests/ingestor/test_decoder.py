"""Tests for swap classification."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from mint_sentinel.ingestor.decoder import (
    USDC_MINT,
    SwapDecoder,
    native_amount_net_of_fee,
    signer_asset_delta,
)
from mint_sentinel.ingestor.models import ParsedTransaction, SwapDirection, TransactionParseError
from mint_sentinel.ingestor.rpc import EndpointsExhaustedError

POOL = "Pool111111111111111111111111111111111111111"
ROUTER = "Router1111111111111111111111111111111111111"


@pytest.fixture
def price_oracle() -> MagicMock:
    oracle = MagicMock()
    oracle.get_reference_price = AsyncMock(return_value=Decimal("150"))
    return oracle


@pytest.fixture
def rpc() -> MagicMock:
    client = MagicMock()
    client.get_parsed_transaction = AsyncMock()
    return client


@pytest.fixture
def decoder(rpc: MagicMock, price_oracle: MagicMock) -> SwapDecoder:
    return SwapDecoder(rpc, price_oracle)


class TestBalanceDeltas:
    def test_asset_delta_counts_every_signer(self, make_transaction, wallet, mint) -> None:
        tx = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(
                signers=[wallet, ROUTER],
                others=[POOL],
                pre_token=[(1, mint, ROUTER, "5")],
                post_token=[(0, mint, wallet, "20"), (1, mint, ROUTER, "0"), (2, mint, POOL, "999")],
            ),
        )
        assert signer_asset_delta(tx, mint) == Decimal("15")

    def test_native_receipt_adds_fee_back(self, make_transaction) -> None:
        tx = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(pre_balances=[1_000_000_000], post_balances=[1_499_995_000], fee=5000),
        )
        assert native_amount_net_of_fee(tx) == Decimal("0.5")


class TestSwapDecoder:
    """Tests for SwapDecoder.decode."""

    async def test_buy_scenario(self, decoder, rpc, make_transaction, wallet, mint) -> None:
        rpc.get_parsed_transaction.return_value = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(
                pre_balances=[10_000_000_000],
                post_balances=[9_994_990_000],
                fee=5_000,
                post_token=[(0, mint, wallet, "1000")],
            ),
        )

        swap = await decoder.decode("sig", mint)

        assert swap is not None
        assert swap.direction is SwapDirection.BUY
        assert swap.native_amount == Decimal("0.005005")
        assert swap.asset_amount_delta == Decimal("1000")
        assert swap.primary_signer == wallet

    async def test_sell(self, decoder, rpc, make_transaction, wallet, mint) -> None:
        rpc.get_parsed_transaction.return_value = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(
                pre_balances=[1_000_000_000],
                post_balances=[1_499_995_000],
                pre_token=[(0, mint, wallet, "1000")],
                post_token=[(0, mint, wallet, "0")],
            ),
        )

        swap = await decoder.decode("sig", mint)

        assert swap is not None
        assert swap.direction is SwapDirection.SELL
        assert swap.native_amount == Decimal("0.5")
        assert swap.asset_amount_delta == Decimal("-1000")

    async def test_zero_signer_delta_is_not_a_swap(self, decoder, rpc, make_transaction, wallet, mint) -> None:
        rpc.get_parsed_transaction.return_value = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(
                pre_balances=[1_000_000_000],
                post_balances=[999_995_000],
                pre_token=[(0, mint, wallet, "10")],
                post_token=[(0, mint, wallet, "10")],
            ),
        )

        assert await decoder.decode("sig", mint) is None

    async def test_offsetting_signers_is_not_a_swap(self, decoder, rpc, make_transaction, wallet, mint) -> None:
        rpc.get_parsed_transaction.return_value = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(
                signers=[wallet, ROUTER],
                pre_token=[(0, mint, wallet, "100")],
                post_token=[(0, mint, wallet, "0"), (1, mint, ROUTER, "100")],
            ),
        )

        assert await decoder.decode("sig", mint) is None

    async def test_non_signer_movement_ignored(self, decoder, rpc, make_transaction, mint) -> None:
        rpc.get_parsed_transaction.return_value = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(others=[POOL], post_token=[(1, mint, POOL, "50")]),
        )

        assert await decoder.decode("sig", mint) is None

    async def test_stablecoin_trade_converted_to_native(
        self, decoder, rpc, price_oracle, make_transaction, wallet, mint
    ) -> None:
        rpc.get_parsed_transaction.return_value = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(
                pre_balances=[1_000_000_000, 0, 0],
                post_balances=[999_995_000, 0, 0],
                pre_token=[(1, USDC_MINT, wallet, "100")],
                post_token=[(1, USDC_MINT, wallet, "0"), (2, mint, wallet, "500")],
                others=[POOL, POOL + "2"],
            ),
        )

        swap = await decoder.decode("sig", mint)

        assert swap is not None
        assert swap.usd_amount == Decimal("100.00")
        assert swap.native_amount == Decimal("0.666667")
        price_oracle.get_reference_price.assert_awaited_once()

    async def test_small_stablecoin_amount_not_converted(
        self, decoder, rpc, price_oracle, make_transaction, wallet, mint
    ) -> None:
        rpc.get_parsed_transaction.return_value = ParsedTransaction.from_rpc(
            "sig",
            make_transaction(
                pre_token=[(0, USDC_MINT, wallet, "5")],
                post_token=[(0, USDC_MINT, wallet, "0"), (0, mint, wallet, "1")],
            ),
        )

        swap = await decoder.decode("sig", mint)

        assert swap is not None
        assert swap.native_amount == Decimal("0")
        price_oracle.get_reference_price.assert_not_awaited()

    async def test_missing_transaction(self, decoder, rpc, mint) -> None:
        rpc.get_parsed_transaction.return_value = None

        assert await decoder.decode("sig", mint) is None

    async def test_unparsable_transaction(self, decoder, rpc, mint) -> None:
        rpc.get_parsed_transaction.side_effect = TransactionParseError("bad record")

        assert await decoder.decode("sig", mint) is None

    async def test_infrastructure_failure_propagates(self, decoder, rpc, mint) -> None:
        rpc.get_parsed_transaction.side_effect = EndpointsExhaustedError("all down")

        with pytest.raises(EndpointsExhaustedError):
            await decoder.decode("sig", mint)
