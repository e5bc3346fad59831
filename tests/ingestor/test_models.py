"""Tests for ingestor data models."""

from __future__ import annotations

from decimal import Decimal

import pytest

from mint_sentinel.ingestor.models import (
    AccountKey,
    ClassifiedSwap,
    LogNotification,
    ParsedTransaction,
    SignatureInfo,
    SwapDirection,
    TokenBalance,
    TokenSupply,
    TransactionParseError,
)


class TestParsedTransaction:
    """Tests for ParsedTransaction.from_rpc."""

    def test_parses_signers_and_balances(self, make_transaction, wallet, mint) -> None:
        raw = make_transaction(
            signers=[wallet, "Router1111111111111111111111111111111111111"],
            others=["Pool111111111111111111111111111111111111111"],
            pre_balances=[10, 20, 30],
            post_balances=[5, 20, 35],
            post_token=[(2, mint, wallet, "12.5")],
        )

        tx = ParsedTransaction.from_rpc("sig", raw)

        assert tx.signers == (wallet, "Router1111111111111111111111111111111111111")
        assert tx.signer_indexes == (0, 1)
        assert tx.pre_balances == (10, 20, 30)
        assert tx.post_token_balances[0].ui_amount == Decimal("12.5")
        assert tx.fee == 5000
        assert tx.succeeded is True

    def test_missing_meta_rejected(self, make_transaction) -> None:
        raw = make_transaction()
        raw["meta"] = None

        with pytest.raises(TransactionParseError, match="meta"):
            ParsedTransaction.from_rpc("sig", raw)

    def test_balance_length_mismatch_rejected(self, make_transaction) -> None:
        raw = make_transaction(pre_balances=[1, 2])

        with pytest.raises(TransactionParseError, match="balance arrays"):
            ParsedTransaction.from_rpc("sig", raw)

    def test_failed_transaction_flag(self, make_transaction) -> None:
        raw = make_transaction(err={"InstructionError": [0, "Custom"]})

        tx = ParsedTransaction.from_rpc("sig", raw)

        assert tx.succeeded is False

    def test_system_transfer_instruction(self, make_transaction, system_transfer, wallet) -> None:
        raw = make_transaction(instructions=[system_transfer("Funder", wallet, 1_000)])

        tx = ParsedTransaction.from_rpc("sig", raw)

        assert tx.instructions[0].is_system_transfer
        assert tx.instructions[0].info["destination"] == wallet


class TestTokenBalance:
    """Tests for token amount parsing fallbacks."""

    def test_raw_amount_scaled_by_decimals(self) -> None:
        balance = TokenBalance.from_rpc(
            {
                "accountIndex": 1,
                "mint": "M",
                "owner": "O",
                "uiTokenAmount": {"amount": "1500000", "decimals": 6, "uiAmount": 1.5},
            }
        )
        assert balance.ui_amount == Decimal("1.500000")

    def test_null_ui_amount_is_zero(self) -> None:
        balance = TokenBalance.from_rpc(
            {"accountIndex": 1, "mint": "M", "uiTokenAmount": {"uiAmount": None, "decimals": 9}}
        )
        assert balance.ui_amount == 0
        assert balance.owner is None

    def test_missing_decimals_rejected(self) -> None:
        with pytest.raises(TransactionParseError):
            TokenBalance.from_rpc({"accountIndex": 1, "mint": "M", "uiTokenAmount": {"uiAmount": 1}})


class TestSmallRecords:
    def test_account_key_from_plain_string(self) -> None:
        key = AccountKey.from_rpc("Abc")
        assert key.pubkey == "Abc"
        assert key.signer is False

    def test_signature_info(self) -> None:
        info = SignatureInfo.from_rpc({"signature": "s", "slot": 9, "blockTime": None, "err": None})
        assert info.block_time is None
        assert info.succeeded

    def test_log_notification(self) -> None:
        message = {
            "jsonrpc": "2.0",
            "method": "logsNotification",
            "params": {
                "result": {
                    "context": {"slot": 42},
                    "value": {"signature": "s1", "err": None, "logs": ["Program X invoke [1]"]},
                },
                "subscription": 7,
            },
        }
        notification = LogNotification.from_websocket_message(message)
        assert notification.signature == "s1"
        assert notification.slot == 42
        assert notification.logs == ("Program X invoke [1]",)

    def test_token_supply_from_raw_amount(self) -> None:
        supply = TokenSupply.from_rpc({"amount": "1000000000", "decimals": 6})
        assert supply.ui_amount == Decimal("1000")


class TestClassifiedSwap:
    def test_zero_delta_rejected(self) -> None:
        with pytest.raises(ValueError):
            ClassifiedSwap(
                direction=SwapDirection.BUY,
                native_amount=Decimal("1"),
                usd_amount=Decimal("0"),
                asset_amount_delta=Decimal("0"),
                primary_signer="w",
            )

    def test_asset_amount_is_absolute(self) -> None:
        swap = ClassifiedSwap(
            direction=SwapDirection.SELL,
            native_amount=Decimal("1"),
            usd_amount=Decimal("0"),
            asset_amount_delta=Decimal("-250"),
            primary_signer="w",
        )
        assert swap.asset_amount == Decimal("250")
        assert swap.to_dict()["direction"] == "SELL"
