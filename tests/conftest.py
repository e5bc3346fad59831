"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SIGNATURE = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"


def _token_balance(index: int, mint: str, owner: str, amount: str, decimals: int = 6) -> dict[str, Any]:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"uiAmountString": amount, "decimals": decimals},
    }


@pytest.fixture
def mint() -> str:
    """Sample token mint."""
    return MINT


@pytest.fixture
def wallet() -> str:
    """Sample signer wallet."""
    return WALLET


@pytest.fixture
def signature() -> str:
    """Sample transaction signature."""
    return SIGNATURE


@pytest.fixture
def make_transaction() -> Callable[..., dict[str, Any]]:
    """Build a ``getTransaction`` (jsonParsed) result object.

    Token balances are given as ``(account_index, mint, owner, ui_amount)``
    tuples; instructions are raw parsed-instruction dicts.
    """

    def build(
        *,
        signers: Sequence[str] = (WALLET,),
        others: Sequence[str] = (),
        pre_balances: Sequence[int] | None = None,
        post_balances: Sequence[int] | None = None,
        fee: int = 5000,
        pre_token: Sequence[tuple[int, str, str, str]] = (),
        post_token: Sequence[tuple[int, str, str, str]] = (),
        instructions: Sequence[dict[str, Any]] = (),
        err: Any = None,
        block_time: int | None = 1_700_000_000,
        slot: int = 250_000_000,
    ) -> dict[str, Any]:
        keys = [{"pubkey": s, "signer": True, "writable": True} for s in signers]
        keys += [{"pubkey": o, "signer": False, "writable": True} for o in others]
        n = len(keys)
        return {
            "slot": slot,
            "blockTime": block_time,
            "meta": {
                "err": err,
                "fee": fee,
                "preBalances": list(pre_balances) if pre_balances is not None else [0] * n,
                "postBalances": list(post_balances) if post_balances is not None else [0] * n,
                "preTokenBalances": [_token_balance(*b) for b in pre_token],
                "postTokenBalances": [_token_balance(*b) for b in post_token],
                "logMessages": [],
            },
            "transaction": {
                "signatures": ["sig"],
                "message": {"accountKeys": keys, "instructions": list(instructions)},
            },
        }

    return build


@pytest.fixture
def system_transfer() -> Callable[[str, str, int], dict[str, Any]]:
    """Build a parsed System Program transfer instruction."""

    def build(source: str, destination: str, lamports: int) -> dict[str, Any]:
        return {
            "program": "system",
            "programId": "11111111111111111111111111111111",
            "parsed": {
                "type": "transfer",
                "info": {"source": source, "destination": destination, "lamports": lamports},
            },
        }

    return build


@pytest.fixture
def signature_entry() -> Callable[..., dict[str, Any]]:
    """Build one ``getSignaturesForAddress`` entry."""

    def build(sig: str, *, block_time: int | None = 1_700_000_000, slot: int = 1, err: Any = None) -> dict[str, Any]:
        return {"signature": sig, "slot": slot, "blockTime": block_time, "err": err}

    return build
