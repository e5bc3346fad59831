"""Data models for the ingestor module.

Ledger payloads arrive as loosely-typed JSON-RPC dictionaries. Only the
subset of fields consumed downstream is modelled here, and every
``from_rpc`` constructor rejects records missing a required field by raising
:class:`TransactionParseError` instead of passing partial data along.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

LAMPORTS_PER_SOL = Decimal(1_000_000_000)


class TransactionParseError(ValueError):
    """Raised when a ledger record does not match the expected schema."""


def _require(data: dict[str, Any], key: str, context: str) -> Any:
    try:
        value = data[key]
    except (KeyError, TypeError) as e:
        raise TransactionParseError(f"{context}: missing field {key!r}") from e
    if value is None:
        raise TransactionParseError(f"{context}: field {key!r} is null")
    return value


def _to_decimal(value: Any, context: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise TransactionParseError(f"{context}: not a number: {value!r}") from e


@dataclass(frozen=True)
class AccountKey:
    """An account referenced by a transaction message."""

    pubkey: str
    signer: bool
    writable: bool = False

    @classmethod
    def from_rpc(cls, data: Any) -> AccountKey:
        # Legacy (non-parsed) encodings return bare base58 strings.
        if isinstance(data, str):
            return cls(pubkey=data, signer=False)
        if not isinstance(data, dict):
            raise TransactionParseError(f"account key: unexpected payload {data!r}")
        return cls(
            pubkey=str(_require(data, "pubkey", "account key")),
            signer=bool(data.get("signer", False)),
            writable=bool(data.get("writable", False)),
        )


@dataclass(frozen=True)
class TokenBalance:
    """A token-account balance snapshot (pre or post transaction)."""

    account_index: int
    mint: str
    owner: str | None
    ui_amount: Decimal
    decimals: int

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> TokenBalance:
        context = "token balance"
        ui = _require(data, "uiTokenAmount", context)
        decimals = int(_require(ui, "decimals", context))
        if ui.get("uiAmountString") is not None:
            amount = _to_decimal(ui["uiAmountString"], context)
        elif ui.get("amount") is not None:
            amount = _to_decimal(ui["amount"], context).scaleb(-decimals)
        else:
            # uiAmount is null for zero balances on some node versions.
            amount = _to_decimal(ui.get("uiAmount") or 0, context)
        owner = data.get("owner")
        return cls(
            account_index=int(_require(data, "accountIndex", context)),
            mint=str(_require(data, "mint", context)),
            owner=str(owner) if owner else None,
            ui_amount=amount,
            decimals=decimals,
        )


@dataclass(frozen=True)
class ParsedInstruction:
    """A top-level instruction, parsed where the node knows the program."""

    program_id: str
    program: str | None = None
    instruction_type: str | None = None
    info: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> ParsedInstruction:
        parsed = data.get("parsed")
        instruction_type: str | None = None
        info: dict[str, Any] = {}
        if isinstance(parsed, dict):
            instruction_type = parsed.get("type")
            raw_info = parsed.get("info")
            if isinstance(raw_info, dict):
                info = raw_info
        return cls(
            program_id=str(_require(data, "programId", "instruction")),
            program=data.get("program"),
            instruction_type=instruction_type,
            info=info,
        )

    @property
    def is_system_transfer(self) -> bool:
        return self.program == "system" and self.instruction_type == "transfer"


@dataclass(frozen=True)
class ParsedTransaction:
    """The consumed subset of a ``getTransaction`` (jsonParsed) response."""

    signature: str
    slot: int
    block_time: int | None
    account_keys: tuple[AccountKey, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    pre_token_balances: tuple[TokenBalance, ...]
    post_token_balances: tuple[TokenBalance, ...]
    fee: int
    instructions: tuple[ParsedInstruction, ...] = ()
    log_messages: tuple[str, ...] = ()
    err: Any = None

    @classmethod
    def from_rpc(cls, signature: str, data: dict[str, Any]) -> ParsedTransaction:
        """Create a ParsedTransaction from a JSON-RPC result object.

        Raises:
            TransactionParseError: If the record lacks metadata, account keys,
                or has balance arrays that do not line up with the keys.
        """
        context = f"transaction {signature}"
        if not isinstance(data, dict):
            raise TransactionParseError(f"{context}: result is not an object")
        meta = _require(data, "meta", context)
        transaction = _require(data, "transaction", context)
        message = _require(transaction, "message", context)

        account_keys = tuple(AccountKey.from_rpc(k) for k in _require(message, "accountKeys", context))
        if not account_keys:
            raise TransactionParseError(f"{context}: no account keys")

        pre_balances = tuple(int(b) for b in _require(meta, "preBalances", context))
        post_balances = tuple(int(b) for b in _require(meta, "postBalances", context))
        if len(pre_balances) != len(account_keys) or len(post_balances) != len(account_keys):
            raise TransactionParseError(f"{context}: balance arrays do not match account keys")

        instructions = tuple(
            ParsedInstruction.from_rpc(i) for i in message.get("instructions") or [] if isinstance(i, dict)
        )
        block_time = data.get("blockTime")
        return cls(
            signature=signature,
            slot=int(data.get("slot") or 0),
            block_time=int(block_time) if block_time is not None else None,
            account_keys=account_keys,
            pre_balances=pre_balances,
            post_balances=post_balances,
            pre_token_balances=tuple(TokenBalance.from_rpc(b) for b in meta.get("preTokenBalances") or []),
            post_token_balances=tuple(TokenBalance.from_rpc(b) for b in meta.get("postTokenBalances") or []),
            fee=int(meta.get("fee") or 0),
            instructions=instructions,
            log_messages=tuple(str(m) for m in meta.get("logMessages") or []),
            err=meta.get("err"),
        )

    @property
    def signer_indexes(self) -> tuple[int, ...]:
        """Indexes of every account that signed the transaction."""
        return tuple(i for i, key in enumerate(self.account_keys) if key.signer)

    @property
    def signers(self) -> tuple[str, ...]:
        """Signer pubkeys in message order (the fee payer comes first)."""
        return tuple(self.account_keys[i].pubkey for i in self.signer_indexes)

    @property
    def succeeded(self) -> bool:
        return self.err is None


@dataclass(frozen=True)
class SignatureInfo:
    """One entry of a ``getSignaturesForAddress`` response."""

    signature: str
    slot: int
    block_time: int | None = None
    err: Any = None

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> SignatureInfo:
        block_time = data.get("blockTime")
        return cls(
            signature=str(_require(data, "signature", "signature info")),
            slot=int(data.get("slot") or 0),
            block_time=int(block_time) if block_time is not None else None,
            err=data.get("err"),
        )

    @property
    def succeeded(self) -> bool:
        return self.err is None


@dataclass(frozen=True)
class LogNotification:
    """A ``logsNotification`` pushed by a log subscription."""

    signature: str
    logs: tuple[str, ...]
    slot: int = 0
    err: Any = None

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> LogNotification:
        params = _require(data, "params", "log notification")
        result = _require(params, "result", "log notification")
        value = _require(result, "value", "log notification")
        context = result.get("context") or {}
        return cls(
            signature=str(_require(value, "signature", "log notification")),
            logs=tuple(str(line) for line in value.get("logs") or []),
            slot=int(context.get("slot") or 0),
            err=value.get("err"),
        )


@dataclass(frozen=True)
class TokenHolder:
    """A token account returned by ``getTokenLargestAccounts``."""

    address: str
    ui_amount: Decimal

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> TokenHolder:
        context = "token holder"
        if data.get("uiAmountString") is not None:
            amount = _to_decimal(data["uiAmountString"], context)
        else:
            amount = _to_decimal(data.get("uiAmount") or 0, context)
        return cls(address=str(_require(data, "address", context)), ui_amount=amount)


@dataclass(frozen=True)
class TokenSupply:
    """Total supply of a mint from ``getTokenSupply``."""

    ui_amount: Decimal
    decimals: int

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> TokenSupply:
        context = "token supply"
        if data.get("uiAmountString") is not None:
            amount = _to_decimal(data["uiAmountString"], context)
        else:
            amount = _to_decimal(_require(data, "amount", context), context).scaleb(
                -int(_require(data, "decimals", context))
            )
        return cls(ui_amount=amount, decimals=int(data.get("decimals") or 0))


class SwapDirection(str, Enum):
    """Direction of a classified swap from the signers' point of view."""

    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class ClassifiedSwap:
    """A buy/sell swap recovered from one transaction's balance deltas.

    Attributes:
        direction: BUY when the signers' holdings of the asset increased.
        native_amount: SOL actually exchanged, net of the network fee.
        usd_amount: Stablecoin (USDC/USDT) volume moved by the signers.
        asset_amount_delta: Signed net change of the signers' asset holdings.
        primary_signer: First signer of the transaction.
    """

    direction: SwapDirection
    native_amount: Decimal
    usd_amount: Decimal
    asset_amount_delta: Decimal
    primary_signer: str

    def __post_init__(self) -> None:
        if self.asset_amount_delta == 0:
            raise ValueError("a swap must move a non-zero amount of the asset")

    @property
    def asset_amount(self) -> Decimal:
        """Absolute asset amount traded."""
        return abs(self.asset_amount_delta)

    def to_dict(self) -> dict[str, object]:
        return {
            "direction": self.direction.value,
            "native_amount": str(self.native_amount),
            "usd_amount": str(self.usd_amount),
            "asset_amount_delta": str(self.asset_amount_delta),
            "primary_signer": self.primary_signer,
        }


def now_utc() -> datetime:
    return datetime.now(UTC)
