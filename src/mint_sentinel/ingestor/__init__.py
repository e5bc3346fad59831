"""Ledger ingestion layer - RPC access, log streams and swap decoding."""

from mint_sentinel.ingestor.decoder import SwapDecoder, signer_asset_delta
from mint_sentinel.ingestor.models import (
    ClassifiedSwap,
    ParsedTransaction,
    SignatureInfo,
    SwapDirection,
    TransactionParseError,
)
from mint_sentinel.ingestor.price_oracle import (
    DexScreenerQuoteClient,
    PriceOracleCache,
    PriceQuoteClient,
    PriceQuoteError,
)
from mint_sentinel.ingestor.rpc import (
    EndpointsExhaustedError,
    LedgerClientError,
    ResilientClient,
    SolanaRpcClient,
)

__all__ = [
    "ClassifiedSwap",
    "DexScreenerQuoteClient",
    "EndpointsExhaustedError",
    "LedgerClientError",
    "ParsedTransaction",
    "PriceOracleCache",
    "PriceQuoteClient",
    "PriceQuoteError",
    "ResilientClient",
    "SignatureInfo",
    "SolanaRpcClient",
    "SwapDecoder",
    "SwapDirection",
    "TransactionParseError",
    "signer_asset_delta",
]
