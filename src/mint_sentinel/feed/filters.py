"""Cheap log-line filters applied before decoding pushed transactions."""

from __future__ import annotations

import re
from collections.abc import Iterable

JUPITER_V6 = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
RAYDIUM_AMM_V4 = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
RAYDIUM_CPMM = "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C"
RAYDIUM_CLMM = "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK"
PUMP_FUN = "6EF8rrecthR5Dkzon8Nwu78hRvfX9PNn2A9zH8GfE7rL"
PUMP_AMM = "pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA"
ORCA_WHIRLPOOL = "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc"
METEORA_DLMM = "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9t8eCdxpo"

SWAP_PROGRAM_IDS = frozenset(
    {
        JUPITER_V6,
        RAYDIUM_AMM_V4,
        RAYDIUM_CPMM,
        RAYDIUM_CLMM,
        PUMP_FUN,
        PUMP_AMM,
        ORCA_WHIRLPOOL,
        METEORA_DLMM,
    }
)

_PROGRAM_INVOKE = re.compile(r"^Program (\w+) invoke")
_SWAP_INSTRUCTION = re.compile(r"Instruction: (Swap|Buy|Sell)\b")


def is_swap_candidate(logs: Iterable[str], program_ids: frozenset[str] = SWAP_PROGRAM_IDS) -> bool:
    """True if the logs invoke a swap program or print a swap instruction."""
    for line in logs:
        match = _PROGRAM_INVOKE.match(line)
        if match and match.group(1) in program_ids:
            return True
        if _SWAP_INSTRUCTION.search(line):
            return True
    return False
