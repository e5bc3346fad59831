"""Tests for swap candidate log filtering."""

from __future__ import annotations

from mint_sentinel.feed.filters import JUPITER_V6, PUMP_FUN, is_swap_candidate


class TestIsSwapCandidate:
    def test_known_program_invocation(self) -> None:
        assert is_swap_candidate([f"Program {JUPITER_V6} invoke [1]", "Program log: route"])

    def test_swap_instruction_log(self) -> None:
        assert is_swap_candidate(["Program Unknown111 invoke [1]", "Program log: Instruction: Buy"])

    def test_unrelated_logs(self) -> None:
        assert not is_swap_candidate(
            [
                "Program 11111111111111111111111111111111 invoke [1]",
                "Program log: Instruction: Transfer",
            ]
        )

    def test_custom_program_set(self) -> None:
        logs = [f"Program {PUMP_FUN} invoke [1]"]
        assert not is_swap_candidate(logs, frozenset({JUPITER_V6}))
