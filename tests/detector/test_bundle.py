"""Tests for bundle detection."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from mint_sentinel.detector.bundle import BundleAnalyzer, bucket_density
from mint_sentinel.detector.models import BundleRisk, RiskLevel
from mint_sentinel.ingestor.models import ParsedTransaction, SignatureInfo
from mint_sentinel.ingestor.rpc import EndpointsExhaustedError
from mint_sentinel.profiler.funding import FundingFingerprint


def signatures_with_shared_bucket(total: int, shared: int, *, base_time: int = 1_700_000_000) -> list[SignatureInfo]:
    """``shared`` signatures in one block time, the rest in distinct ones (newest first)."""
    infos = [SignatureInfo(signature=f"same-{i}", slot=10, block_time=base_time) for i in range(shared)]
    infos += [
        SignatureInfo(signature=f"other-{i}", slot=20 + i, block_time=base_time + 1 + i) for i in range(total - shared)
    ]
    return list(reversed(infos))


@pytest.fixture
def rpc() -> MagicMock:
    client = MagicMock()
    client.get_signatures_for_address = AsyncMock(return_value=[])
    client.get_parsed_transaction = AsyncMock(return_value=None)
    return client


@pytest.fixture
def funding() -> MagicMock:
    tracer = MagicMock()
    tracer.find_funding_source = AsyncMock(return_value=None)
    return tracer


@pytest.fixture
def analyzer(rpc, funding) -> BundleAnalyzer:
    return BundleAnalyzer(rpc, funding)


class TestBucketDensity:
    def test_empty(self) -> None:
        assert bucket_density([]) == 0.0

    def test_by_second(self) -> None:
        assert bucket_density(signatures_with_shared_bucket(100, 62)) == pytest.approx(62.0)

    def test_by_slot(self) -> None:
        infos = [SignatureInfo(signature=str(i), slot=i // 4, block_time=i) for i in range(8)]
        assert bucket_density(infos, "slot") == pytest.approx(50.0)
        assert bucket_density(infos, "second") == pytest.approx(12.5)

    def test_missing_block_time_falls_back_to_slot(self) -> None:
        infos = [SignatureInfo(signature=str(i), slot=7, block_time=None) for i in range(3)]
        infos.append(SignatureInfo(signature="x", slot=8, block_time=5))
        assert bucket_density(infos) == pytest.approx(75.0)


class TestRiskLevels:
    @pytest.mark.parametrize(
        ("score", "level", "bundled"),
        [
            (0, RiskLevel.LOW, False),
            (20, RiskLevel.LOW, False),
            (20.01, RiskLevel.MEDIUM, True),
            (50, RiskLevel.MEDIUM, True),
            (50.5, RiskLevel.HIGH, True),
        ],
    )
    def test_thresholds(self, score: float, level: RiskLevel, bundled: bool) -> None:
        risk = BundleRisk.from_score(score)
        assert risk.risk_level is level
        assert risk.is_bundled is bundled

    def test_rounded_to_two_decimals(self) -> None:
        assert BundleRisk.from_score(100 / 3).density_percent == 33.33


class TestBundleAnalyzer:
    """Tests for BundleAnalyzer.analyze."""

    async def test_dense_bucket_is_high(self, analyzer, rpc, mint) -> None:
        rpc.get_signatures_for_address.return_value = signatures_with_shared_bucket(100, 62)

        risk = await analyzer.analyze(mint)

        assert risk.density_percent == 62
        assert risk.risk_level is RiskLevel.HIGH
        assert risk.is_bundled
        assert risk.signatures_analyzed == 100
        rpc.get_signatures_for_address.assert_awaited_once_with(mint, limit=100)

    async def test_moderate_bucket_is_medium(self, analyzer, rpc, mint) -> None:
        rpc.get_signatures_for_address.return_value = signatures_with_shared_bucket(100, 30)

        risk = await analyzer.analyze(mint)

        assert risk.risk_level is RiskLevel.MEDIUM

    async def test_no_signatures_is_low(self, analyzer, mint) -> None:
        risk = await analyzer.analyze(mint)

        assert risk.risk_level is RiskLevel.LOW
        assert risk.density_percent == 0
        assert not risk.is_bundled

    async def test_failure_is_low(self, analyzer, rpc, mint) -> None:
        rpc.get_signatures_for_address.side_effect = EndpointsExhaustedError("down")

        risk = await analyzer.analyze(mint)

        assert risk.risk_level is RiskLevel.LOW
        assert not risk.is_bundled

    async def test_shared_funder_floors_score(self, analyzer, rpc, funding, make_transaction, mint) -> None:
        signatures = signatures_with_shared_bucket(100, 1)
        rpc.get_signatures_for_address.return_value = signatures
        earliest = [s.signature for s in reversed(signatures)][:5]
        buyers = {sig: f"Buyer{i}" for i, sig in enumerate(earliest)}

        async def get_tx(sig: str) -> ParsedTransaction:
            buyer = buyers[sig]
            return ParsedTransaction.from_rpc(
                sig, make_transaction(signers=[buyer], post_token=[(0, mint, buyer, "100")])
            )

        async def trace(wallet: str, *, exclude_signature: str | None = None) -> FundingFingerprint | None:
            if wallet in ("Buyer0", "Buyer3"):
                return FundingFingerprint(
                    wallet=wallet, source="Funder", signature=f"fund-{wallet}", amount_sol=Decimal("1")
                )
            if wallet == "Buyer1":
                raise EndpointsExhaustedError("trace failed")
            return None

        rpc.get_parsed_transaction.side_effect = get_tx
        funding.find_funding_source.side_effect = trace

        risk = await analyzer.analyze(mint)

        assert risk.density_percent == 85
        assert risk.risk_level is RiskLevel.HIGH
        assert risk.shared_funders == ("Funder",)
        assert funding.find_funding_source.await_count == 5
        funding.find_funding_source.assert_any_await("Buyer0", exclude_signature=earliest[0])

    async def test_sellers_are_not_early_buyers(self, analyzer, rpc, funding, make_transaction, mint) -> None:
        rpc.get_signatures_for_address.return_value = signatures_with_shared_bucket(10, 1)

        async def get_tx(sig: str) -> ParsedTransaction:
            return ParsedTransaction.from_rpc(
                sig,
                make_transaction(
                    signers=["Seller"],
                    pre_token=[(0, mint, "Seller", "100")],
                    post_token=[(0, mint, "Seller", "0")],
                ),
            )

        rpc.get_parsed_transaction.side_effect = get_tx

        risk = await analyzer.analyze(mint)

        funding.find_funding_source.assert_not_awaited()
        assert risk.shared_funders == ()

    async def test_failed_early_signatures_skipped(self, analyzer, rpc, mint) -> None:
        rpc.get_signatures_for_address.return_value = [
            SignatureInfo(signature="ok", slot=2, block_time=2),
            SignatureInfo(signature="failed", slot=1, block_time=1, err={"x": 1}),
        ]

        await analyzer.analyze(mint)

        rpc.get_parsed_transaction.assert_not_awaited()
