"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

MEDIUM_RISK_THRESHOLD = 20.0
HIGH_RISK_THRESHOLD = 50.0


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def from_score(cls, score: float) -> RiskLevel:
        """Map a 0-100 score onto a level (strictly above each threshold)."""
        if score > HIGH_RISK_THRESHOLD:
            return cls.HIGH
        if score > MEDIUM_RISK_THRESHOLD:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class BundleRisk:
    """Coordinated-launch ("bundle") assessment for a mint.

    Attributes:
        is_bundled: True when the score exceeds the medium threshold.
        density_percent: Share of recent signatures landing in the busiest
            time bucket (0-100), raised to the shared-funder floor when early
            buyers share a funding source.
        risk_level: Level derived from ``density_percent``.
        shared_funders: Funding sources shared by two or more early buyers.
        signatures_analyzed: Number of signatures the density is based on.
    """

    is_bundled: bool
    density_percent: float
    risk_level: RiskLevel
    shared_funders: tuple[str, ...] = ()
    signatures_analyzed: int = 0
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_score(
        cls,
        score: float,
        *,
        shared_funders: tuple[str, ...] = (),
        signatures_analyzed: int = 0,
    ) -> BundleRisk:
        score = round(min(max(score, 0.0), 100.0), 2)
        return cls(
            is_bundled=score > MEDIUM_RISK_THRESHOLD,
            density_percent=score,
            risk_level=RiskLevel.from_score(score),
            shared_funders=shared_funders,
            signatures_analyzed=signatures_analyzed,
        )

    @classmethod
    def low(cls) -> BundleRisk:
        return cls.from_score(0.0)

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for publishing."""
        return {
            "is_bundled": self.is_bundled,
            "density_percent": self.density_percent,
            "risk_level": self.risk_level.value,
            "shared_funders": list(self.shared_funders),
            "signatures_analyzed": self.signatures_analyzed,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass(frozen=True)
class HolderConcentration:
    """Share of supply held by the largest token accounts."""

    top10_percent: float
    holders_sampled: int
    cluster_detected: bool
    risk_level: RiskLevel

    @classmethod
    def low(cls) -> HolderConcentration:
        return cls(top10_percent=0.0, holders_sampled=0, cluster_detected=False, risk_level=RiskLevel.LOW)

    def to_dict(self) -> dict[str, object]:
        return {
            "top10_percent": self.top10_percent,
            "holders_sampled": self.holders_sampled,
            "cluster_detected": self.cluster_detected,
            "risk_level": self.risk_level.value,
        }
