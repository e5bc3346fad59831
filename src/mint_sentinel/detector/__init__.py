"""Risk detectors - bundle density and holder concentration."""

from mint_sentinel.detector.bundle import BundleAnalyzer
from mint_sentinel.detector.concentration import HolderConcentrationAnalyzer
from mint_sentinel.detector.models import BundleRisk, HolderConcentration, RiskLevel

__all__ = [
    "BundleAnalyzer",
    "BundleRisk",
    "HolderConcentration",
    "HolderConcentrationAnalyzer",
    "RiskLevel",
]
