"""Wallet profiling - funding-source tracing for early buyers."""

from mint_sentinel.profiler.funding import FundingFingerprint, FundingTracer

__all__ = ["FundingFingerprint", "FundingTracer"]
