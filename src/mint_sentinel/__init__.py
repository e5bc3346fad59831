"""Mint Sentinel - swap classification and bundle-risk signals for Solana mints."""

__version__ = "0.1.0"
