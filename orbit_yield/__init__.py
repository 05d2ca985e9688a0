"""Cross-chain yield opportunity aggregation, valuation and wallet authentication."""

__version__ = "0.1.0"
