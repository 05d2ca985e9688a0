"""Service modules"""
from .connections import WalletConnectionService
from .lifecycle import PositionLifecycleManager
from .normalizer import ValuationNormalizer
from .opportunity_registry import OpportunityRegistry
from .portfolio import PortfolioAggregator

__all__ = [
    "OpportunityRegistry",
    "PortfolioAggregator",
    "PositionLifecycleManager",
    "ValuationNormalizer",
    "WalletConnectionService",
]
