"""Protocol interfaces for the yield engine's external collaborators."""
from .chain import ChainClient
from .executor import ContractExecutor
from .price_oracle import PriceOracle
from .sources import OpportunitySource, PositionSource, StrategyReader
from .store import DocumentStore, NonceStore

__all__ = [
    "ChainClient",
    "ContractExecutor",
    "DocumentStore",
    "NonceStore",
    "OpportunitySource",
    "PositionSource",
    "PriceOracle",
    "StrategyReader",
]
