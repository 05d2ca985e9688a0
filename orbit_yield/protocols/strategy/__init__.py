from .adapter import StrategyContractAdapter
from .executor import RpcContractExecutor
from .router import StrategyRouter

__all__ = ["RpcContractExecutor", "StrategyContractAdapter", "StrategyRouter"]
