"""Chain directory and RPC clients."""
from .registry import ChainRegistry

__all__ = ["ChainRegistry"]
