"""On-chain protocol adapters."""
