"""Contract executor protocol: submits state-changing calls."""
from typing import Protocol

from ..models import CallReceipt, ContractCall


class ContractExecutor(Protocol):
    """Submit a call and return only once it is confirmed or has failed."""

    async def execute(self, call: ContractCall) -> CallReceipt: ...
