"""Signature verifiers, one per wallet kind."""
from __future__ import annotations

import logging
from typing import Protocol

from eth_account import Account
from eth_account.messages import defunct_hash_message, encode_defunct

from ..errors import (
    ContractCallReverted,
    ContractValidationUnavailable,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from ..interfaces.chain import ChainClient
from ..protocols.strategy import abi

logger = logging.getLogger(__name__)


class SignatureVerifier(Protocol):
    async def verify(self, message: str, signature: str, wallet_address: str) -> bool: ...


def _signature_bytes(signature: str) -> bytes | None:
    try:
        return bytes.fromhex(signature.removeprefix("0x"))
    except (AttributeError, ValueError):
        return None


class SimpleKeyVerifier:
    """EIP-191 ``personal_sign`` recovery for key-pair wallets."""

    async def verify(self, message: str, signature: str, wallet_address: str) -> bool:
        sig = _signature_bytes(signature)
        if not sig:
            return False
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=sig)
        except Exception as e:
            # eth_keys raises several unrelated types for malformed input
            logger.debug("Signature recovery failed for %s: %s", wallet_address, e)
            return False
        return recovered.lower() == wallet_address.lower()


class SmartContractVerifier:
    """EIP-1271 ``isValidSignature`` check against the wallet contract."""

    def __init__(self, client: ChainClient) -> None:
        self._client = client

    async def verify(self, message: str, signature: str, wallet_address: str) -> bool:
        sig = _signature_bytes(signature)
        if sig is None:
            return False
        digest = bytes(defunct_hash_message(text=message))
        data = abi.encode_call(abi.IS_VALID_SIGNATURE, digest, sig)

        try:
            result = await self._client.call(wallet_address, data)
        except ContractCallReverted as e:
            logger.info("isValidSignature reverted for %s: %s", wallet_address, e)
            return False
        except (UpstreamUnavailable, UpstreamTimeout) as e:
            raise ContractValidationUnavailable(
                f"Could not validate signature for contract wallet {wallet_address}",
                details={"chain": self._client.chain_id},
            ) from e

        return result[:4] == abi.ERC1271_MAGIC_VALUE
