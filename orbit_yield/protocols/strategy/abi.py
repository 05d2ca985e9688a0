"""ABI encoding/decoding for strategy, aggregator and ERC-20 calls: no I/O."""
from __future__ import annotations

from typing import Any

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from ...models import ContractCall, RawPosition

# Strategy contract (read)
STRATEGY_TYPE = "getStrategyType()"
PROTOCOL_NAME = "getProtocolName()"
APY = "getAPY(address)"
RISK_LEVEL = "getRiskLevel()"
TVL = "getTVL(address)"
MIN_DEPOSIT = "getMinDeposit(address)"
LOCKUP_PERIOD = "getLockupPeriod()"

# ERC-20 (read)
ERC20_SYMBOL = "symbol()"
ERC20_DECIMALS = "decimals()"

# Yield aggregator (read / write). Writes act on behalf of ``owner``.
USER_POSITIONS = "getUserPositions(address)"
USER_POSITIONS_RETURN = "(address,address,uint256,uint256,uint256,uint256)[]"
DEPOSIT = "deposit(address,address,address,uint256)"
WITHDRAW = "withdraw(address,address,address,uint256)"
WITHDRAW_VIA_BRIDGE = "withdrawViaBridge(address,address,address,uint256,string)"
CLAIM_REWARDS = "claimRewards(address,address)"

# EIP-1271 smart-contract wallet signature check
IS_VALID_SIGNATURE = "isValidSignature(bytes32,bytes)"
ERC1271_MAGIC_VALUE = bytes.fromhex("1626ba7e")


def _arg_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [t for t in inner.split(",") if t]


def encode_call(signature: str, *args: Any) -> bytes:
    """Selector + ABI-encoded arguments for a flat (non-tuple) signature."""
    selector = function_signature_to_4byte_selector(signature)
    arg_types = _arg_types(signature)
    if len(arg_types) != len(args):
        raise ValueError(f"{signature} takes {len(arg_types)} arguments, got {len(args)}")
    return selector + (encode(arg_types, list(args)) if arg_types else b"")


def decode_single(type_str: str, data: bytes) -> Any:
    return decode([type_str], data)[0]


def decode_token_symbol(data: bytes) -> str:
    """ERC-20 ``symbol()``: ``string`` per the standard, ``bytes32`` on old tokens."""
    try:
        return decode_single("string", data)
    except (DecodingError, OverflowError, ValueError):
        return decode_single("bytes32", data).rstrip(b"\x00").decode("utf-8", "replace")


def decode_positions(data: bytes, owner: str, chain: str) -> list[RawPosition]:
    """Decode ``getUserPositions`` output into RawPositions, in contract order."""
    positions: list[RawPosition] = []
    for strategy, asset, amount, entry_ts, last_ts, rewards in decode_single(
        USER_POSITIONS_RETURN, data
    ):
        positions.append(
            RawPosition(
                strategy_address=strategy.lower(),
                asset_address=asset.lower(),
                owner=owner.lower(),
                amount=str(amount),
                entry_timestamp=int(entry_ts),
                last_update_timestamp=int(last_ts),
                rewards=str(rewards),
                chain=chain,
            )
        )
    return positions


def encode_contract_call(call: ContractCall) -> bytes:
    """Calldata for a lifecycle call. A bridged withdraw routes via the bridge."""
    if call.function == "deposit":
        return encode_call(DEPOSIT, *call.args)
    if call.function == "withdraw":
        if call.bridge:
            return encode_call(WITHDRAW_VIA_BRIDGE, *call.args, call.bridge)
        return encode_call(WITHDRAW, *call.args)
    if call.function == "claimRewards":
        return encode_call(CLAIM_REWARDS, *call.args)
    raise ValueError(f"Unsupported contract function '{call.function}'")
