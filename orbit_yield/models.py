"""Data models: all frozen (immutable)."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Container

from .errors import InvalidArgument

MAX_RISK = 10
BPS_DENOMINATOR = 10_000

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def canonical_address(value: str | None) -> str:
    """Lower-case ``0x`` + 40 hex address; InvalidArgument otherwise."""
    if not isinstance(value, str) or not _ADDRESS_RE.match(value.strip()):
        raise InvalidArgument(f"Invalid wallet address {value!r}")
    return value.strip().lower()


def _require_raw_amount(name: str, value: str) -> None:
    """Raw amounts are non-negative decimal-integer strings."""
    if not isinstance(value, str) or not (value.isascii() and value.isdigit()):
        raise InvalidArgument(f"{name} must be a non-negative integer string, got {value!r}")


class StrategyKind(str, Enum):
    STAKING = "staking"
    LENDING = "lending"
    LIQUIDITY = "liquidity"
    CROSS_CHAIN = "cross-chain"


class WalletKind(str, Enum):
    """Wallet models that can authenticate."""

    SIMPLE_KEY = "simple-key"
    SMART_CONTRACT = "smart-contract"

    @classmethod
    def parse(cls, value: str | None) -> WalletKind:
        """Parse a wallet kind, accepting the wallet product names as aliases."""
        if not value:
            raise InvalidArgument("Wallet type is required")
        if not isinstance(value, str):
            raise InvalidArgument(f"Wallet type must be a string, got {value!r}")
        normalized = value.strip().lower()
        normalized = _WALLET_KIND_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidArgument(f"Unknown wallet type '{value}'") from None


_WALLET_KIND_ALIASES = {
    "metamask": WalletKind.SIMPLE_KEY.value,
    "eoa": WalletKind.SIMPLE_KEY.value,
    "orb": WalletKind.SMART_CONTRACT.value,
}


class PositionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    WITHDRAWING = "withdrawing"
    CLAIMING = "claiming"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Chains & opportunities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainInfo:
    id: str
    name: str
    native_symbol: str
    native_decimals: int
    rpc_endpoints: tuple[str, ...]
    explorer_url: str = ""
    is_testnet: bool = False
    evm_chain_id: int | None = None


@dataclass(frozen=True)
class Opportunity:
    """A yield strategy discovered on one chain for one asset."""

    id: str
    strategy_address: str
    asset_address: str
    asset_symbol: str
    protocol_name: str
    strategy_type: StrategyKind
    apy: int
    risk: int
    tvl: str
    asset_decimals: int
    min_deposit: str
    lockup_period: int
    chain: str
    name: str = ""
    sponsored_gas: bool = False
    oracle: str = ""
    bridge: str = ""

    def __post_init__(self) -> None:
        if self.apy < 0:
            raise InvalidArgument(f"Opportunity {self.id}: APY must be non-negative")
        if not 0 <= self.risk <= MAX_RISK:
            raise InvalidArgument(
                f"Opportunity {self.id}: risk must be within 0..{MAX_RISK}"
            )
        if self.lockup_period < 0 or self.asset_decimals < 0:
            raise InvalidArgument(
                f"Opportunity {self.id}: lockup and decimals must be non-negative"
            )
        _require_raw_amount("tvl", self.tvl)
        _require_raw_amount("min_deposit", self.min_deposit)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return f"{self.protocol_name} {self.asset_symbol} {self.strategy_type.value}"

    def validate(self, chains: Container[str]) -> None:
        """InvalidArgument unless ``chain`` is a known chain id."""
        if self.chain not in chains:
            raise InvalidArgument(f"Opportunity {self.id}: unknown chain '{self.chain}'")


@dataclass(frozen=True)
class ValuationWarning:
    """Non-fatal problem attached to a result (missing price, failed enrichment)."""

    kind: str
    message: str
    subject: str = ""


PRICE_UNAVAILABLE = "PriceUnavailable"
PARTIAL_ENRICHMENT_FAILURE = "PartialEnrichmentFailure"


@dataclass(frozen=True)
class NormalizedValue:
    formatted_amount: Decimal
    reference_value: Decimal
    price: Decimal
    warnings: tuple[ValuationWarning, ...] = ()


@dataclass(frozen=True)
class OpportunityView:
    """An opportunity with display values for TVL and minimum deposit."""

    opportunity: Opportunity
    tvl_value: NormalizedValue
    min_deposit_value: NormalizedValue

    @property
    def apy_percent(self) -> Decimal:
        return Decimal(self.opportunity.apy) / 100


@dataclass(frozen=True)
class DiscoveryCriteria:
    chain: str | None = None
    min_apy: int | None = None
    max_apy: int | None = None
    max_risk: int | None = None
    strategy_type: str | None = None
    sponsored_gas: bool | None = None
    has_oracle: str | None = None
    bridge: str | None = None
    search: str | None = None
    sort_by: str | None = None
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


@dataclass(frozen=True)
class DiscoveryResult:
    items: tuple[OpportunityView, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


# ---------------------------------------------------------------------------
# Positions & portfolio
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyDetails:
    strategy_type: str
    protocol: str
    apy: int
    risk: int


@dataclass(frozen=True)
class TokenMetadata:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class RawPosition:
    """A position as reported on-chain. ``amount`` is authoritative."""

    strategy_address: str
    asset_address: str
    owner: str
    amount: str
    entry_timestamp: int
    last_update_timestamp: int
    rewards: str
    chain: str
    state: PositionState = PositionState.ACTIVE

    def __post_init__(self) -> None:
        _require_raw_amount("amount", self.amount)
        _require_raw_amount("rewards", self.rewards)


@dataclass(frozen=True)
class EnrichedPosition:
    position: RawPosition
    details: StrategyDetails | None = None
    token: TokenMetadata | None = None
    value: NormalizedValue | None = None
    bridge: str = ""
    warnings: tuple[ValuationWarning, ...] = ()
    error: ValuationWarning | None = None

    @property
    def is_complete(self) -> bool:
        return self.error is None and self.value is not None and self.details is not None


@dataclass(frozen=True)
class AllocationSlice:
    value: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class Portfolio:
    wallet_address: str
    positions: tuple[EnrichedPosition, ...]
    total_value: Decimal
    total_annual_yield: Decimal
    allocation: dict[str, AllocationSlice] = field(default_factory=dict)
    omitted: int = 0
    warnings: tuple[ValuationWarning, ...] = ()

    @property
    def is_partial(self) -> bool:
        return self.omitted > 0


# ---------------------------------------------------------------------------
# External contract calls
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContractCall:
    """A state-changing call to be submitted by a ContractExecutor."""

    chain: str
    function: str
    args: tuple = ()
    bridge: str | None = None


@dataclass(frozen=True)
class CallReceipt:
    tx_hash: str
    success: bool
    block_number: int | None = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NonceChallenge:
    nonce: str
    message: str
    wallet_address: str
    wallet_kind: WalletKind
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class ConnectedWallet:
    address: str
    kind: WalletKind
    last_used: datetime


@dataclass(frozen=True)
class Session:
    user_id: str
    wallet_address: str
    session_token: str
    connected_wallets: tuple[ConnectedWallet, ...]
    created_at: datetime


@dataclass(frozen=True)
class WalletConnection:
    id: str
    user_id: str
    wallet_address: str
    wallet_kind: WalletKind
    connected_at: datetime
    last_used: datetime
    is_active: bool = True
