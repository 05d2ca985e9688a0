"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

import pytest
from eth_account import Account

from orbit_yield.chains import ChainRegistry
from orbit_yield.config import (
    AppConfig,
    AuthConfig,
    ChainConfig,
    ExecutorConfig,
    NetworkConfig,
    PriceOracleConfig,
    PythConfig,
    StrategyConfig,
)
from orbit_yield.models import ChainInfo, Opportunity, RawPosition, StrategyKind
from orbit_yield.oracles import StaticPriceOracle
from orbit_yield.services.normalizer import ValuationNormalizer

# Well-known throwaway keys; never hold funds with these.
USER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
OPERATOR_KEY = "0x" + "33" * 32

STRATEGY_A = "0x" + "a1" * 20
STRATEGY_B = "0x" + "b2" * 20
STRATEGY_C = "0x" + "c3" * 20
USDC = "0x" + "0c" * 20
WETH = "0x" + "0e" * 20
AGGREGATOR = "0x" + "99" * 20


# ---------------------------------------------------------------------------
# Chains & config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def chain_infos() -> dict[str, ChainInfo]:
    return {
        "c1": ChainInfo(
            id="c1",
            name="Chain One",
            native_symbol="ETH",
            native_decimals=18,
            rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
            explorer_url="https://explorer.c1.example.com",
            evm_chain_id=1,
        ),
        "c2": ChainInfo(
            id="c2",
            name="Chain Two",
            native_symbol="GLMR",
            native_decimals=18,
            rpc_endpoints=("https://rpc.c2.example.com",),
            evm_chain_id=1284,
        ),
    }


@pytest.fixture()
def chain_registry(chain_infos: dict[str, ChainInfo]) -> ChainRegistry:
    return ChainRegistry(chain_infos)


@pytest.fixture()
def fast_network() -> NetworkConfig:
    """No backoff sleeps, so retry paths run instantly."""
    return NetworkConfig(call_timeout=5.0, max_retries=1, backoff_base=0.0)


@pytest.fixture()
def sample_prices() -> dict[str, Decimal]:
    return {"USDC": Decimal("1"), "ETH": Decimal("2000"), "DOT": Decimal("8")}


@pytest.fixture()
def static_oracle(sample_prices: dict[str, Decimal]) -> StaticPriceOracle:
    return StaticPriceOracle(sample_prices)


@pytest.fixture()
def normalizer(static_oracle: StaticPriceOracle, chain_registry: ChainRegistry) -> ValuationNormalizer:
    return ValuationNormalizer(static_oracle, chain_registry, aliases={"WETH": "ETH"})


@pytest.fixture()
def sample_app_config(fast_network: NetworkConfig) -> AppConfig:
    return AppConfig(
        chains={
            "c1": ChainConfig(
                name="Chain One",
                native_symbol="ETH",
                rpc_endpoints=("https://rpc1.example.com",),
                evm_chain_id=1,
                aggregator_address=AGGREGATOR,
                strategies=(
                    StrategyConfig(address=STRATEGY_A, asset=USDC, sponsored_gas=True),
                ),
            ),
        },
        network=fast_network,
        price_oracle=PriceOracleConfig(
            provider="static",
            pyth=PythConfig(),
            static_prices={"USDC": Decimal("1"), "ETH": Decimal("2000")},
        ),
        auth=AuthConfig(validator_chain="c1"),
        executor=ExecutorConfig(operator_key=OPERATOR_KEY, poll_interval=0.0),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_opportunity() -> Callable[..., Opportunity]:
    def _make(**overrides: Any) -> Opportunity:
        fields: dict[str, Any] = {
            "id": "c1:usdc-lending",
            "strategy_address": STRATEGY_A,
            "asset_address": USDC,
            "asset_symbol": "USDC",
            "protocol_name": "Aave",
            "strategy_type": StrategyKind.LENDING,
            "apy": 500,
            "risk": 3,
            "tvl": "1000000000000",
            "asset_decimals": 6,
            "min_deposit": "1000000",
            "lockup_period": 0,
            "chain": "c1",
        }
        fields.update(overrides)
        return Opportunity(**fields)

    return _make


@pytest.fixture()
def scenario_opportunities(make_opportunity: Callable[..., Opportunity]) -> list[Opportunity]:
    """Three opportunities on one chain with distinct capability flags."""
    return [
        make_opportunity(
            id="o1", name="Sponsored Staking", apy=1800, risk=4, sponsored_gas=True,
            strategy_type=StrategyKind.STAKING,
        ),
        make_opportunity(
            id="o2", name="Oracle Lending", apy=950, risk=2, oracle="chainlink",
            strategy_address=STRATEGY_B,
        ),
        make_opportunity(
            id="o3", name="Bridged Liquidity", apy=1500, risk=5, bridge="x",
            strategy_address=STRATEGY_C, strategy_type=StrategyKind.LIQUIDITY,
        ),
    ]


@pytest.fixture()
def user_account():
    return Account.from_key(USER_KEY)


@pytest.fixture()
def other_account():
    return Account.from_key(OTHER_KEY)


@pytest.fixture()
def active_position(user_account) -> RawPosition:
    return RawPosition(
        strategy_address=STRATEGY_A,
        asset_address=USDC,
        owner=user_account.address.lower(),
        amount="250000000",
        entry_timestamp=1_700_000_000,
        last_update_timestamp=1_700_000_000,
        rewards="1500000",
        chain="c1",
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    chains:
      c1:
        name: Chain One
        native_symbol: ETH
        native_decimals: 18
        evm_chain_id: 1
        explorer_url: https://explorer.example.com
        rpc_endpoints: ["https://rpc.example.com", "https://rpc-backup.example.com"]
        aggregator_address: "0x9999999999999999999999999999999999999999"
        strategies:
          - address: "0xa1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1a1"
            asset: "0x0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c0c"
            name: USDC Lending
            sponsored_gas: true
            oracle: chainlink
      c2:
        native_symbol: GLMR
        rpc_endpoints: ["https://rpc.c2.example.com"]
    network:
      call_timeout: 3
      max_retries: 1
      backoff_base: 0.1
    price_oracle:
      provider: static
      static:
        prices: {USDC: 1, ETH: 2000.5}
      aliases: {weth: eth}
    auth:
      nonce_ttl_seconds: 60
      enabled_kinds: [simple-key]
      validator_chain: c1
    executor:
      gas_limit: 300000
    server:
      port: 9090
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
