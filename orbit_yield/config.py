"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

WALLET_KINDS = ("simple-key", "smart-contract")
PRICE_PROVIDERS = ("pyth", "static")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyConfig:
    """A strategy contract to be discovered on a chain."""

    address: str = ""
    asset: str = ""
    name: str = ""
    sponsored_gas: bool = False
    oracle: str = ""
    bridge: str = ""


@dataclass(frozen=True)
class ChainConfig:
    name: str = ""
    native_symbol: str = ""
    native_decimals: int = 18
    rpc_endpoints: tuple[str, ...] = ()
    explorer_url: str = ""
    is_testnet: bool = False
    evm_chain_id: int | None = None
    aggregator_address: str = ""
    strategies: tuple[StrategyConfig, ...] = ()


@dataclass(frozen=True)
class NetworkConfig:
    call_timeout: float = 10.0
    max_retries: int = 2
    backoff_base: float = 0.5


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    pyth: PythConfig = field(default_factory=PythConfig)
    static_prices: dict[str, Decimal] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthConfig:
    nonce_ttl_seconds: int = 300
    message_prefix: str = "Sign this message to authenticate with OrbitYield: "
    enabled_kinds: tuple[str, ...] = WALLET_KINDS
    validator_chain: str = ""


@dataclass(frozen=True)
class ExecutorConfig:
    operator_key: str = ""
    gas_limit: int = 500_000
    confirmation_timeout: float = 120.0
    poll_interval: float = 2.0


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass(frozen=True)
class AppConfig:
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_strategies(raw: list[dict[str, Any]]) -> tuple[StrategyConfig, ...]:
    return tuple(
        StrategyConfig(
            address=s.get("address", ""),
            asset=s.get("asset", ""),
            name=s.get("name", ""),
            sponsored_gas=bool(s.get("sponsored_gas", False)),
            oracle=s.get("oracle", "") or "",
            bridge=s.get("bridge", "") or "",
        )
        for s in raw
    )


def _build_chains(raw: dict[str, Any]) -> dict[str, ChainConfig]:
    chains: dict[str, ChainConfig] = {}
    for chain_id, cfg in raw.items():
        evm_chain_id = cfg.get("evm_chain_id")
        chains[chain_id] = ChainConfig(
            name=cfg.get("name", chain_id),
            native_symbol=cfg.get("native_symbol", ""),
            native_decimals=int(cfg.get("native_decimals", 18)),
            rpc_endpoints=tuple(url for url in cfg.get("rpc_endpoints") or [] if url),
            explorer_url=cfg.get("explorer_url", ""),
            is_testnet=bool(cfg.get("is_testnet", False)),
            evm_chain_id=int(evm_chain_id) if evm_chain_id is not None else None,
            aggregator_address=cfg.get("aggregator_address", ""),
            strategies=_build_strategies(cfg.get("strategies") or []),
        )
    return chains


def _build_network(raw: dict[str, Any]) -> NetworkConfig:
    return NetworkConfig(
        call_timeout=float(raw.get("call_timeout", 10.0)),
        max_retries=int(raw.get("max_retries", 2)),
        backoff_base=float(raw.get("backoff_base", 0.5)),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
        # via str() so YAML floats convert exactly
        static_prices={
            symbol.upper(): Decimal(str(price))
            for symbol, price in raw.get("static", {}).get("prices", {}).items()
        },
        aliases={k.upper(): v.upper() for k, v in raw.get("aliases", {}).items()},
    )


def _build_auth(raw: dict[str, Any]) -> AuthConfig:
    return AuthConfig(
        nonce_ttl_seconds=int(raw.get("nonce_ttl_seconds", 300)),
        message_prefix=raw.get("message_prefix", AuthConfig.message_prefix),
        enabled_kinds=tuple(raw.get("enabled_kinds", WALLET_KINDS)),
        validator_chain=raw.get("validator_chain", ""),
    )


def _build_executor(raw: dict[str, Any]) -> ExecutorConfig:
    return ExecutorConfig(
        operator_key=raw.get("operator_key", ""),
        gas_limit=int(raw.get("gas_limit", 500_000)),
        confirmation_timeout=float(raw.get("confirmation_timeout", 120.0)),
        poll_interval=float(raw.get("poll_interval", 2.0)),
    )


def _build_server(raw: dict[str, Any]) -> ServerConfig:
    return ServerConfig(
        host=raw.get("host", "0.0.0.0"),
        port=int(raw.get("port", 8080)),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        chains=_build_chains(raw.get("chains", {})),
        network=_build_network(raw.get("network", {})),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
        auth=_build_auth(raw.get("auth", {})),
        executor=_build_executor(raw.get("executor", {})),
        server=_build_server(raw.get("server", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chains:
        raise ValueError("At least one chain must be configured")

    for chain_id, chain in cfg.chains.items():
        if not chain.rpc_endpoints:
            raise ValueError(f"Chain '{chain_id}' has no RPC endpoints")
        for strategy in chain.strategies:
            if not strategy.address:
                raise ValueError(f"Strategy on chain '{chain_id}' has no address")

    if cfg.auth.validator_chain and cfg.auth.validator_chain not in cfg.chains:
        raise ValueError(
            f"auth.validator_chain references unknown chain '{cfg.auth.validator_chain}'"
        )

    for kind in cfg.auth.enabled_kinds:
        if kind not in WALLET_KINDS:
            raise ValueError(f"Unknown wallet kind '{kind}'")

    if cfg.price_oracle.provider not in PRICE_PROVIDERS:
        raise ValueError(
            f"Unknown price oracle provider '{cfg.price_oracle.provider}'"
        )
