"""Builds the engine's object graph from configuration."""
from __future__ import annotations

import logging
from typing import Any

from .auth import SimpleKeyVerifier, SmartContractVerifier, WalletAuthenticator
from .chains import ChainRegistry
from .chains.evm import EvmClient
from .config import AppConfig
from .interfaces.price_oracle import PriceOracle
from .interfaces.store import DocumentStore, NonceStore
from .models import WalletKind
from .oracles import PythOracle, StaticPriceOracle
from .protocols.strategy import RpcContractExecutor, StrategyContractAdapter, StrategyRouter
from .services import (
    OpportunityRegistry,
    PortfolioAggregator,
    PositionLifecycleManager,
    ValuationNormalizer,
    WalletConnectionService,
)
from .storage import InMemoryDocumentStore, InMemoryNonceStore

logger = logging.getLogger(__name__)

# Price oracle factories keyed by provider name.
_ORACLE_FACTORIES: dict[str, Any] = {
    "pyth": lambda cfg: PythOracle(cfg.price_oracle.pyth, cfg.network),
    "static": lambda cfg: StaticPriceOracle(cfg.price_oracle.static_prices),
}


class Engine:
    """Every service, wired once per process. No module-level singletons."""

    def __init__(
        self,
        config: AppConfig,
        store: DocumentStore | None = None,
        nonces: NonceStore | None = None,
        oracle: PriceOracle | None = None,
    ) -> None:
        self.config = config
        self.chains = ChainRegistry.from_config(config.chains)

        self.clients: dict[str, EvmClient] = {
            chain.id: EvmClient(chain, config.network) for chain in self.chains
        }
        self.adapters: dict[str, StrategyContractAdapter] = {
            chain_id: StrategyContractAdapter(self.clients[chain_id], chain_cfg)
            for chain_id, chain_cfg in config.chains.items()
        }
        self.router = StrategyRouter(self.adapters)

        self.oracle: PriceOracle = oracle or _ORACLE_FACTORIES[config.price_oracle.provider](config)
        self.normalizer = ValuationNormalizer(
            self.oracle, self.chains, aliases=config.price_oracle.aliases
        )
        self.registry = OpportunityRegistry(
            list(self.adapters.values()), self.normalizer, self.chains
        )

        self.executor = RpcContractExecutor(
            clients=self.clients,
            aggregators={cid: c.aggregator_address for cid, c in config.chains.items()},
            chain_ids={chain.id: chain.evm_chain_id for chain in self.chains},
            config=config.executor,
        )
        self.lifecycle = PositionLifecycleManager(self.executor)
        self.portfolio = PortfolioAggregator(
            positions=self.router,
            reader=self.router,
            registry=self.registry,
            normalizer=self.normalizer,
            lifecycle=self.lifecycle,
        )

        self.store: DocumentStore = store or InMemoryDocumentStore()
        self.nonces: NonceStore = nonces or InMemoryNonceStore()
        validator_chain = config.auth.validator_chain or self.chains.ids()[0]
        self.authenticator = WalletAuthenticator(
            verifiers={
                WalletKind.SIMPLE_KEY: SimpleKeyVerifier(),
                WalletKind.SMART_CONTRACT: SmartContractVerifier(self.clients[validator_chain]),
            },
            store=self.store,
            nonces=self.nonces,
            config=config.auth,
        )
        self.connections = WalletConnectionService(self.store)

        logger.info(
            "Engine ready: %d chain(s), %d strategy source(s), oracle=%s",
            len(self.chains),
            len(self.adapters),
            config.price_oracle.provider,
        )
