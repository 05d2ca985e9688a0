"""Opportunity registry: snapshot of discovered opportunities plus the query engine."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from ..chains import ChainRegistry
from ..errors import InvalidArgument, InvalidQuery, NotFound, UpstreamTimeout, UpstreamUnavailable
from ..interfaces.sources import OpportunitySource
from ..models import DiscoveryCriteria, DiscoveryResult, Opportunity, OpportunityView
from .normalizer import ValuationNormalizer

logger = logging.getLogger(__name__)

SORT_ORDERS = ("asc", "desc")

_SORT_KEYS: dict[str, Callable[[OpportunityView], Any]] = {
    "apy": lambda v: v.opportunity.apy,
    "risk": lambda v: v.opportunity.risk,
    "tvl": lambda v: v.tvl_value.reference_value,
    "min_deposit": lambda v: v.min_deposit_value.reference_value,
    "lockup_period": lambda v: v.opportunity.lockup_period,
    "name": lambda v: v.opportunity.display_name.lower(),
    "protocol": lambda v: v.opportunity.protocol_name.lower(),
    "asset": lambda v: v.opportunity.asset_symbol.lower(),
    "chain": lambda v: v.opportunity.chain,
}

SORT_FIELDS = tuple(_SORT_KEYS)


def validate_criteria(criteria: DiscoveryCriteria) -> None:
    if criteria.sort_by is not None and criteria.sort_by not in _SORT_KEYS:
        raise InvalidQuery(
            f"Invalid sort field '{criteria.sort_by}'",
            details={"allowed": list(SORT_FIELDS)},
        )
    if criteria.sort_order not in SORT_ORDERS:
        raise InvalidQuery(f"Invalid sort order '{criteria.sort_order}'")
    if criteria.page < 1:
        raise InvalidQuery("page must be >= 1")
    if criteria.limit < 1:
        raise InvalidQuery("limit must be >= 1")


def _matches_search(opportunity: Opportunity, needle: str) -> bool:
    haystack = (
        opportunity.display_name,
        opportunity.protocol_name,
        opportunity.asset_symbol,
        opportunity.strategy_type.value,
    )
    return any(needle in field.lower() for field in haystack)


def _predicates(criteria: DiscoveryCriteria) -> list[Callable[[Opportunity], bool]]:
    """Pure filters for every criterion that was given."""
    preds: list[Callable[[Opportunity], bool]] = []
    if criteria.chain is not None:
        preds.append(lambda o: o.chain == criteria.chain)
    if criteria.min_apy is not None:
        preds.append(lambda o: o.apy >= criteria.min_apy)
    if criteria.max_apy is not None:
        preds.append(lambda o: o.apy <= criteria.max_apy)
    if criteria.max_risk is not None:
        preds.append(lambda o: o.risk <= criteria.max_risk)
    if criteria.strategy_type is not None:
        wanted = criteria.strategy_type.lower()
        preds.append(lambda o: o.strategy_type.value == wanted)
    if criteria.sponsored_gas is not None:
        preds.append(lambda o: o.sponsored_gas is criteria.sponsored_gas)
    if criteria.has_oracle is not None:
        preds.append(lambda o: o.oracle == criteria.has_oracle)
    if criteria.bridge is not None:
        preds.append(lambda o: o.bridge == criteria.bridge)
    return preds


def query(views: Sequence[OpportunityView], criteria: DiscoveryCriteria) -> DiscoveryResult:
    """Filter, sort and paginate ``views``. Pure."""
    validate_criteria(criteria)

    selected = list(views)
    if criteria.search:
        needle = criteria.search.lower()
        selected = [v for v in selected if _matches_search(v.opportunity, needle)]

    preds = _predicates(criteria)
    selected = [v for v in selected if all(p(v.opportunity) for p in preds)]

    if criteria.sort_by is not None:
        # sorted() is stable in both directions
        selected = sorted(
            selected,
            key=_SORT_KEYS[criteria.sort_by],
            reverse=criteria.sort_order == "desc",
        )

    start = (criteria.page - 1) * criteria.limit
    return DiscoveryResult(
        items=tuple(selected[start : start + criteria.limit]),
        total=len(selected),
        page=criteria.page,
        limit=criteria.limit,
    )


class OpportunityRegistry:
    """Discovers opportunities on demand and answers discovery queries.

    Every ``discover`` and ``get`` runs a fresh discovery cycle. The last good
    snapshot is kept for ``find_by_strategy`` and is replaced wholesale; readers
    always see either the previous or the new snapshot, never a mix.
    """

    def __init__(
        self,
        sources: Sequence[OpportunitySource],
        normalizer: ValuationNormalizer,
        chains: ChainRegistry,
    ) -> None:
        self._sources = list(sources)
        self._normalizer = normalizer
        self._chains = chains
        self._snapshot: tuple[OpportunityView, ...] | None = None
        self._refreshed_at: datetime | None = None
        self._started = 0
        self._applied = 0

    @property
    def refreshed_at(self) -> datetime | None:
        return self._refreshed_at

    @property
    def snapshot(self) -> tuple[OpportunityView, ...]:
        return self._snapshot or ()

    async def _gather_sources(self) -> list[Opportunity]:
        results = await asyncio.gather(
            *(source.fetch_opportunities() for source in self._sources),
            return_exceptions=True,
        )

        failures: list[BaseException] = []
        opportunities: list[Opportunity] = []
        for source, result in zip(self._sources, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning(
                    "Opportunity source %s failed: %s", type(source).__name__, result
                )
                failures.append(result)
                continue
            opportunities.extend(result)

        if failures:
            details = {"failed_sources": len(failures), "errors": [str(f) for f in failures]}
            if all(isinstance(f, (UpstreamTimeout, asyncio.TimeoutError)) for f in failures):
                raise UpstreamTimeout("Opportunity discovery timed out", details=details)
            raise UpstreamUnavailable("Opportunity discovery failed", details=details)
        return opportunities

    def _validated(self, opportunities: list[Opportunity]) -> list[Opportunity]:
        kept: list[Opportunity] = []
        seen: set[str] = set()
        for opportunity in opportunities:
            try:
                opportunity.validate(self._chains)
            except InvalidArgument as e:
                logger.warning("Dropping opportunity: %s", e)
                continue
            if opportunity.id in seen:
                logger.warning("Dropping duplicate opportunity %s", opportunity.id)
                continue
            seen.add(opportunity.id)
            kept.append(opportunity)
        return kept

    async def refresh(self) -> tuple[OpportunityView, ...]:
        """Run one discovery cycle and swap in the new snapshot.

        Raises UpstreamUnavailable / UpstreamTimeout if any source fails; the
        previous snapshot stays in place. When cycles overlap, a cycle that
        started earlier never replaces the result of a later one.
        """
        self._started += 1
        cycle = self._started
        opportunities = self._validated(await self._gather_sources())

        items: list[tuple[str, int, str]] = []
        for o in opportunities:
            items.append((o.tvl, o.asset_decimals, o.asset_symbol))
            items.append((o.min_deposit, o.asset_decimals, o.asset_symbol))
        values = await self._normalizer.normalize_batch(items)

        views = tuple(
            OpportunityView(
                opportunity=o,
                tvl_value=values[2 * i],
                min_deposit_value=values[2 * i + 1],
            )
            for i, o in enumerate(opportunities)
        )

        if cycle > self._applied:
            self._applied = cycle
            self._snapshot = views
            self._refreshed_at = datetime.now(timezone.utc)
            logger.info("Opportunity snapshot refreshed: %d opportunities", len(views))
        return views

    async def discover(self, criteria: DiscoveryCriteria) -> DiscoveryResult:
        validate_criteria(criteria)
        if criteria.chain is not None and criteria.chain not in self._chains:
            return DiscoveryResult(items=(), total=0, page=criteria.page, limit=criteria.limit)
        return query(await self.refresh(), criteria)

    async def get(self, opportunity_id: str) -> OpportunityView:
        """Look one opportunity up in a freshly discovered snapshot."""
        views = await self.refresh()
        for view in views:
            if view.opportunity.id == opportunity_id:
                return view
        raise NotFound(f"Opportunity '{opportunity_id}' not found")

    def find_by_strategy(
        self, chain: str, strategy_address: str, asset_address: str | None = None
    ) -> Opportunity | None:
        """Match a position to an opportunity in the current snapshot."""
        strategy_address = strategy_address.lower()
        for view in self.snapshot:
            o = view.opportunity
            if o.chain != chain or o.strategy_address.lower() != strategy_address:
                continue
            if asset_address is None or o.asset_address.lower() == asset_address.lower():
                return o
        return None
