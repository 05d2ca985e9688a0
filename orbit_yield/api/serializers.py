"""JSON shapes for the HTTP API. Amounts stay integer strings; Decimals become strings."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from ..models import (
    ChainInfo,
    EnrichedPosition,
    NormalizedValue,
    OpportunityView,
    Portfolio,
    Session,
    ValuationWarning,
    WalletConnection,
)


def decimal_str(value: Decimal) -> str:
    """Fixed-point string, never scientific notation."""
    return format(value, "f")


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment else None


def warning_to_dict(warning: ValuationWarning) -> dict[str, str]:
    return {"kind": warning.kind, "message": warning.message, "subject": warning.subject}


def value_to_dict(value: NormalizedValue) -> dict[str, Any]:
    return {
        "formattedAmount": decimal_str(value.formatted_amount),
        "referenceValue": decimal_str(value.reference_value),
        "price": decimal_str(value.price),
        "warnings": [warning_to_dict(w) for w in value.warnings],
    }


def opportunity_to_dict(view: OpportunityView) -> dict[str, Any]:
    o = view.opportunity
    return {
        "id": o.id,
        "name": o.display_name,
        "chain": o.chain,
        "protocol": o.protocol_name,
        "strategyType": o.strategy_type.value,
        "strategyAddress": o.strategy_address,
        "assetAddress": o.asset_address,
        "asset": o.asset_symbol,
        "decimals": o.asset_decimals,
        "apy": o.apy,
        "apyPercent": decimal_str(view.apy_percent),
        "risk": o.risk,
        "tvl": o.tvl,
        "tvlValue": value_to_dict(view.tvl_value),
        "minDeposit": o.min_deposit,
        "minDepositValue": value_to_dict(view.min_deposit_value),
        "lockupPeriod": o.lockup_period,
        "sponsoredGas": o.sponsored_gas,
        "oracle": o.oracle or None,
        "bridge": o.bridge or None,
    }


def position_to_dict(item: EnrichedPosition) -> dict[str, Any]:
    p = item.position
    data: dict[str, Any] = {
        "chain": p.chain,
        "strategy": p.strategy_address,
        "asset": p.asset_address,
        "owner": p.owner,
        "amount": p.amount,
        "rewards": p.rewards,
        "entryTimestamp": p.entry_timestamp,
        "lastUpdateTimestamp": p.last_update_timestamp,
        "state": p.state.value,
        "bridge": item.bridge or None,
        "warnings": [warning_to_dict(w) for w in item.warnings],
        "error": warning_to_dict(item.error) if item.error else None,
    }
    if item.details is not None:
        data.update(
            strategyType=item.details.strategy_type,
            protocol=item.details.protocol,
            apy=item.details.apy,
            risk=item.details.risk,
        )
    if item.token is not None:
        data.update(assetSymbol=item.token.symbol, decimals=item.token.decimals)
    if item.value is not None:
        data.update(
            formattedAmount=decimal_str(item.value.formatted_amount),
            valueUSD=decimal_str(item.value.reference_value),
        )
    return data


def portfolio_to_dict(portfolio: Portfolio) -> dict[str, Any]:
    return {
        "walletAddress": portfolio.wallet_address,
        "positions": [position_to_dict(p) for p in portfolio.positions],
        "totalValue": decimal_str(portfolio.total_value),
        "totalAnnualYield": decimal_str(portfolio.total_annual_yield),
        "allocation": {
            symbol: {
                "value": decimal_str(s.value),
                "percentage": decimal_str(s.percentage.quantize(Decimal("0.01"))),
            }
            for symbol, s in portfolio.allocation.items()
        },
        "omitted": portfolio.omitted,
        "partial": portfolio.is_partial,
        "warnings": [warning_to_dict(w) for w in portfolio.warnings],
    }


def session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.user_id,
        "walletAddress": session.wallet_address,
        "sessionToken": session.session_token,
        "connectedWallets": [
            {"address": w.address, "type": w.kind.value, "lastUsed": _iso(w.last_used)}
            for w in session.connected_wallets
        ],
        "createdAt": _iso(session.created_at),
    }


def connection_to_dict(connection: WalletConnection) -> dict[str, Any]:
    return {
        "id": connection.id,
        "walletAddress": connection.wallet_address,
        "walletType": connection.wallet_kind.value,
        "connectedAt": _iso(connection.connected_at),
        "lastUsed": _iso(connection.last_used),
        "isActive": connection.is_active,
    }


def chain_to_dict(chain: ChainInfo) -> dict[str, Any]:
    return {
        "id": chain.id,
        "name": chain.name,
        "nativeCurrency": {"symbol": chain.native_symbol, "decimals": chain.native_decimals},
        "explorerUrl": chain.explorer_url,
        "isTestnet": chain.is_testnet,
        "chainId": chain.evm_chain_id,
    }
