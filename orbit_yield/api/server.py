"""aiohttp.web application exposing discovery, portfolio and wallet auth."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from aiohttp import web

from .. import rate_math
from ..engine import Engine
from ..errors import InvalidArgument, InvalidQuery, OrbitYieldError
from ..models import DiscoveryCriteria, WalletKind, canonical_address
from . import serializers

logger = logging.getLogger(__name__)

ENGINE = web.AppKey("engine", Engine)

DEFAULT_PAGE_SIZE = 20
DEFAULT_WALLET_TYPE = "metamask"

# minApy/maxApy are basis points unless apyUnit=percent
APY_UNITS = ("bps", "percent")

# Query-string sort names → registry sort fields
_SORT_FIELD_ALIASES = {
    "minDeposit": "min_deposit",
    "lockupPeriod": "lockup_period",
    "protocolName": "protocol",
    "assetSymbol": "asset",
}


# =============================================================================
# Request parsing
# =============================================================================


def _int_param(query: Mapping[str, str], name: str, default: int | None = None) -> int | None:
    raw = query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidQuery(f"'{name}' must be an integer, got '{raw}'") from None


def _apy_param(query: Mapping[str, str], name: str, unit: str) -> int | None:
    """APY bound in basis points; ``unit=percent`` takes a percentage such as ``9.5``."""
    if unit == "bps":
        return _int_param(query, name)
    raw = query.get(name)
    if raw is None or raw == "":
        return None
    try:
        percent = Decimal(raw)
    except InvalidOperation:
        percent = None
    if percent is None or not percent.is_finite() or percent < 0:
        raise InvalidQuery(f"'{name}' must be a non-negative percentage, got '{raw}'")
    return rate_math.percent_to_bps(percent)


def _bool_param(query: Mapping[str, str], name: str) -> bool | None:
    raw = query.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise InvalidQuery(f"'{name}' must be a boolean, got '{raw}'")


def _str_param(query: Mapping[str, str], name: str) -> str | None:
    raw = query.get(name)
    return raw if raw else None


def criteria_from_query(query: Mapping[str, str]) -> DiscoveryCriteria:
    sort_by = _str_param(query, "sortBy")
    apy_unit = (_str_param(query, "apyUnit") or "bps").lower()
    if apy_unit not in APY_UNITS:
        raise InvalidQuery(
            f"Invalid apyUnit '{apy_unit}'", details={"allowed": list(APY_UNITS)}
        )
    return DiscoveryCriteria(
        chain=_str_param(query, "chain"),
        min_apy=_apy_param(query, "minApy", apy_unit),
        max_apy=_apy_param(query, "maxApy", apy_unit),
        max_risk=_int_param(query, "maxRisk"),
        strategy_type=_str_param(query, "strategyType"),
        sponsored_gas=_bool_param(query, "sponsoredGas"),
        has_oracle=_str_param(query, "hasOracle"),
        bridge=_str_param(query, "bridge"),
        search=_str_param(query, "search"),
        sort_by=_SORT_FIELD_ALIASES.get(sort_by, sort_by) if sort_by else None,
        sort_order=(_str_param(query, "sortOrder") or "desc").lower(),
        page=_int_param(query, "page", 1),
        limit=_int_param(query, "limit", DEFAULT_PAGE_SIZE),
    )


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidQuery("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise InvalidQuery("JSON body must be an object")
    return body


def _require(body: Mapping[str, Any], *names: str) -> None:
    """Every named field must be a non-empty string."""
    missing = [n for n in names if not body.get(n)]
    if missing:
        raise InvalidArgument(f"Missing required field(s): {', '.join(missing)}")
    wrong = [n for n in names if not isinstance(body[n], str)]
    if wrong:
        raise InvalidArgument(f"Field(s) must be strings: {', '.join(wrong)}")


def _pagination(total: int, page: int, limit: int, pages: int) -> dict[str, int]:
    return {"total": total, "page": page, "limit": limit, "pages": pages}


async def _current_user(request: web.Request) -> dict[str, Any]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        token = ""
    return await request.app[ENGINE].authenticator.resolve_session(token.strip())


# =============================================================================
# Middleware
# =============================================================================


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except OrbitYieldError as e:
        if e.status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.path, e)
        return web.json_response(e.to_dict(), status=e.status)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response(
            {
                "success": False,
                "error": {"kind": "InternalError", "message": "Internal server error", "details": {}},
            },
            status=500,
        )


# =============================================================================
# Handlers
# =============================================================================


async def health(request: web.Request) -> web.Response:
    engine = request.app[ENGINE]
    refreshed_at = engine.registry.refreshed_at
    return web.json_response(
        {
            "status": "ok",
            "chains": len(engine.chains),
            "opportunities": len(engine.registry.snapshot),
            "refreshedAt": refreshed_at.isoformat() if refreshed_at else None,
        }
    )


async def list_chains(request: web.Request) -> web.Response:
    engine = request.app[ENGINE]
    return web.json_response(
        {"success": True, "data": [serializers.chain_to_dict(c) for c in engine.chains]}
    )


async def list_opportunities(request: web.Request) -> web.Response:
    criteria = criteria_from_query(request.query)
    result = await request.app[ENGINE].registry.discover(criteria)
    return web.json_response(
        {
            "success": True,
            "data": [serializers.opportunity_to_dict(v) for v in result.items],
            "pagination": _pagination(result.total, result.page, result.limit, result.pages),
        }
    )


async def get_portfolio(request: web.Request) -> web.Response:
    address = canonical_address(request.match_info["wallet_address"])
    portfolio = await request.app[ENGINE].portfolio.load_portfolio(address)
    return web.json_response({"success": True, "data": serializers.portfolio_to_dict(portfolio)})


async def issue_nonce(request: web.Request) -> web.Response:
    address = request.query.get("walletAddress")
    if not address:
        raise InvalidArgument("walletAddress is required")
    kind = WalletKind.parse(request.query.get("type") or DEFAULT_WALLET_TYPE)
    challenge = await request.app[ENGINE].authenticator.issue_nonce(address, kind)
    return web.json_response(
        {
            "success": True,
            "nonce": challenge.nonce,
            "message": challenge.message,
            "walletType": challenge.wallet_kind.value,
            "expiresAt": challenge.expires_at.isoformat(),
        }
    )


async def authenticate(request: web.Request) -> web.Response:
    body = await _json_body(request)
    _require(body, "walletAddress", "signature", "nonce")
    session = await request.app[ENGINE].authenticator.authenticate(
        wallet_address=body["walletAddress"],
        signature=body["signature"],
        nonce=body["nonce"],
        wallet_kind=WalletKind.parse(body.get("walletType") or DEFAULT_WALLET_TYPE),
    )
    return web.json_response({"success": True, "user": serializers.session_to_dict(session)})


async def list_connections(request: web.Request) -> web.Response:
    user = await _current_user(request)
    kind_raw = request.query.get("type")
    page = await request.app[ENGINE].connections.list(
        user["_id"],
        wallet_kind=WalletKind.parse(kind_raw) if kind_raw else None,
        page=_int_param(request.query, "page", 1),
        limit=_int_param(request.query, "limit", DEFAULT_PAGE_SIZE),
    )
    return web.json_response(
        {
            "success": True,
            "data": [serializers.connection_to_dict(c) for c in page.items],
            "pagination": _pagination(page.total, page.page, page.limit, page.pages),
        }
    )


async def add_connection(request: web.Request) -> web.Response:
    user = await _current_user(request)
    body = await _json_body(request)
    _require(body, "walletAddress")
    connection = await request.app[ENGINE].connections.add(
        user["_id"],
        body["walletAddress"],
        WalletKind.parse(body.get("walletType") or DEFAULT_WALLET_TYPE),
    )
    return web.json_response(
        {"success": True, "data": serializers.connection_to_dict(connection)}, status=201
    )


async def remove_connection(request: web.Request) -> web.Response:
    user = await _current_user(request)
    connection_id = request.query.get("connectionId")
    if not connection_id and request.can_read_body:
        connection_id = (await _json_body(request)).get("connectionId")
    if not connection_id or not isinstance(connection_id, str):
        raise InvalidArgument("connectionId is required")
    await request.app[ENGINE].connections.remove(user["_id"], connection_id)
    return web.json_response({"success": True})


# =============================================================================
# App setup
# =============================================================================


def create_app(engine: Engine) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[ENGINE] = engine

    app.router.add_get("/health", health)
    app.router.add_get("/chains", list_chains)
    app.router.add_get("/opportunities", list_opportunities)
    app.router.add_get("/portfolio/{wallet_address}", get_portfolio)
    app.router.add_get("/wallet-auth", issue_nonce)
    app.router.add_post("/wallet-auth", authenticate)
    app.router.add_get("/wallet/connections", list_connections)
    app.router.add_post("/wallet/connections", add_connection)
    app.router.add_delete("/wallet/connections", remove_connection)
    return app


async def serve(engine: Engine, host: str, port: int) -> None:
    """Run the API until cancelled."""
    runner = web.AppRunner(create_app(engine))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("OrbitYield API listening on http://%s:%d", host, port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
