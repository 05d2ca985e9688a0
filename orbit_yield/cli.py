"""Command-line interface for the OrbitYield engine."""
from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal

from . import rate_math
from .api import serve
from .api.serializers import decimal_str
from .config import load_config
from .engine import Engine
from .errors import OrbitYieldError
from .logging_setup import configure_logging
from .models import DiscoveryCriteria, canonical_address
from .services.opportunity_registry import SORT_FIELDS

CENTS = Decimal("0.01")


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="orbit-yield",
        description="Cross-chain yield opportunity aggregator",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    serve_parser = sub.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (overrides config)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (overrides config)")

    opp_parser = sub.add_parser("opportunities", help="List yield opportunities")
    opp_parser.add_argument("--chain", default=None)
    opp_parser.add_argument("--min-apy", type=int, default=None, help="Minimum APY in basis points")
    opp_parser.add_argument("--max-risk", type=int, default=None)
    opp_parser.add_argument("--search", default=None)
    opp_parser.add_argument("--sort-by", default=None, choices=SORT_FIELDS)
    opp_parser.add_argument("--sort-order", default="desc", choices=["asc", "desc"])
    opp_parser.add_argument("--limit", type=int, default=20)

    portfolio_parser = sub.add_parser("portfolio", help="Show a wallet's portfolio")
    portfolio_parser.add_argument("address", help="Wallet address (0x...)")

    rates_parser = sub.add_parser("rates", help="APR/APY conversions and earnings")
    rates_sub = rates_parser.add_subparsers(dest="rates_command")
    for name, help_text in (
        ("apr-to-apy", "Convert an APR (%%) to APY (%%)"),
        ("apy-to-apr", "Convert an APY (%%) to APR (%%)"),
    ):
        conv = rates_sub.add_parser(name, help=help_text)
        conv.add_argument("value", type=float)
        conv.add_argument("--frequency", type=int, default=rate_math.DAYS_PER_YEAR)
    earnings = rates_sub.add_parser("earnings", help="Compounded earnings estimate")
    earnings.add_argument("amount", type=float)
    earnings.add_argument("apy", type=float, help="APY in percent")
    earnings.add_argument("days", type=float)

    return parser


def _run_rates(args: argparse.Namespace) -> None:
    if args.rates_command == "apr-to-apy":
        print(f"{rate_math.apr_to_apy(args.value, args.frequency):.6f}")
    elif args.rates_command == "apy-to-apr":
        print(f"{rate_math.apy_to_apr(args.value, args.frequency):.6f}")
    elif args.rates_command == "earnings":
        print(f"{rate_math.estimated_earnings(args.amount, args.apy, args.days):.6f}")
    else:
        build_parser().parse_args(["rates", "--help"])


async def _print_opportunities(engine: Engine, args: argparse.Namespace) -> None:
    result = await engine.registry.discover(
        DiscoveryCriteria(
            chain=args.chain,
            min_apy=args.min_apy,
            max_risk=args.max_risk,
            search=args.search,
            sort_by=args.sort_by,
            sort_order=args.sort_order,
            limit=args.limit,
        )
    )
    print(f"{result.total} opportunities (showing {len(result.items)})")
    for view in result.items:
        o = view.opportunity
        print(
            f"  {o.chain:<10} {o.display_name:<40} APY {decimal_str(view.apy_percent):>7}%"
            f"  risk {o.risk:>2}  TVL ${decimal_str(view.tvl_value.reference_value.quantize(1))}"
        )


async def _print_portfolio(engine: Engine, address: str) -> None:
    portfolio = await engine.portfolio.load_portfolio(canonical_address(address))
    print(f"Portfolio {portfolio.wallet_address}")
    print(f"  Total value:         ${decimal_str(portfolio.total_value.quantize(CENTS))}")
    print(f"  Annual yield (est.): ${decimal_str(portfolio.total_annual_yield.quantize(CENTS))}")
    for symbol, slice_ in portfolio.allocation.items():
        print(f"  {symbol:<8} ${decimal_str(slice_.value.quantize(CENTS)):>14}  {slice_.percentage:.2f}%")
    if portfolio.is_partial:
        print(f"  ({portfolio.omitted} position(s) could not be loaded)")


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    engine = Engine(config)

    if args.command == "serve":
        await serve(
            engine,
            args.host or config.server.host,
            args.port or config.server.port,
        )
    elif args.command == "opportunities":
        await _print_opportunities(engine, args)
    elif args.command == "portfolio":
        await _print_portfolio(engine, args.address)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "rates":
            configure_logging(args.log_level)
            _run_rates(args)
        else:
            asyncio.run(_run(args))
    except OrbitYieldError as e:
        print(f"Error ({e.kind}): {e.message}", file=sys.stderr)
        sys.exit(2)
