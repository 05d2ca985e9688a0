"""Pure rate conversions: APR/APY, basis points, compounded earnings.

Rates are percentages (``18.0`` means 18%) unless a function name says bps.
Conversions go through ``log1p``/``expm1`` so tiny rates survive the round trip.
"""
from __future__ import annotations

import math
from decimal import Decimal, localcontext

from .errors import InvalidArgument

DAYS_PER_YEAR = 365


def _require_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise InvalidArgument(f"{name} must be non-negative, got {value}")


def _require_frequency(n: int) -> None:
    if n <= 0:
        raise InvalidArgument(f"compounding frequency must be positive, got {n}")


def apr_to_apy(apr: float, compounding_frequency: int = DAYS_PER_YEAR) -> float:
    """Annual rate compounded ``compounding_frequency`` times → effective yield."""
    _require_non_negative("apr", apr)
    _require_frequency(compounding_frequency)
    n = compounding_frequency
    return math.expm1(n * math.log1p(apr / 100 / n)) * 100


def apy_to_apr(apy: float, compounding_frequency: int = DAYS_PER_YEAR) -> float:
    """Inverse of :func:`apr_to_apy`."""
    _require_non_negative("apy", apy)
    _require_frequency(compounding_frequency)
    n = compounding_frequency
    return math.expm1(math.log1p(apy / 100) / n) * n * 100


def estimated_earnings(amount: float, apy: float, duration_days: float) -> float:
    """Earnings on ``amount`` after ``duration_days`` at a daily-compounded ``apy``.

    ``daily_rate = (1 + apy/100) ** (1/365) - 1`` applied ``duration_days`` times.
    """
    _require_non_negative("amount", amount)
    _require_non_negative("apy", apy)
    _require_non_negative("duration_days", duration_days)
    return amount * math.expm1(duration_days / DAYS_PER_YEAR * math.log1p(apy / 100))


def earnings_factor(apy: Decimal | int | str, duration_days: Decimal | int | str) -> Decimal:
    """Growth over ``duration_days`` minus one, in Decimal: ``value * factor`` is the earnings."""
    apy = Decimal(str(apy))
    duration_days = Decimal(str(duration_days))
    _require_non_negative("apy", apy)
    _require_non_negative("duration_days", duration_days)
    if apy == 0 or duration_days == 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = 50
        factor = (1 + apy / 100) ** (duration_days / DAYS_PER_YEAR) - 1
    return +factor


def bps_to_percent(bps: int) -> Decimal:
    """1800 → Decimal('18')."""
    _require_non_negative("bps", bps)
    return Decimal(bps) / 100


def percent_to_bps(percent: float | Decimal) -> int:
    """18.5 → 1850, rounded half-even to the nearest basis point."""
    _require_non_negative("percent", float(percent))
    return int((Decimal(str(percent)) * 100).to_integral_value())
