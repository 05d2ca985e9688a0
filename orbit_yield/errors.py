"""Error taxonomy and retry policy for upstream calls."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class OrbitYieldError(Exception):
    """Base error. Carries a stable ``kind`` and an HTTP-style status."""

    kind = "InternalError"
    status = 500
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {
                "kind": self.kind,
                "message": self.message,
                "details": self.details,
            },
        }


class InvalidQuery(OrbitYieldError):
    """Malformed filter, sort field or request parameter."""

    kind = "InvalidQuery"
    status = 400


class InvalidArgument(OrbitYieldError):
    """A value outside the domain of an operation (negative rate, bad amount)."""

    kind = "InvalidArgument"
    status = 400


class Unauthorized(OrbitYieldError):
    kind = "Unauthorized"
    status = 401


class InvalidSignature(OrbitYieldError):
    kind = "InvalidSignature"
    status = 401


class NotFound(OrbitYieldError):
    kind = "NotFound"
    status = 404


class Conflict(OrbitYieldError):
    kind = "Conflict"
    status = 409


class ContractCallReverted(OrbitYieldError):
    """The node executed the call and the contract reverted."""

    kind = "ContractCallReverted"
    status = 502


class UpstreamUnavailable(OrbitYieldError):
    kind = "UpstreamUnavailable"
    status = 502
    retryable = True


class UpstreamTimeout(OrbitYieldError):
    kind = "UpstreamTimeout"
    status = 504
    retryable = True


class ContractValidationUnavailable(OrbitYieldError):
    """A smart-contract wallet check could not be performed (connectivity)."""

    kind = "ContractValidationUnavailable"
    status = 503
    retryable = True


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


async def with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    max_retries: int = 2,
    backoff_base: float = 0.5,
    label: str = "upstream call",
) -> T:
    """Run ``call`` with a per-attempt timeout and exponential backoff.

    Only retryable errors (``UpstreamTimeout``, ``UpstreamUnavailable``) are
    retried. Everything else propagates on the first failure.
    """
    attempts = max(1, max_retries + 1)
    delay = backoff_base
    last_error: OrbitYieldError = UpstreamUnavailable(f"{label} was not attempted")

    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            last_error = UpstreamTimeout(f"{label} timed out after {timeout:g}s")
        except OrbitYieldError as e:
            if not e.retryable:
                raise
            last_error = e

        if attempt < attempts - 1:
            logger.warning(
                "Retry %d/%d for %s: %s", attempt + 1, attempts - 1, label, last_error
            )
            await asyncio.sleep(delay)
            delay *= 2

    logger.error("All %d attempts failed for %s: %s", attempts, label, last_error)
    raise last_error
