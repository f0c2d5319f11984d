# ============================================================================
# RETRY EXECUTION
# ============================================================================
# STATUS: Infrastructure - Transport-side retry loop
# PURPOSE: Apply a RetryPolicy to transient transport faults
# CREATED: 19 OCT 2026
# ============================================================================
"""
Retry Execution

The Azure transport hands RetryPolicy to the SDK (RetryPolicy.to_client_kwargs).
Transports without built-in retry (the in-memory broker) wrap each primitive
in run_with_retry instead.

Only TransientTransportError is retried. Anything else, including
ArgumentError, ConfigurationError and SerializationError, propagates on the
first raise.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from busbridge.core.errors import TransientTransportError, TransportError
from busbridge.core.logging import ComponentType, get_logger
from busbridge.core.models import RetryPolicy

logger = get_logger(__name__, ComponentType.TRANSPORT)

R = TypeVar("R")


async def run_with_retry(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[R]],
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> R:
    """
    Run `operation`, retrying transient faults per `policy`.

    Raises:
        TransportError: After max_retries retries all failed transiently
    """
    attempts = policy.max_retries + 1
    for attempt in range(attempts):
        try:
            return await operation()
        except TransientTransportError as e:
            if attempt == attempts - 1:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise TransportError(
                    f"{description} failed after {attempts} attempts: {e}"
                ) from e

            delay = policy.delay_for(attempt)
            logger.warning(
                f"Transient error on {description} attempt {attempt + 1}/{attempts}: "
                f"{type(e).__name__}, retrying in {delay:.2f}s"
            )
            await sleep(delay)

    # attempts >= 1, so the loop always returns or raises
    raise AssertionError("unreachable")


__all__ = ["run_with_retry"]
