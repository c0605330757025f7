"""
Retry strategies using Tenacity.

Standard retry policy for chain RPC calls: a few quick attempts with
exponential backoff, only for transient failures.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from gaspool.core.exceptions import ChainRpcError
from gaspool.core.logging import get_logger

logger = get_logger("resilience.retry")

T = TypeVar("T")

MAX_ATTEMPTS = 3


def is_transient_error(exception: BaseException) -> bool:
    """Network-level failures and ChainRpcErrors flagged transient."""
    if isinstance(exception, ChainRpcError):
        return exception.transient
    return isinstance(exception, httpx.TransportError)


async def execute_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Execute an async function with the standard retry policy."""
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(MAX_ATTEMPTS),
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    ):
        with attempt:
            return await func(*args, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
