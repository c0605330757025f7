"""Retry and circuit breaking for chain RPC calls."""

from gaspool.resilience.circuit import CircuitBreaker, CircuitState
from gaspool.resilience.retry import execute_with_retry, is_transient_error

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "execute_with_retry",
    "is_transient_error",
]
