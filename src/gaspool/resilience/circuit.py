"""
Distributed Circuit Breaker.

State lives in the StorageBackend so every worker sharing a Redis instance
sees the same view of a flaky chain endpoint.
"""

from __future__ import annotations

import time
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING

from gaspool.core.exceptions import CircuitOpenError
from gaspool.core.logging import get_logger

if TYPE_CHECKING:
    from gaspool.storage.base import StorageBackend

COLLECTION = "resilience"


class CircuitState(str, Enum):
    """Circuit Breaker States."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, block requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreaker:
    """
    Circuit breaker around one external service (a chain's RPC endpoints).

    After ``failure_threshold`` consecutive failures the circuit opens and
    calls fail fast with CircuitOpenError for ``recovery_timeout`` seconds.
    The next call after that is a HALF_OPEN trial call: success closes the circuit,
    failure re-opens it.

    Usage:
        >>> async with breaker:
        ...     await rpc.call("eth_blockNumber", [])
    """

    def __init__(
        self,
        service_name: str,
        storage: StorageBackend,
        failure_threshold: int = 5,
        recovery_timeout: int = 30,
    ) -> None:
        self.service = service_name
        self._storage = storage
        self.threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._logger = get_logger(f"circuit.{service_name}")
        self._key = f"circuit:{service_name}"

    async def _load(self) -> dict:
        data = await self._storage.get(COLLECTION, self._key)
        return data or {"state": CircuitState.CLOSED.value, "failures": 0, "recovery_ts": 0.0}

    async def _store(self, data: dict) -> None:
        await self._storage.save(COLLECTION, self._key, data)

    async def get_state(self) -> CircuitState:
        """Get current circuit state."""
        data = await self._load()
        return CircuitState(data["state"])

    async def is_available(self) -> bool:
        """CLOSED and HALF_OPEN let calls through; OPEN does until recovery."""
        data = await self._load()
        state = CircuitState(data["state"])

        if state != CircuitState.OPEN:
            return True

        if time.time() >= float(data["recovery_ts"]):
            self._logger.info("Recovery timeout passed. Entering HALF_OPEN.")
            data["state"] = CircuitState.HALF_OPEN.value
            await self._store(data)
            return True

        return False

    async def record_failure(self) -> None:
        data = await self._load()

        if data["state"] == CircuitState.HALF_OPEN.value:
            self._logger.warning("Failure in HALF_OPEN. Tripping back to OPEN.")
            await self.trip()
            return

        data["failures"] = int(data["failures"]) + 1
        await self._store(data)
        self._logger.warning(f"Failure recorded. Count: {data['failures']}/{self.threshold}")

        if data["failures"] >= self.threshold:
            await self.trip()

    async def record_success(self) -> None:
        data = await self._load()
        if data["state"] == CircuitState.HALF_OPEN.value:
            self._logger.info("Success in HALF_OPEN. Closing circuit.")
            await self.close()
        elif data["failures"]:
            await self.close()

    async def trip(self) -> None:
        """Trip the circuit to OPEN."""
        await self._store(
            {
                "state": CircuitState.OPEN.value,
                "failures": 0,
                "recovery_ts": time.time() + self.recovery_timeout,
            }
        )
        self._logger.error(f"Circuit TRIPPED. Blocking requests for {self.recovery_timeout}s.")

    async def close(self) -> None:
        """Close the circuit (recovered)."""
        await self._storage.delete(COLLECTION, self._key)
        self._logger.info("Circuit CLOSED.")

    async def __aenter__(self) -> CircuitBreaker:
        if not await self.is_available():
            data = await self._load()
            raise CircuitOpenError(self.service, float(data["recovery_ts"]))
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        if exc_type is None:
            await self.record_success()
        else:
            # Callers keep business errors outside the block
            await self.record_failure()
        return False
