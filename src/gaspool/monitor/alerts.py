"""
Monitor alerts and where they go.

Sinks are fire-and-forget: a sink that cannot deliver logs the failure and
the monitor moves on.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from gaspool.core.logging import get_logger
from gaspool.core.types import utcnow

logger = get_logger("monitor.alerts")


class AlertKind(str, Enum):
    LOW_BALANCE = "low_balance"
    CRITICAL_BALANCE = "critical_balance"
    RETRY_EXHAUSTED = "retry_exhausted"
    HEALTH_SUMMARY = "health_summary"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_LOG_LEVELS = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.CRITICAL: logging.ERROR,
}


@dataclass(frozen=True)
class Alert:
    """A monitor finding."""

    kind: AlertKind
    severity: AlertSeverity
    message: str
    project_id: str | None = None
    chain: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "project_id": self.project_id,
            "chain": self.chain,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
        }


class AlertSink(ABC):
    """Destination for alerts."""

    @abstractmethod
    async def emit(self, alert: Alert) -> None: ...

    async def close(self) -> None:
        return None


class LoggingAlertSink(AlertSink):
    """Writes alerts to the gaspool logger."""

    async def emit(self, alert: Alert) -> None:
        scope = "/".join(part for part in (alert.project_id, alert.chain) if part)
        prefix = f"{alert.kind.value} [{scope}]" if scope else alert.kind.value
        logger.log(_LOG_LEVELS[alert.severity], f"{prefix} {alert.message}")


class WebhookAlertSink(AlertSink):
    """
    POSTs alerts as JSON to a webhook.

    Usage:
        >>> sink = WebhookAlertSink("https://hooks.example.com/gaspool")
    """

    TIMEOUT = 10.0

    def __init__(self, url: str, http_client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._http_client = http_client
        self._owns_client = False

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.TIMEOUT)
            self._owns_client = True
        return self._http_client

    async def emit(self, alert: Alert) -> None:
        try:
            response = await self._get_client().post(self._url, json=alert.to_dict())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Alert webhook delivery failed ({alert.kind.value}): {e}")

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
