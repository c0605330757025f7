"""Scheduled monitoring and alert delivery."""

from gaspool.monitor.alerts import (
    Alert,
    AlertKind,
    AlertSeverity,
    AlertSink,
    LoggingAlertSink,
    WebhookAlertSink,
)
from gaspool.monitor.monitor import PaymasterMonitor

__all__ = [
    "Alert",
    "AlertKind",
    "AlertSeverity",
    "AlertSink",
    "LoggingAlertSink",
    "PaymasterMonitor",
    "WebhookAlertSink",
]
