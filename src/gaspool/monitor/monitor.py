"""
Paymaster monitor.

Background jobs on an APScheduler AsyncIOScheduler:

- Balance refresh: every 5 minutes
- Low/critical balance scan: every 10 minutes
- Health summary: hourly
- Funding retry sweep: every 15 minutes, exponential backoff per record

Each job is also a plain coroutine method, so tests and operators can run
one pass on demand.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gaspool.core.chains import ChainCategory, get_chain_category
from gaspool.core.exceptions import GasPoolError
from gaspool.core.logging import get_logger
from gaspool.core.types import (
    DeploymentStatus,
    PaymasterStatus,
    RetryOutcome,
    utcnow,
)
from gaspool.monitor.alerts import Alert, AlertKind, AlertSeverity, AlertSink, LoggingAlertSink

if TYPE_CHECKING:
    from gaspool.balances.ledger import BalanceLedger
    from gaspool.core.config import Config
    from gaspool.provisioning.orchestrator import ProvisioningOrchestrator
    from gaspool.registry.registry import PaymasterRegistry

logger = get_logger("monitor")

AUTO_RETRYABLE = (DeploymentStatus.PENDING_FUNDING, DeploymentStatus.FAILED)


class PaymasterMonitor:
    """
    Scheduled balance tracking, alerting and funding retries.

    The monitor reads the registry and writes balance rows; deployment state
    only changes through the orchestrator.
    """

    def __init__(
        self,
        config: Config,
        registry: PaymasterRegistry,
        ledger: BalanceLedger,
        orchestrator: ProvisioningOrchestrator,
        sinks: list[AlertSink] | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._sinks = sinks if sinks is not None else [LoggingAlertSink()]
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start the scheduler. Must be called with an event loop running."""
        if self.is_running:
            logger.debug("Monitor already running")
            return

        config = self._config
        scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60}
        )
        jobs = (
            ("balance_refresh", self.refresh_balances, config.balance_refresh_interval),
            ("low_balance_scan", self.check_low_balances, config.low_balance_scan_interval),
            ("health_summary", self.health_check, config.health_check_interval),
            ("funding_retry", self.retry_pending_deployments, config.funding_retry_interval),
        )
        for job_id, func, interval in jobs:
            scheduler.add_job(
                self._run_job,
                trigger=IntervalTrigger(seconds=interval),
                args=[job_id, func],
                id=job_id,
                name=job_id.replace("_", " "),
                replace_existing=True,
            )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Monitor started: balances every "
            f"{config.balance_refresh_interval:.0f}s, scans every "
            f"{config.low_balance_scan_interval:.0f}s"
        )

    def stop(self) -> None:
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Monitor stopped")

    async def _run_job(self, job_id: str, func: Any) -> None:
        # A failed pass is logged; the next interval runs regardless
        try:
            await func()
        except Exception:
            logger.exception(f"Monitor job {job_id} failed")

    def get_status(self) -> dict[str, Any]:
        jobs = []
        if self._scheduler is not None:
            for job in self._scheduler.get_jobs():
                next_run = getattr(job, "next_run_time", None)
                jobs.append(
                    {"id": job.id, "next_run_time": next_run.isoformat() if next_run else None}
                )
        return {
            "is_running": self.is_running,
            "jobs": jobs,
            "thresholds": {
                category.value: {
                    "low_usd": str(policy.low_threshold_usd),
                    "critical_usd": str(policy.critical_threshold_usd),
                }
                for category, policy in self._config.category_policies.items()
            },
            "intervals": {
                "balance_refresh": self._config.balance_refresh_interval,
                "low_balance_scan": self._config.low_balance_scan_interval,
                "health_summary": self._config.health_check_interval,
                "funding_retry": self._config.funding_retry_interval,
            },
        }

    async def _emit(self, alert: Alert) -> None:
        for sink in self._sinks:
            await sink.emit(alert)

    async def refresh_balances(self) -> None:
        await self._ledger.refresh()

    async def check_low_balances(self) -> list[Alert]:
        """
        Alert on balances under the category thresholds.

        Rows that were never refreshed are skipped.
        """
        alerts = []
        for paymaster in await self._registry.find_all(status=PaymasterStatus.ACTIVE):
            policy = self._config.policy_for(paymaster.chain_category)
            for balance in await self._registry.get_balances(paymaster.project_id):
                if balance.last_updated is None:
                    continue
                if get_chain_category(balance.chain) != paymaster.chain_category:
                    continue

                if self._ledger.is_low_balance(balance, policy.critical_threshold_usd):
                    kind, severity = AlertKind.CRITICAL_BALANCE, AlertSeverity.CRITICAL
                    threshold = policy.critical_threshold_usd
                elif self._ledger.is_low_balance(balance, policy.low_threshold_usd):
                    kind, severity = AlertKind.LOW_BALANCE, AlertSeverity.WARNING
                    threshold = policy.low_threshold_usd
                else:
                    continue

                alert = Alert(
                    kind=kind,
                    severity=severity,
                    message=(
                        f"Paymaster {balance.address} holds {balance.balance_native} "
                        f"{balance.symbol} (${balance.balance_usd:.2f}), below ${threshold}"
                    ),
                    project_id=balance.project_id,
                    chain=balance.chain,
                    data={
                        "address": balance.address,
                        "balance_native": str(balance.balance_native),
                        "balance_usd": str(balance.balance_usd),
                        "threshold_usd": str(threshold),
                    },
                )
                await self._emit(alert)
                alerts.append(alert)
        return alerts

    async def health_check(self) -> dict[str, Any]:
        """Summarize every paymaster and emit the summary as an info alert."""
        paymasters = await self._registry.find_all()
        by_status = Counter(p.deployment_status.value for p in paymasters)
        by_category = Counter(p.chain_category.value for p in paymasters)

        total_usd = Decimal("0")
        projects = {p.project_id for p in paymasters}
        for project_id in projects:
            report = await self._ledger.get_balances(project_id)
            total_usd += report.total_usd

        summary = {
            "total_paymasters": len(paymasters),
            "projects": len(projects),
            "by_deployment_status": dict(by_status),
            "by_category": dict(by_category),
            "suspended": sum(1 for p in paymasters if p.status == PaymasterStatus.SUSPENDED),
            "total_balance_usd": str(total_usd),
        }
        await self._emit(
            Alert(
                kind=AlertKind.HEALTH_SUMMARY,
                severity=AlertSeverity.INFO,
                message=(
                    f"{len(paymasters)} paymasters across {len(projects)} projects, "
                    f"${total_usd:.2f} total"
                ),
                data=summary,
            )
        )
        return summary

    def _backoff(self, retry_count: int) -> timedelta:
        delay = self._config.retry_base_delay * (2**retry_count)
        return timedelta(seconds=min(delay, self._config.retry_max_delay))

    async def retry_pending_deployments(self, now: datetime | None = None) -> list[RetryOutcome]:
        """
        Retry records stuck in pending_funding or failed whose backoff elapsed.

        After ``max_deployment_retries`` automatic attempts a record gets a
        retry_exhausted alert and is left for a manual retry.
        """
        now = now or utcnow()
        limit = self._config.max_deployment_retries
        outcomes = []

        for paymaster in await self._registry.find_all(status=PaymasterStatus.ACTIVE):
            if paymaster.deployment_status not in AUTO_RETRYABLE:
                continue
            if paymaster.retry_count >= limit:
                continue
            if paymaster.next_retry_at is not None and paymaster.next_retry_at > now:
                continue

            project_id = paymaster.project_id
            category: ChainCategory = paymaster.chain_category
            try:
                outcome = await self._orchestrator.retry_category(project_id, category)
            except GasPoolError as e:
                logger.warning(f"Automatic retry for {project_id} ({category.value}) failed: {e}")
                continue
            outcomes.append(outcome)

            if outcome.status == DeploymentStatus.DEPLOYED:
                continue

            attempts = paymaster.retry_count + 1
            if attempts >= limit:
                await self._registry.schedule_retry(project_id, category, attempts, None)
                await self._emit(
                    Alert(
                        kind=AlertKind.RETRY_EXHAUSTED,
                        severity=AlertSeverity.CRITICAL,
                        message=(
                            f"{category.value} paymaster still {outcome.status.value} after "
                            f"{attempts} automatic retries"
                        ),
                        project_id=project_id,
                        data={"address": paymaster.address, "last_error": outcome.error},
                    )
                )
            else:
                next_at = now + self._backoff(paymaster.retry_count)
                await self._registry.schedule_retry(project_id, category, attempts, next_at)
                logger.info(
                    f"{category.value} paymaster for {project_id} still "
                    f"{outcome.status.value}; next retry at {next_at.isoformat()}"
                )
        return outcomes
