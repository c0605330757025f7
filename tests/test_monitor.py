"""Tests for the paymaster monitor and alert sinks."""

import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from gaspool.balances.ledger import BalanceLedger
from gaspool.balances.prices import PriceCache, StaticPriceSource
from gaspool.core.chains import ChainCategory
from gaspool.core.types import DeploymentStatus, PaymasterStatus, utcnow
from gaspool.monitor.alerts import Alert, AlertKind, AlertSeverity, AlertSink, WebhookAlertSink
from gaspool.monitor.monitor import PaymasterMonitor
from gaspool.provisioning.orchestrator import ProvisioningOrchestrator


class RecordingSink(AlertSink):
    def __init__(self):
        self.alerts = []

    async def emit(self, alert):
        self.alerts.append(alert)

    def kinds(self):
        return [a.kind for a in self.alerts]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def ledger(config, registry, adapters, storage):
    return BalanceLedger(config, registry, adapters, PriceCache(storage, StaticPriceSource()))


@pytest.fixture
def monitor(config, registry, ledger, orchestrator, sink):
    return PaymasterMonitor(config, registry, ledger, orchestrator, sinks=[sink])


class TestBalanceAlerts:
    @pytest.mark.asyncio
    async def test_low_and_critical(self, monitor, orchestrator, sink):
        # EVM gets 0.002 ETH ($4) from the deployer; SVM stays at $0
        await orchestrator.provision("proj1", ["ethereum", "solana"])
        await monitor.refresh_balances()

        alerts = await monitor.check_low_balances()

        by_chain = {a.chain: a for a in alerts}
        assert by_chain["ethereum"].kind == AlertKind.LOW_BALANCE
        assert by_chain["ethereum"].severity == AlertSeverity.WARNING
        assert by_chain["ethereum"].data["threshold_usd"] == "10"
        assert by_chain["solana"].kind == AlertKind.CRITICAL_BALANCE
        assert by_chain["solana"].severity == AlertSeverity.CRITICAL
        assert sink.alerts == alerts

    @pytest.mark.asyncio
    async def test_healthy_balance_no_alert(self, monitor, orchestrator, evm_adapter):
        (evm,) = await orchestrator.provision("proj1", ["ethereum"])
        evm_adapter.fund("ethereum", evm.address, Decimal("1"))
        await monitor.refresh_balances()

        assert await monitor.check_low_balances() == []

    @pytest.mark.asyncio
    async def test_unrefreshed_rows_skipped(self, monitor, orchestrator):
        await orchestrator.provision("proj1", ["ethereum", "solana"])

        assert await monitor.check_low_balances() == []

    @pytest.mark.asyncio
    async def test_suspended_not_monitored(self, monitor, orchestrator, registry):
        await orchestrator.provision("proj1", ["solana"])
        await monitor.refresh_balances()
        await registry.set_status("proj1", ChainCategory.SVM, PaymasterStatus.SUSPENDED)

        assert await monitor.check_low_balances() == []


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_summary(self, monitor, orchestrator, sink):
        await orchestrator.provision("proj1", ["ethereum", "solana"])
        await orchestrator.provision("proj2", ["arbitrum"])
        await monitor.refresh_balances()

        summary = await monitor.health_check()

        assert summary["total_paymasters"] == 3
        assert summary["projects"] == 2
        assert summary["by_deployment_status"] == {"deployed": 2, "pending_funding": 1}
        assert summary["by_category"] == {"evm": 2, "svm": 1}
        assert Decimal(summary["total_balance_usd"]) == Decimal("8")
        assert sink.kinds() == [AlertKind.HEALTH_SUMMARY]
        assert sink.alerts[0].severity == AlertSeverity.INFO


class TestFundingRetrySweep:
    @pytest.mark.asyncio
    async def test_backoff_schedule(self, monitor, orchestrator, registry, config):
        await orchestrator.provision("proj1", ["solana"])
        now = utcnow()

        outcomes = await monitor.retry_pending_deployments(now=now)

        assert [o.status for o in outcomes] == [DeploymentStatus.PENDING_FUNDING]
        paymaster = await registry.find_by_project_and_category("proj1", ChainCategory.SVM)
        assert paymaster.retry_count == 1
        assert paymaster.next_retry_at == now + timedelta(seconds=config.retry_base_delay)

        # Not due yet
        assert await monitor.retry_pending_deployments(now=now + timedelta(seconds=60)) == []

        later = now + timedelta(seconds=config.retry_base_delay + 1)
        await monitor.retry_pending_deployments(now=later)
        paymaster = await registry.find_by_project_and_category("proj1", ChainCategory.SVM)
        assert paymaster.retry_count == 2
        assert paymaster.next_retry_at == later + timedelta(seconds=config.retry_base_delay * 2)

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, monitor, config):
        assert monitor._backoff(0) == timedelta(seconds=config.retry_base_delay)
        assert monitor._backoff(30) == timedelta(seconds=config.retry_max_delay)

    @pytest.mark.asyncio
    async def test_success_resets_counter(
        self, monitor, orchestrator, registry, svm_adapter, sink
    ):
        (svm,) = await orchestrator.provision("proj1", ["solana"])
        now = utcnow()
        await monitor.retry_pending_deployments(now=now)
        svm_adapter.fund("solana", svm.address, Decimal("0.01"))

        later = now + timedelta(days=1)
        (outcome,) = await monitor.retry_pending_deployments(now=later)

        assert outcome.status == DeploymentStatus.DEPLOYED
        paymaster = await registry.find_by_project_and_category("proj1", ChainCategory.SVM)
        assert paymaster.is_deployed
        assert paymaster.retry_count == 0
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_exhaustion_alert(
        self, config, registry, ledger, adapters, locks, vault, sink
    ):
        limited = config.with_updates(max_deployment_retries=2)
        orchestrator = ProvisioningOrchestrator(limited, registry, adapters, locks, vault=vault)
        monitor = PaymasterMonitor(limited, registry, ledger, orchestrator, sinks=[sink])
        await orchestrator.provision("proj1", ["solana"])
        now = utcnow()

        await monitor.retry_pending_deployments(now=now)
        assert sink.alerts == []
        await monitor.retry_pending_deployments(now=now + timedelta(days=1))

        assert sink.kinds() == [AlertKind.RETRY_EXHAUSTED]
        assert sink.alerts[0].project_id == "proj1"
        paymaster = await registry.find_by_project_and_category("proj1", ChainCategory.SVM)
        assert paymaster.retry_count == 2
        assert paymaster.next_retry_at is None

        # No further automatic attempts
        assert await monitor.retry_pending_deployments(now=now + timedelta(days=30)) == []

        # A manual retry still works
        (outcome,) = await orchestrator.retry_deployment("proj1")
        assert outcome.status == DeploymentStatus.PENDING_FUNDING

    @pytest.mark.asyncio
    async def test_deployed_records_ignored(self, monitor, orchestrator, evm_adapter):
        await orchestrator.provision("proj1", ["ethereum"])
        evm_adapter.deploy_calls.clear()

        assert await monitor.retry_pending_deployments() == []
        assert evm_adapter.deploy_calls == []


class TestScheduler:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, monitor):
        assert monitor.is_running is False

        monitor.start()
        try:
            assert monitor.is_running is True
            status = monitor.get_status()
            assert status["is_running"] is True
            assert sorted(job["id"] for job in status["jobs"]) == [
                "balance_refresh",
                "funding_retry",
                "health_summary",
                "low_balance_scan",
            ]
            assert status["intervals"]["balance_refresh"] == 300.0
            assert status["thresholds"]["evm"] == {"low_usd": "10", "critical_usd": "2"}

            # Starting twice is harmless
            monitor.start()
        finally:
            monitor.stop()

        assert monitor.is_running is False
        assert monitor.get_status()["jobs"] == []

    @pytest.mark.asyncio
    async def test_failing_job_is_contained(self, monitor):
        async def boom():
            raise RuntimeError("boom")

        await monitor._run_job("boom", boom)


class TestWebhookAlertSink:
    @pytest.mark.asyncio
    async def test_posts_json(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookAlertSink("https://hooks.test/gaspool", http_client=client)

        await sink.emit(
            Alert(
                kind=AlertKind.CRITICAL_BALANCE,
                severity=AlertSeverity.CRITICAL,
                message="empty",
                project_id="proj1",
                chain="solana",
            )
        )

        assert received[0]["kind"] == "critical_balance"
        assert received[0]["chain"] == "solana"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_raise(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        sink = WebhookAlertSink("https://hooks.test/gaspool", http_client=client)

        await sink.emit(Alert(kind=AlertKind.LOW_BALANCE, severity=AlertSeverity.WARNING, message="x"))
        await client.aclose()
