"""Tests for PaymasterRegistry and RecordLockService."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from gaspool.core.chains import ChainCategory
from gaspool.core.exceptions import (
    DuplicateCategoryError,
    PaymasterNotFoundError,
    RecordLockError,
    ValidationError,
)
from gaspool.core.types import (
    DeploymentResult,
    DeploymentStatus,
    DeployResult,
    Paymaster,
    PaymasterBalance,
    PaymasterStatus,
    utcnow,
)
from gaspool.registry.lock import RecordLockService, paymaster_lock_key


@pytest.fixture
def make_paymaster(vault):
    def _make(project_id="proj1", category=ChainCategory.EVM, chains=None):
        chains = chains or (["ethereum"] if category == ChainCategory.EVM else ["solana"])
        return Paymaster(
            project_id=project_id,
            chain_category=category,
            supported_chains=list(chains),
            primary_deployment_chain=chains[0],
            address=f"addr-{project_id}-{category.value}",
            encrypted_private_key=vault.seal(project_id, "ab" * 32),
        )

    return _make


class TestPaymasterRecords:
    @pytest.mark.asyncio
    async def test_create_and_find(self, registry, make_paymaster):
        await registry.create(make_paymaster())

        found = await registry.find_by_project_and_category("proj1", ChainCategory.EVM)
        assert found is not None
        assert found.address == "addr-proj1-evm"
        assert found.deployment_status == DeploymentStatus.CREATED
        assert found.status == PaymasterStatus.ACTIVE
        assert found.version == 1

    @pytest.mark.asyncio
    async def test_duplicate_category_rejected(self, registry, make_paymaster):
        await registry.create(make_paymaster())
        with pytest.raises(DuplicateCategoryError):
            await registry.create(make_paymaster())

    @pytest.mark.asyncio
    async def test_find_by_project_ordered_by_category(self, registry, make_paymaster):
        await registry.create(make_paymaster(category=ChainCategory.SVM))
        await registry.create(make_paymaster(category=ChainCategory.EVM))
        await registry.create(make_paymaster(project_id="proj2"))

        paymasters = await registry.find_by_project("proj1")
        assert [p.chain_category for p in paymasters] == [ChainCategory.EVM, ChainCategory.SVM]

    @pytest.mark.asyncio
    async def test_find_by_project_and_chain(self, registry, make_paymaster):
        await registry.create(make_paymaster(chains=["ethereum", "arbitrum"]))

        assert (await registry.find_by_project_and_chain("proj1", "Arbitrum")) is not None
        assert await registry.find_by_project_and_chain("proj1", "polygon") is None
        assert await registry.find_by_project_and_chain("proj1", "solana") is None

    @pytest.mark.asyncio
    async def test_find_all_filters(self, registry, make_paymaster):
        await registry.create(make_paymaster())
        await registry.create(make_paymaster(project_id="proj2"))
        await registry.update_deployment_outcome(
            "proj2", ChainCategory.EVM, DeploymentStatus.FAILED, last_error="boom"
        )

        assert len(await registry.find_all()) == 2
        failed = await registry.find_all(deployment_status=DeploymentStatus.FAILED)
        assert [p.project_id for p in failed] == ["proj2"]

    @pytest.mark.asyncio
    async def test_stored_record_keeps_key_sealed(self, registry, storage, make_paymaster):
        paymaster = await registry.create(make_paymaster())

        stored = await storage.get(registry.COLLECTION, paymaster.key)
        assert "ciphertext" in stored["encrypted_private_key"]
        assert "encrypted_private_key" not in paymaster.to_public_dict()


class TestUpdateChains:
    @pytest.mark.asyncio
    async def test_union_is_monotonic(self, registry, make_paymaster):
        await registry.create(make_paymaster(chains=["ethereum"]))

        paymaster, added = await registry.update_chains(
            "proj1", ChainCategory.EVM, ["arbitrum", "ethereum", "arbitrum"]
        )
        assert added == ["arbitrum"]
        assert paymaster.supported_chains == ["ethereum", "arbitrum"]
        assert paymaster.version == 2

    @pytest.mark.asyncio
    async def test_noop_writes_nothing(self, registry, make_paymaster):
        await registry.create(make_paymaster(chains=["ethereum"]))

        paymaster, added = await registry.update_chains("proj1", ChainCategory.EVM, ["ethereum"])
        assert added == []
        assert paymaster.version == 1

    @pytest.mark.asyncio
    async def test_wrong_category_rejected(self, registry, make_paymaster):
        await registry.create(make_paymaster())
        with pytest.raises(ValidationError):
            await registry.update_chains("proj1", ChainCategory.EVM, ["solana"])

    @pytest.mark.asyncio
    async def test_missing_record(self, registry):
        with pytest.raises(PaymasterNotFoundError):
            await registry.update_chains("nope", ChainCategory.EVM, ["ethereum"])


class TestDeploymentWrites:
    @pytest.mark.asyncio
    async def test_claim_canonical_is_set_if_unset(self, registry, make_paymaster):
        await registry.create(make_paymaster(chains=["ethereum", "arbitrum"]))

        first = DeployResult("0xfirst", "0xtx1", "0xentry")
        second = DeployResult("0xsecond", "0xtx2", "0xentry")
        assert await registry.claim_canonical_deployment("proj1", ChainCategory.EVM, first)
        assert not await registry.claim_canonical_deployment("proj1", ChainCategory.EVM, second)

        paymaster = await registry.find_by_project_and_category("proj1", ChainCategory.EVM)
        assert paymaster.contract_address == "0xfirst"
        assert paymaster.deployment_tx == "0xtx1"
        assert paymaster.entry_point_address == "0xentry"

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self, registry, make_paymaster):
        await registry.create(make_paymaster())

        claims = await asyncio.gather(
            *(
                registry.claim_canonical_deployment(
                    "proj1", ChainCategory.EVM, DeployResult(f"0x{i}", None, None)
                )
                for i in range(5)
            )
        )
        assert claims.count(True) == 1

    @pytest.mark.asyncio
    async def test_concurrent_writes_are_not_lost(self, registry, make_paymaster):
        await registry.create(make_paymaster(chains=["ethereum", "arbitrum"]))

        await asyncio.gather(
            registry.record_chain_result(
                "proj1", ChainCategory.EVM, "ethereum", DeploymentResult(contract_address="0xa")
            ),
            registry.record_chain_result(
                "proj1", ChainCategory.EVM, "arbitrum", DeploymentResult(error="reverted")
            ),
        )

        paymaster = await registry.find_by_project_and_category("proj1", ChainCategory.EVM)
        assert set(paymaster.deployment_results) == {"ethereum", "arbitrum"}
        assert paymaster.version == 3

    @pytest.mark.asyncio
    async def test_deployment_outcome(self, registry, make_paymaster):
        await registry.create(make_paymaster(chains=["ethereum", "arbitrum"]))

        paymaster = await registry.update_deployment_outcome(
            "proj1",
            ChainCategory.EVM,
            DeploymentStatus.DEPLOYED,
            results={
                "ethereum": DeploymentResult(contract_address="0xa"),
                "arbitrum": DeploymentResult(error="reverted"),
            },
            retry_count=0,
        )
        assert paymaster.is_deployed
        assert paymaster.partially_deployed
        assert paymaster.deployed_chains() == ["ethereum"]

    @pytest.mark.asyncio
    async def test_schedule_retry_and_status(self, registry, make_paymaster):
        await registry.create(make_paymaster())
        when = utcnow() + timedelta(minutes=15)

        paymaster = await registry.schedule_retry("proj1", ChainCategory.EVM, 2, when)
        assert paymaster.retry_count == 2
        assert paymaster.next_retry_at == when

        paymaster = await registry.set_status("proj1", ChainCategory.EVM, PaymasterStatus.SUSPENDED)
        assert paymaster.status == PaymasterStatus.SUSPENDED
        assert await registry.find_all(status=PaymasterStatus.ACTIVE) == []


class TestDeleteAndBalances:
    @pytest.mark.asyncio
    async def test_delete(self, registry, make_paymaster):
        await registry.create(make_paymaster(category=ChainCategory.EVM))
        await registry.create(make_paymaster(category=ChainCategory.SVM))

        assert await registry.delete("proj1", [ChainCategory.SVM]) == 1
        assert await registry.delete("proj1") == 1
        assert await registry.find_by_project("proj1") == []

    @pytest.mark.asyncio
    async def test_balance_rows(self, registry):
        row = PaymasterBalance(project_id="proj1", chain="ethereum", address="0xa", symbol="ETH")
        assert await registry.create_balance(row) is True
        assert await registry.create_balance(row) is False

        row.balance_native = Decimal("0.5")
        row.price_usd = Decimal("2000")
        row.balance_usd = Decimal("1000")
        assert await registry.update_balance(row) is True

        stored = await registry.get_balance("proj1", "ethereum")
        assert stored.balance_usd == Decimal("1000")
        assert len(await registry.get_balances("proj1")) == 1

        assert await registry.delete_balances("proj1", ["ethereum"]) == 1
        assert await registry.get_balances("proj1") == []

        # Updating a deleted row does not recreate it
        assert await registry.update_balance(row) is False
        assert await registry.get_balance("proj1", "ethereum") is None


class TestRecordLockService:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, storage):
        locks = RecordLockService(storage, retry_count=1, retry_delay=0.01)
        key = paymaster_lock_key("proj1", "evm")

        token = await locks.acquire(key)
        assert token is not None
        assert await locks.acquire(key) is None

        assert await locks.release(key, token) is True
        assert await locks.acquire(key) is not None

    @pytest.mark.asyncio
    async def test_hold_raises_when_busy(self, storage):
        locks = RecordLockService(storage, retry_count=0)
        key = paymaster_lock_key("proj1", "evm")

        async with locks.hold(key):
            with pytest.raises(RecordLockError):
                async with locks.hold(key):
                    pass

        # Released after the block
        async with locks.hold(key):
            pass

    @pytest.mark.asyncio
    async def test_hold_serializes(self, storage):
        locks = RecordLockService(storage, retry_count=50, retry_delay=0.01)
        key = paymaster_lock_key("proj1", "evm")
        inside = 0
        peak = 0

        async def worker():
            nonlocal inside, peak
            async with locks.hold(key):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.02)
                inside -= 1

        await asyncio.gather(*(worker() for _ in range(3)))
        assert peak == 1
