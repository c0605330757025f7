import asyncio
from decimal import Decimal

import pytest

from gaspool.adapters.base import ChainAdapter
from gaspool.core.chains import ChainCategory, get_chain
from gaspool.core.config import Config
from gaspool.core.exceptions import DeployerNotConfiguredError, InsufficientDeployerBalance
from gaspool.core.types import DeployResult
from gaspool.provisioning.orchestrator import ProvisioningOrchestrator
from gaspool.registry.lock import RecordLockService
from gaspool.registry.registry import PaymasterRegistry
from gaspool.storage.memory import InMemoryStorage
from gaspool.wallet.vault import KeyVault


class FakeChainAdapter(ChainAdapter):
    """In-process chain: balances in a dict, deployments always land unless told otherwise."""

    def __init__(
        self,
        category: ChainCategory,
        has_deployer: bool = True,
        deployer_balance: Decimal = Decimal("10"),
    ) -> None:
        self._category = category
        self.has_deployer = has_deployer
        self.deployer_balance = deployer_balance
        self.balances: dict[tuple[str, str], Decimal] = {}
        self.deploy_errors: dict[str, Exception] = {}
        self.deploy_delays: dict[str, float] = {}
        self.balance_errors: dict[str, Exception] = {}
        self.balance_delays: dict[str, float] = {}
        self.fund_errors: dict[str, Exception] = {}
        self.fund_delays: dict[str, float] = {}
        self.deploy_calls: list[str] = []
        self.fund_calls: list[tuple[str, str, Decimal]] = []
        self.closed = False

    @property
    def category(self) -> ChainCategory:
        return self._category

    def deployer_address(self) -> str | None:
        return "deployer" if self.has_deployer else None

    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        self._spec(chain)
        delay = self.balance_delays.get(chain)
        if delay:
            await asyncio.sleep(delay)
        if chain in self.balance_errors:
            raise self.balance_errors[chain]
        return self.balances.get((chain, address), Decimal("0"))

    async def fund_from_deployer(self, chain: str, address: str, amount: Decimal) -> str:
        self._spec(chain)
        if not self.has_deployer:
            raise DeployerNotConfiguredError(self.category.value, chain)
        delay = self.fund_delays.get(chain)
        if delay:
            await asyncio.sleep(delay)
        if chain in self.fund_errors:
            raise self.fund_errors[chain]
        if self.deployer_balance < amount:
            raise InsufficientDeployerBalance(
                "Deployer cannot fund paymaster",
                chain=chain,
                current_balance=self.deployer_balance,
                required_amount=amount,
            )
        self.deployer_balance -= amount
        self.balances[(chain, address)] = self.balances.get((chain, address), Decimal("0")) + amount
        self.fund_calls.append((chain, address, amount))
        return f"fund-{chain}-{len(self.fund_calls)}"

    async def deploy(
        self, chain: str, project_id: str, address: str, private_key: str
    ) -> DeployResult:
        spec = self._spec(chain)
        self.deploy_calls.append(chain)
        delay = self.deploy_delays.get(chain)
        if delay:
            await asyncio.sleep(delay)
        error = self.deploy_errors.get(chain)
        if error is not None:
            raise error
        contract = address if self.category == ChainCategory.SVM else f"contract-{chain}-{project_id}"
        return DeployResult(
            contract_address=contract,
            tx_hash=f"tx-{chain}-{project_id}",
            entry_point_address=spec.entry_point,
        )

    async def close(self) -> None:
        self.closed = True

    def fund(self, chain: str, address: str, amount: Decimal) -> None:
        """Simulate an operator topping up a paymaster by hand."""
        get_chain(chain)
        self.balances[(chain, address)] = self.balances.get((chain, address), Decimal("0")) + amount


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def config():
    return Config(
        master_seed="test-master-seed",
        encryption_key="test-encryption-key",
        lock_retry_count=5,
        lock_retry_delay=0.01,
        adapter_timeout=5.0,
    )


@pytest.fixture
def vault(config):
    return KeyVault(config.encryption_key)


@pytest.fixture
def registry(storage):
    return PaymasterRegistry(storage)


@pytest.fixture
def locks(storage, config):
    return RecordLockService(
        storage, ttl=config.lock_ttl, retry_count=config.lock_retry_count, retry_delay=config.lock_retry_delay
    )


@pytest.fixture
def evm_adapter():
    return FakeChainAdapter(ChainCategory.EVM)


@pytest.fixture
def svm_adapter():
    # No SVM deployer: new SVM paymasters wait for manual funding
    return FakeChainAdapter(ChainCategory.SVM, has_deployer=False)


@pytest.fixture
def adapters(evm_adapter, svm_adapter):
    return {ChainCategory.EVM: evm_adapter, ChainCategory.SVM: svm_adapter}


@pytest.fixture
def orchestrator(config, registry, adapters, locks, vault):
    return ProvisioningOrchestrator(config, registry, adapters, locks, vault=vault)
