"""
Tests for the EVM and SVM chain adapters.

Nodes are simulated with httpx.MockTransport answering JSON-RPC by method.
"""

import base64
import json
from decimal import Decimal

import httpx
import pytest
from eth_abi import encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from gaspool.adapters import build_adapters
from gaspool.adapters.evm import (
    CREATE_PAYMASTER,
    EVMAdapter,
    encode_create_paymaster,
    paymaster_salt,
)
from gaspool.adapters.rpc import RpcPool
from gaspool.adapters.svm import SVMAdapter, keypair_from_hex
from gaspool.core.chains import ENTRY_POINT_V06, SYSTEM_PROGRAM_ID, ChainCategory
from gaspool.core.exceptions import (
    DeployerNotConfiguredError,
    DeploymentFailed,
    InsufficientDeployerBalance,
    UnsupportedChainError,
)

CONTRACT = "0x1111111111111111111111111111111111111111"
ZERO = "0x" + "0" * 40


class FakeNode:
    """Answers JSON-RPC calls from a {method: result or callable} table."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        self.calls.append((method, body["params"]))
        result = self.responses[method]
        if callable(result):
            result = result(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def methods(self):
        return [m for m, _ in self.calls]

    def pool(self):
        return RpcPool(http_client=httpx.AsyncClient(transport=httpx.MockTransport(self)))


def _abi_address(address):
    return "0x" + encode(["address"], [address]).hex()


@pytest.fixture
def owner():
    return Account.create()


@pytest.fixture
def deployer():
    return Account.create()


class TestEvmEncoding:
    def test_salt_is_deterministic(self, owner):
        assert paymaster_salt("proj1", owner.address) == paymaster_salt(
            "proj1", owner.address.lower()
        )
        assert paymaster_salt("proj1", owner.address) != paymaster_salt("proj2", owner.address)
        assert len(paymaster_salt("proj1", owner.address)) == 32

    def test_create_paymaster_selector(self, owner):
        data = encode_create_paymaster("proj1", owner.address)
        selector = function_signature_to_4byte_selector(CREATE_PAYMASTER).hex()
        assert data.startswith("0x" + selector)


class TestEvmAdapter:
    @pytest.mark.asyncio
    async def test_native_balance(self, owner):
        node = FakeNode({"eth_getBalance": hex(15 * 10**17)})
        adapter = EVMAdapter(rpc=node.pool())

        balance = await adapter.get_native_balance("arbitrum", owner.address)

        assert balance == Decimal("1.5")
        await adapter.close()

    @pytest.mark.asyncio
    async def test_rejects_other_category(self, owner):
        adapter = EVMAdapter(rpc=FakeNode({}).pool())
        assert adapter.supports("bsc") is True
        assert adapter.supports("solana") is False
        with pytest.raises(UnsupportedChainError):
            await adapter.get_native_balance("solana", owner.address)
        await adapter.close()

    @pytest.mark.asyncio
    async def test_deploy_through_factory(self, owner, deployer):
        lookups = iter([_abi_address(ZERO), _abi_address(CONTRACT)])
        node = FakeNode(
            {
                "eth_call": lambda params: next(lookups),
                "eth_estimateGas": hex(100_000),
                "eth_gasPrice": hex(10**9),
                "eth_getTransactionCount": "0x3",
                "eth_sendRawTransaction": "0xdeadbeef",
                "eth_getTransactionReceipt": {"status": "0x1"},
            }
        )
        adapter = EVMAdapter(deployer_key=deployer.key.hex(), rpc=node.pool())

        result = await adapter.deploy("ethereum", "proj1", owner.address, owner.key.hex())

        assert result.contract_address.lower() == CONTRACT
        assert result.tx_hash == "0xdeadbeef"
        assert result.entry_point_address == ENTRY_POINT_V06
        assert node.methods() == [
            "eth_call",
            "eth_estimateGas",
            "eth_gasPrice",
            "eth_getTransactionCount",
            "eth_sendRawTransaction",
            "eth_getTransactionReceipt",
            "eth_call",
        ]
        # Sent by the deployer, not the paymaster wallet
        nonce_params = dict(node.calls)["eth_getTransactionCount"]
        assert nonce_params[0] == deployer.address
        await adapter.close()

    @pytest.mark.asyncio
    async def test_existing_paymaster_returned(self, owner, deployer):
        node = FakeNode({"eth_call": _abi_address(CONTRACT)})
        adapter = EVMAdapter(deployer_key=deployer.key.hex(), rpc=node.pool())

        result = await adapter.deploy("ethereum", "proj1", owner.address, owner.key.hex())

        assert result.contract_address.lower() == CONTRACT
        assert result.tx_hash is None
        assert node.methods() == ["eth_call"]
        await adapter.close()

    @pytest.mark.asyncio
    async def test_reverted_deploy(self, owner, deployer):
        node = FakeNode(
            {
                "eth_call": _abi_address(ZERO),
                "eth_estimateGas": hex(100_000),
                "eth_gasPrice": hex(10**9),
                "eth_getTransactionCount": "0x0",
                "eth_sendRawTransaction": "0xdeadbeef",
                "eth_getTransactionReceipt": {"status": "0x0"},
            }
        )
        adapter = EVMAdapter(deployer_key=deployer.key.hex(), rpc=node.pool())

        with pytest.raises(DeploymentFailed) as exc:
            await adapter.deploy("ethereum", "proj1", owner.address, owner.key.hex())
        assert exc.value.chain == "ethereum"
        await adapter.close()

    @pytest.mark.asyncio
    async def test_chain_without_factory(self, owner, deployer):
        node = FakeNode({})
        adapter = EVMAdapter(deployer_key=deployer.key.hex(), rpc=node.pool())

        with pytest.raises(DeploymentFailed):
            await adapter.deploy("polygon", "proj1", owner.address, owner.key.hex())
        assert node.calls == []
        await adapter.close()

    @pytest.mark.asyncio
    async def test_key_mismatch(self, owner, deployer):
        adapter = EVMAdapter(deployer_key=deployer.key.hex(), rpc=FakeNode({}).pool())

        with pytest.raises(DeploymentFailed):
            await adapter.deploy("ethereum", "proj1", deployer.address, owner.key.hex())
        await adapter.close()

    @pytest.mark.asyncio
    async def test_deploy_without_deployer(self, owner):
        adapter = EVMAdapter(rpc=FakeNode({}).pool())

        with pytest.raises(DeployerNotConfiguredError):
            await adapter.deploy("ethereum", "proj1", owner.address, owner.key.hex())
        await adapter.close()

    @pytest.mark.asyncio
    async def test_fund_insufficient_deployer(self, owner, deployer):
        node = FakeNode({"eth_gasPrice": hex(10**9), "eth_getBalance": hex(10**15)})
        adapter = EVMAdapter(deployer_key=deployer.key.hex(), rpc=node.pool())

        with pytest.raises(InsufficientDeployerBalance) as exc:
            await adapter.fund_from_deployer("ethereum", owner.address, Decimal("0.002"))

        assert exc.value.deployer_address == deployer.address
        assert exc.value.current_balance == Decimal("0.001")
        assert "eth_sendRawTransaction" not in node.methods()
        await adapter.close()

    @pytest.mark.asyncio
    async def test_fund(self, owner, deployer):
        node = FakeNode(
            {
                "eth_gasPrice": hex(10**9),
                "eth_getBalance": hex(10**18),
                "eth_getTransactionCount": "0x0",
                "eth_sendRawTransaction": "0xfeed",
                "eth_getTransactionReceipt": {"status": "0x1"},
            }
        )
        adapter = EVMAdapter(deployer_key=deployer.key.hex(), rpc=node.pool())

        tx_hash = await adapter.fund_from_deployer("ethereum", owner.address, Decimal("0.002"))

        assert tx_hash == "0xfeed"
        await adapter.close()

    @pytest.mark.asyncio
    async def test_fund_without_deployer(self, owner):
        adapter = EVMAdapter(rpc=FakeNode({}).pool())

        with pytest.raises(DeployerNotConfiguredError):
            await adapter.fund_from_deployer("ethereum", owner.address, Decimal("0.002"))
        await adapter.close()


def _svm_node(lamports, status=None):
    if status is None:
        status = {"confirmationStatus": "confirmed", "err": None}
    return FakeNode(
        {
            "getBalance": {"context": {"slot": 1}, "value": lamports},
            "getLatestBlockhash": {
                "context": {"slot": 1},
                "value": {"blockhash": str(Hash.default()), "lastValidBlockHeight": 100},
            },
            "sendTransaction": "5sig",
            "getSignatureStatuses": {"context": {"slot": 1}, "value": [status]},
        }
    )


class TestSvmAdapter:
    def test_keypair_from_hex(self):
        keypair = Keypair()
        assert keypair_from_hex(bytes(keypair).hex()).pubkey() == keypair.pubkey()

    def test_base58_deployer(self):
        keypair = Keypair()
        adapter = SVMAdapter(deployer_key=str(keypair))
        assert adapter.deployer_address() == str(keypair.pubkey())

    @pytest.mark.asyncio
    async def test_native_balance(self):
        node = _svm_node(2_500_000_000)
        adapter = SVMAdapter(rpc=node.pool())

        balance = await adapter.get_native_balance("solana", str(Keypair().pubkey()))

        assert balance == Decimal("2.5")
        await adapter.close()

    @pytest.mark.asyncio
    async def test_activation(self):
        keypair = Keypair()
        address = str(keypair.pubkey())
        node = _svm_node(10_000_000)
        adapter = SVMAdapter(rpc=node.pool())

        result = await adapter.deploy("solana", "proj1", address, bytes(keypair).hex())

        assert result.contract_address == address
        assert result.tx_hash == "5sig"
        assert result.entry_point_address == SYSTEM_PROGRAM_ID
        assert node.methods() == [
            "getBalance",
            "getLatestBlockhash",
            "sendTransaction",
            "getSignatureStatuses",
        ]
        encoded = dict(node.calls)["sendTransaction"][0]
        tx = Transaction.from_bytes(base64.b64decode(encoded))
        assert tx.message.account_keys[0] == keypair.pubkey()
        await adapter.close()

    @pytest.mark.asyncio
    async def test_unfunded_account(self):
        keypair = Keypair()
        node = _svm_node(0)
        adapter = SVMAdapter(rpc=node.pool())

        with pytest.raises(DeploymentFailed):
            await adapter.deploy("solana", "proj1", str(keypair.pubkey()), bytes(keypair).hex())
        assert "sendTransaction" not in node.methods()
        await adapter.close()

    @pytest.mark.asyncio
    async def test_failed_transaction(self):
        keypair = Keypair()
        node = _svm_node(10_000_000, status={"confirmationStatus": None, "err": {"InstructionError": [0, "x"]}})
        adapter = SVMAdapter(rpc=node.pool())

        with pytest.raises(DeploymentFailed):
            await adapter.deploy("eclipse", "proj1", str(keypair.pubkey()), bytes(keypair).hex())
        await adapter.close()

    @pytest.mark.asyncio
    async def test_fund_without_deployer(self):
        adapter = SVMAdapter(rpc=FakeNode({}).pool())

        with pytest.raises(DeployerNotConfiguredError):
            await adapter.fund_from_deployer("solana", str(Keypair().pubkey()), Decimal("0.01"))
        await adapter.close()

    @pytest.mark.asyncio
    async def test_fund_insufficient_deployer(self):
        deployer = Keypair()
        node = _svm_node(1_000_000)
        adapter = SVMAdapter(deployer_key=bytes(deployer).hex(), rpc=node.pool())

        with pytest.raises(InsufficientDeployerBalance) as exc:
            await adapter.fund_from_deployer("solana", str(Keypair().pubkey()), Decimal("0.01"))

        assert exc.value.deployer_address == str(deployer.pubkey())
        await adapter.close()


class TestBuildAdapters:
    def test_one_adapter_per_category(self, config, deployer):
        adapters = build_adapters(config.with_updates(evm_deployer_key=deployer.key.hex()))

        assert set(adapters) == {ChainCategory.EVM, ChainCategory.SVM}
        assert adapters[ChainCategory.EVM].deployer_address() == deployer.address
        assert adapters[ChainCategory.SVM].deployer_address() is None
