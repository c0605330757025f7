"""Tests for the chain table."""

import os
from decimal import Decimal
from unittest.mock import patch

import pytest

from gaspool.core.chains import (
    CATEGORY_DEFAULTS,
    SUPPORTED_CHAINS,
    ChainCategory,
    chains_for_category,
    get_chain,
    get_chain_category,
    group_chains_by_category,
    payment_uri,
)
from gaspool.core.exceptions import UnsupportedCategoryError, UnsupportedChainError


def test_every_chain_has_one_category():
    for chain, spec in SUPPORTED_CHAINS.items():
        assert spec.chain == chain
        assert spec.category in ChainCategory


def test_category_mapping():
    assert get_chain_category("ethereum") == ChainCategory.EVM
    assert get_chain_category("ARBITRUM") == ChainCategory.EVM
    assert get_chain_category("solana") == ChainCategory.SVM
    assert get_chain_category("eclipse") == ChainCategory.SVM


def test_unknown_chain_raises():
    with pytest.raises(UnsupportedChainError) as exc:
        get_chain("near")
    assert "ethereum" in exc.value.details["supported"]


def test_category_from_string():
    assert ChainCategory.from_string("EVM") == ChainCategory.EVM
    with pytest.raises(UnsupportedCategoryError):
        ChainCategory.from_string("cosmos")


def test_chains_for_category():
    assert chains_for_category(ChainCategory.EVM) == ["ethereum", "arbitrum", "polygon", "bsc"]
    assert chains_for_category(ChainCategory.SVM) == ["solana", "eclipse"]


def test_group_chains_preserves_order_and_dedupes():
    grouped, unsupported = group_chains_by_category(
        ["arbitrum", "solana", "Ethereum", "arbitrum", "near"]
    )
    assert grouped == {
        ChainCategory.EVM: ["arbitrum", "ethereum"],
        ChainCategory.SVM: ["solana"],
    }
    assert unsupported == ["near"]


def test_base_unit_conversion():
    eth = get_chain("ethereum")
    sol = get_chain("solana")
    assert eth.to_base_units(Decimal("0.002")) == 2 * 10**15
    assert sol.to_base_units(Decimal("0.01")) == 10**7
    assert sol.from_base_units(1_500_000_000) == Decimal("1.5")


def test_rpc_url_env_override():
    with patch.dict(os.environ, {"GASPOOL_ETHEREUM_RPC_URL": "https://a, https://b"}):
        assert get_chain("ethereum").rpc_urls() == ["https://a", "https://b"]


def test_category_defaults():
    assert CATEGORY_DEFAULTS[ChainCategory.EVM].deploys_per_chain is True
    assert CATEGORY_DEFAULTS[ChainCategory.SVM].deploys_per_chain is False
    assert CATEGORY_DEFAULTS[ChainCategory.SVM].derivation_path == "m/44'/501'/0'/0'"


def test_payment_uri():
    assert payment_uri("0xabc", "arbitrum") == "ethereum:0xabc@421614"
    assert payment_uri("So1ana", "solana") == "solana:So1ana"
