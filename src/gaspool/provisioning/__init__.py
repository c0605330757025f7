"""Paymaster provisioning: funding gate and deployment orchestration."""

from gaspool.provisioning.funding import FundingGate
from gaspool.provisioning.orchestrator import ProvisioningOrchestrator

__all__ = ["FundingGate", "ProvisioningOrchestrator"]
