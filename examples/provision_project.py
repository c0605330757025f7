"""
Example: Provision paymasters for a project

Creates EVM and SVM paymasters, prints funding instructions for anything
still waiting on gas, and shows the balance report.

Requires GASPOOL_MASTER_SEED and GASPOOL_ENCRYPTION_KEY. Set
GASPOOL_EVM_DEPLOYER_KEY / GASPOOL_SVM_DEPLOYER_KEY to fund automatically.
"""

import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from gaspool import DeploymentStatus, GasPool, GasPoolError


async def main(project_id: str):
    print("=== GasPool Provisioning Example ===\n")

    async with GasPool() as pool:
        try:
            summaries = await pool.create_paymasters(project_id, ["ethereum", "arbitrum", "solana"])
        except GasPoolError as e:
            print(f"❌ Provisioning failed: {e}")
            return

        for summary in summaries:
            print(f"✅ {summary.category.value.upper()} paymaster: {summary.address}")
            print(f"   Status: {summary.status.value}")
            print(f"   Chains: {', '.join(summary.supported_chains)}")
            if summary.partially_deployed:
                print("   ⚠️  Some chains failed; retry later")

            if summary.status == DeploymentStatus.PENDING_FUNDING:
                chain = summary.supported_chains[0]
                funding = await pool.fund_paymaster(project_id, chain)
                print(f"   💰 {funding.instructions}")
                print(f"   {funding.payment_uri}")

        print("\n📊 Balances")
        report = await pool.refresh_balances(project_id)
        for row in report.balances:
            print(f"   {row.chain:<10} {row.balance_native} {row.symbol} (${row.balance_usd:.2f})")
        print(f"   Total: ${report.total_usd:.2f}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "demo-project"))
