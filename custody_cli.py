#!/usr/bin/env python3
"""
CustodyFolio maintenance CLI

Command-line tool for operating the engine from the server terminal.
The alert scans are the background checks of the system: schedule them with cron
or any job runner (no scheduler is shipped).

Usage:
    python custody_cli.py init-db
    python custody_cli.py scan-alerts
    python custody_cli.py portfolio <client_id>
    python custody_cli.py conflicts
    python custody_cli.py deactivate <KIND:ID>      (e.g. WALLET:3)

Add --test before the command to run against TEST_DATABASE_URL.
"""
import sys
import argparse
import asyncio
from pathlib import Path

# Add project root to path (file is in root)
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import set_test_mode
from backend.app.db.session import get_async_engine, unit_of_work
from backend.app.schemas.common import AssetRef
from backend.app.services.alert_engine import AlertEngine
from backend.app.services.allocation_ledger import AllocationLedger
from backend.app.services.errors import CoreError
from backend.app.services.lifecycle_guard import LifecycleGuard
from backend.app.services.portfolio_valuator import PortfolioValuator
from backend.app.services.system_config import load_config_snapshot


def cmd_init_db() -> bool:
    """Create and migrate the database if needed."""
    from backend.app.main import ensure_database_exists

    ensure_database_exists()
    print("Database ready")
    return True


async def cmd_scan_alerts() -> bool:
    """Run the low-balance and stale-sync scans once."""
    engine = get_async_engine()

    async with AsyncSession(engine, expire_on_commit=False) as session:
        config = await load_config_snapshot(session)
        async with unit_of_work(session):
            alerts = AlertEngine(session, config)
            low = await alerts.scan_low_balances()
            stale = await alerts.scan_stale_syncs()

    print(f"Low balance alerts: {len(low)}")
    print(f"Stale sync alerts:  {len(stale)}")
    return True


async def cmd_portfolio(client_id: int) -> bool:
    """Print the valuation snapshot of a client."""
    engine = get_async_engine()

    async with AsyncSession(engine) as session:
        result = await PortfolioValuator(session).compute_client_portfolio(client_id)

    if not result.success:
        print(f"Error: {result.error.message}")
        return False

    snapshot = result.value
    print(f"\nClient {snapshot.client_id} (as of {snapshot.as_of.isoformat() if snapshot.as_of else 'n/a'})")
    print(f"\n{'Alloc':<7} {'Asset':<16} {'Type':<14} {'Value':>14} {'Asset USD':>16} {'Allocated USD':>16}")
    print("-" * 88)
    for v in snapshot.allocations:
        asset = f"{v.asset_kind.value}:{v.asset_id}"
        print(
            f"{v.allocation_id:<7} {asset:<16} {v.allocation_type.value:<14} "
            f"{v.allocation_value:>14.2f} {v.asset_value_usd:>16.2f} {v.allocated_value_usd:>16.2f}"
            )
    print(f"\nWallets:  {snapshot.wallet_value_usd:.2f} USD")
    print(f"Accounts: {snapshot.account_value_usd:.2f} USD")
    print(f"Total:    {snapshot.total_value_usd:.2f} USD")
    return True


async def cmd_conflicts() -> bool:
    """List assets whose active PERCENTAGE allocations exceed 100%."""
    engine = get_async_engine()

    async with AsyncSession(engine) as session:
        conflicts = await AllocationLedger(session).find_conflicts()

    if not conflicts:
        print("No over-allocated assets")
        return True

    for conflict in conflicts:
        print(f"{conflict.asset_kind.value}:{conflict.asset_id} ({conflict.asset_identifier}): {conflict.total_percentage}%")
        for a in conflict.allocations:
            print(f"    allocation {a.allocation_id}  client {a.client_id} {a.client_name:<20} {a.allocation_value}%")
    return False


async def cmd_deactivate(asset: str) -> bool:
    """Deactivate an asset through the lifecycle guard."""
    ref = AssetRef.parse(asset)
    engine = get_async_engine()

    async with AsyncSession(engine, expire_on_commit=False) as session:
        try:
            async with unit_of_work(session):
                view = (await LifecycleGuard(session).deactivate(ref)).unwrap()
        except CoreError as e:
            print(f"Error: {e.message}")
            return False

    print(f"{ref} ({view.display_name}) is now {view.status.value}")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="CustodyFolio maintenance CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python custody_cli.py init-db
  python custody_cli.py scan-alerts
  python custody_cli.py portfolio 12
  python custody_cli.py deactivate WALLET:3
        """
    )
    parser.add_argument("--test", action="store_true", help="Use TEST_DATABASE_URL")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create and migrate the database")
    subparsers.add_parser("scan-alerts", help="Run low-balance and stale-sync scans")

    portfolio_parser = subparsers.add_parser("portfolio", help="Show a client portfolio")
    portfolio_parser.add_argument("client_id", type=int, help="Client ID")

    subparsers.add_parser("conflicts", help="List over-allocated assets")

    deact_parser = subparsers.add_parser("deactivate", help="Deactivate an asset")
    deact_parser.add_argument("asset", help="Asset reference KIND:ID (e.g. WALLET:3)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.test:
        set_test_mode(True)

    if args.command == "init-db":
        ok = cmd_init_db()
    elif args.command == "scan-alerts":
        ok = asyncio.run(cmd_scan_alerts())
    elif args.command == "portfolio":
        ok = asyncio.run(cmd_portfolio(args.client_id))
    elif args.command == "conflicts":
        ok = asyncio.run(cmd_conflicts())
    else:
        ok = asyncio.run(cmd_deactivate(args.asset))

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
