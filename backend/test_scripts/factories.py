"""
Row factories shared by service and API tests.

Every helper writes through the real services (never raw inserts) and flushes:
the caller's session decides whether to commit.
"""
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from backend.app.db.models import AllocationType, Client, ClientAssetAllocation
from backend.app.schemas.allocations import ALCreateItem
from backend.app.schemas.assets import ASAccountCreateItem, ASBalanceItem, ASWalletCreateItem, AssetView
from backend.app.schemas.clients import CLCreateItem
from backend.app.services.allocation_ledger import AllocationLedger
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.client_service import ClientService
from backend.app.utils.datetime_utils import utcnow


def unique_suffix() -> str:
    return uuid.uuid4().hex[:8]


def hours_ago(hours: float) -> datetime:
    return utcnow() - timedelta(hours=hours)


async def make_client(session, name: str = "Alice") -> Client:
    item = CLCreateItem(name=name, email=f"{name.lower()}.{unique_suffix()}@example.com")
    return (await ClientService(session).create(item)).unwrap()


async def make_wallet(session, label: Optional[str] = None) -> AssetView:
    item = ASWalletCreateItem(
        wallet_address=f"0x{uuid.uuid4().hex}",
        label=label,
        supported_chains=["eth", "polygon"],
        )
    return (await AssetRegistry(session).add_wallet(item)).unwrap()


async def make_account(session, label: Optional[str] = None) -> AssetView:
    item = ASAccountCreateItem(
        provider_account_id=f"acc-{unique_suffix()}",
        institution_name="Test Bank",
        account_type="CHECKING",
        label=label,
        )
    return (await AssetRegistry(session).add_account(item)).unwrap()


async def record(session, asset: AssetView, token: str, value_usd, quantity="1", recorded_at: Optional[datetime] = None):
    item = ASBalanceItem(
        token=token,
        quantity=Decimal(str(quantity)),
        value_usd=Decimal(str(value_usd)) if value_usd is not None else None,
        recorded_at=recorded_at or hours_ago(1),
        )
    return (await AssetRegistry(session).record_balance(asset.ref, item)).unwrap()


def allocation_item(
    client: Client,
    asset: AssetView,
    value,
    allocation_type: AllocationType = AllocationType.PERCENTAGE,
    **extra,
    ) -> ALCreateItem:
    return ALCreateItem(
        client_id=client.id,
        asset_kind=asset.kind,
        asset_id=asset.id,
        allocation_type=allocation_type,
        allocation_value=Decimal(str(value)),
        **extra,
        )


async def allocate(
    session,
    client: Client,
    asset: AssetView,
    value,
    allocation_type: AllocationType = AllocationType.PERCENTAGE,
    **extra,
    ) -> ClientAssetAllocation:
    item = allocation_item(client, asset, value, allocation_type, **extra)
    return (await AllocationLedger(session).create(item)).unwrap()
