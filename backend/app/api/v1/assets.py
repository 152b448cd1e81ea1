"""
Asset API endpoints for CustodyFolio.

Both variants share the /assets/{kind}/{asset_id} shape (kind = WALLET | ACCOUNT):
- POST /assets/wallets, POST /assets/accounts: Register an asset
- GET /assets: List assets (kind/status filters)
- GET /assets/{kind}/{id}: Asset with current value and balances
- GET /assets/{kind}/{id}/balances: Balance history
- POST /assets/{kind}/{id}/balances: Record one balance snapshot
- POST /assets/{kind}/{id}/sync: Apply a sync result
- GET /assets/{kind}/{id}/transactions: Transaction history
- POST /assets/{kind}/{id}/transactions: Record a transaction (may raise LARGE_TRANSACTION)
- GET /assets/{kind}/{id}/can-deactivate: Deactivation pre-check
- POST /assets/{kind}/{id}/deactivate: Deactivate (refused while allocations are active)
- POST /assets/{kind}/{id}/activate: Reactivate

There is no DELETE: assets are deactivated, never removed.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.v1.deps import get_config_snapshot
from backend.app.db.models import AssetKind, AssetStatus
from backend.app.db.session import get_session_generator, unit_of_work
from backend.app.logging_config import get_logger
from backend.app.schemas.assets import (
    ASAccountCreateItem,
    ASAssetValue,
    ASBalanceItem,
    ASBalanceReadItem,
    ASSyncResponse,
    ASSyncResultItem,
    ASWalletCreateItem,
    AssetView,
    )
from backend.app.schemas.common import AssetRef
from backend.app.schemas.system import ConfigSnapshot
from backend.app.schemas.transactions import TXCreateItem, TXReadItem, TXRecordResponse
from backend.app.services.asset_registry import AssetRegistry, sum_value_usd
from backend.app.services.lifecycle_guard import LifecycleGuard
from backend.app.services.sync_intake import SyncIntakeService
from backend.app.services.transaction_intake import TransactionIntakeService

logger = get_logger(__name__)

asset_router = APIRouter(prefix="/assets", tags=["assets"])


# =============================================================================
# REGISTRATION
# =============================================================================

@asset_router.post("/wallets", response_model=AssetView, status_code=201)
async def create_wallet(
    item: ASWalletCreateItem,
    session: AsyncSession = Depends(get_session_generator),
    ) -> AssetView:
    async with unit_of_work(session):
        view = (await AssetRegistry(session).add_wallet(item)).unwrap()
    return view


@asset_router.post("/accounts", response_model=AssetView, status_code=201)
async def create_account(
    item: ASAccountCreateItem,
    session: AsyncSession = Depends(get_session_generator),
    ) -> AssetView:
    async with unit_of_work(session):
        view = (await AssetRegistry(session).add_account(item)).unwrap()
    return view


# =============================================================================
# READ
# =============================================================================

@asset_router.get("", response_model=List[AssetView])
async def list_assets(
    kind: Optional[AssetKind] = Query(None, description="Filter by variant"),
    status: Optional[AssetStatus] = Query(None, description="Filter by status"),
    session: AsyncSession = Depends(get_session_generator),
    ) -> List[AssetView]:
    return await AssetRegistry(session).list_assets(kind=kind, status=status)


@asset_router.get("/{kind}/{asset_id}", response_model=ASAssetValue)
async def get_asset(
    kind: AssetKind,
    asset_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> ASAssetValue:
    """Asset identity with its current balances (latest per token) and total value."""
    ref = AssetRef(kind=kind, id=asset_id)
    registry = AssetRegistry(session)
    view = (await registry.get_asset(ref)).unwrap()
    balances = await registry.get_current_balances(ref)
    return ASAssetValue(
        asset=view,
        value_usd=sum_value_usd(ref, balances),
        balances=[ASBalanceReadItem.from_db_model(b) for b in balances],
        )


@asset_router.get("/{kind}/{asset_id}/balances", response_model=List[ASBalanceReadItem])
async def get_balance_history(
    kind: AssetKind,
    asset_id: int,
    token: Optional[str] = Query(None, description="Only this token/currency"),
    limit: int = Query(100, ge=1, le=1000, description="Max results"),
    session: AsyncSession = Depends(get_session_generator),
    ) -> List[ASBalanceReadItem]:
    """Balance snapshots, most recent first."""
    ref = AssetRef(kind=kind, id=asset_id)
    registry = AssetRegistry(session)
    (await registry.get_asset(ref)).unwrap()
    history = await registry.get_balance_history(ref, token=token, limit=limit)
    return [ASBalanceReadItem.from_db_model(b) for b in history]


# =============================================================================
# BALANCES / SYNC
# =============================================================================

@asset_router.post("/{kind}/{asset_id}/balances", response_model=ASBalanceReadItem, status_code=201)
async def record_balance(
    kind: AssetKind,
    asset_id: int,
    item: ASBalanceItem,
    session: AsyncSession = Depends(get_session_generator),
    ) -> ASBalanceReadItem:
    """Append one balance snapshot (409 if the same token/instant is already recorded)."""
    ref = AssetRef(kind=kind, id=asset_id)
    async with unit_of_work(session):
        balance = (await AssetRegistry(session).record_balance(ref, item)).unwrap()
    return ASBalanceReadItem.from_db_model(balance)


@asset_router.post("/{kind}/{asset_id}/sync", response_model=ASSyncResponse)
async def apply_sync(
    kind: AssetKind,
    asset_id: int,
    item: ASSyncResultItem,
    session: AsyncSession = Depends(get_session_generator),
    config: ConfigSnapshot = Depends(get_config_snapshot),
    ) -> ASSyncResponse:
    """Apply the result of a sync run pushed by a sync collaborator."""
    ref = AssetRef(kind=kind, id=asset_id)
    async with unit_of_work(session):
        response = (await SyncIntakeService(session, config).apply_sync(ref, item)).unwrap()
    return response


# =============================================================================
# TRANSACTIONS
# =============================================================================

@asset_router.get("/{kind}/{asset_id}/transactions", response_model=List[TXReadItem])
async def list_transactions(
    kind: AssetKind,
    asset_id: int,
    limit: int = Query(100, ge=1, le=1000, description="Max results"),
    session: AsyncSession = Depends(get_session_generator),
    ) -> List[TXReadItem]:
    """Transactions, most recent first."""
    ref = AssetRef(kind=kind, id=asset_id)
    (await AssetRegistry(session).get_asset(ref)).unwrap()
    transactions = await TransactionIntakeService(session).list_for_asset(ref, limit=limit)
    return [TXReadItem.from_db_model(t) for t in transactions]


@asset_router.post("/{kind}/{asset_id}/transactions", response_model=TXRecordResponse, status_code=201)
async def record_transaction(
    kind: AssetKind,
    asset_id: int,
    item: TXCreateItem,
    session: AsyncSession = Depends(get_session_generator),
    config: ConfigSnapshot = Depends(get_config_snapshot),
    ) -> TXRecordResponse:
    """Record a movement (409 if its tx_hash is already recorded on the asset)."""
    ref = AssetRef(kind=kind, id=asset_id)
    async with unit_of_work(session):
        response = (await TransactionIntakeService(session, config).record(ref, item)).unwrap()
    return response


# =============================================================================
# LIFECYCLE
# =============================================================================

@asset_router.get("/{kind}/{asset_id}/can-deactivate")
async def can_deactivate_asset(
    kind: AssetKind,
    asset_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> dict:
    ref = AssetRef(kind=kind, id=asset_id)
    (await AssetRegistry(session).get_asset(ref)).unwrap()
    return {"asset": str(ref), "can_deactivate": await LifecycleGuard(session).can_deactivate(ref)}


@asset_router.post("/{kind}/{asset_id}/deactivate", response_model=AssetView)
async def deactivate_asset(
    kind: AssetKind,
    asset_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> AssetView:
    """Deactivate an asset (409 while active allocations reference it)."""
    ref = AssetRef(kind=kind, id=asset_id)
    async with unit_of_work(session):
        view = (await LifecycleGuard(session).deactivate(ref)).unwrap()
    return view


@asset_router.post("/{kind}/{asset_id}/activate", response_model=AssetView)
async def activate_asset(
    kind: AssetKind,
    asset_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> AssetView:
    ref = AssetRef(kind=kind, id=asset_id)
    async with unit_of_work(session):
        view = (await AssetRegistry(session).set_status(ref, AssetStatus.ACTIVE)).unwrap()
    return view
