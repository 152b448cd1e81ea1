"""
Portfolio Valuator for CustodyFolio.

Values the active allocations of a client against the current balances of the
referenced assets:
- PERCENTAGE: asset value * allocation_value / 100
- FIXED_AMOUNT: min(allocation_value, asset value), clamped, never an error

Design Notes:
- Read-only: no writes, no commit
- Pure function of stored state: as_of is the latest recorded_at among the
  balances read, so two calls with no write in between return equal snapshots
- Each asset is valued once per call even when several allocations point at it
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import (
    AllocationType,
    AssetKind,
    AssetStatus,
    Client,
    ClientAssetAllocation,
    ClientStatus,
    )
from backend.app.logging_config import get_logger
from backend.app.schemas.common import AssetRef, HUNDRED, ZERO, quantize_money
from backend.app.schemas.portfolio import (
    AllocationValuation,
    ClientPortfolioSnapshot,
    PFAssetKindTotals,
    PortfolioOverview,
    )
from backend.app.services.allocation_ledger import AllocationLedger, active_clause
from backend.app.services.asset_registry import AssetRegistry, sum_value_usd
from backend.app.services.errors import NotFoundError
from backend.app.services.result import ServiceResult
from backend.app.utils.datetime_utils import as_utc, utcnow

logger = get_logger(__name__)


def allocated_value(allocation: ClientAssetAllocation, asset_value: Decimal) -> Decimal:
    """Share of asset_value owned through one allocation."""
    if allocation.allocation_type == AllocationType.PERCENTAGE:
        return quantize_money(asset_value * allocation.allocation_value / HUNDRED)
    return min(allocation.allocation_value, asset_value)


class PortfolioValuator:
    """
    Service computing client portfolio snapshots.

    Instances cache asset values for their lifetime: create one per request.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.registry = AssetRegistry(session)
        self.ledger = AllocationLedger(session)
        self._asset_values: Dict[AssetRef, Tuple[Decimal, Optional[datetime]]] = {}

    async def asset_value(self, ref: AssetRef) -> Tuple[Decimal, Optional[datetime]]:
        """
        Current value of an asset and the instant of its latest balance.

        Returns:
            (value_usd, latest recorded_at or None when the asset has no balance)
        """
        if ref not in self._asset_values:
            balances = await self.registry.get_current_balances(ref)
            latest = max((as_utc(b.recorded_at) for b in balances), default=None)
            self._asset_values[ref] = (sum_value_usd(ref, balances), latest)
        return self._asset_values[ref]

    async def compute_client_portfolio(self, client_id: int) -> ServiceResult[ClientPortfolioSnapshot]:
        """
        Value every active allocation of a client.

        Returns:
            ServiceResult with the snapshot, NotFoundError when the client does not exist
        """
        client = await self.session.get(Client, client_id)
        if client is None:
            return ServiceResult.fail(NotFoundError(f"Client {client_id} not found", {"client_id": client_id}))

        valuations: List[AllocationValuation] = []
        totals = {AssetKind.WALLET: ZERO, AssetKind.ACCOUNT: ZERO}
        as_of: Optional[datetime] = None

        for allocation in await self.ledger.get_active_by_client(client_id):
            ref = AssetRef(kind=allocation.asset_kind, id=allocation.asset_id)
            asset_value, latest = await self.asset_value(ref)
            value = allocated_value(allocation, asset_value)

            totals[ref.kind] += value
            if latest is not None and (as_of is None or latest > as_of):
                as_of = latest

            valuations.append(AllocationValuation(
                allocation_id=allocation.id,
                asset_kind=allocation.asset_kind,
                asset_id=allocation.asset_id,
                allocation_type=allocation.allocation_type,
                allocation_value=allocation.allocation_value,
                asset_value_usd=asset_value,
                allocated_value_usd=value,
                ))

        snapshot = ClientPortfolioSnapshot(
            client_id=client_id,
            total_value_usd=totals[AssetKind.WALLET] + totals[AssetKind.ACCOUNT],
            wallet_value_usd=totals[AssetKind.WALLET],
            account_value_usd=totals[AssetKind.ACCOUNT],
            allocations=valuations,
            as_of=as_of,
            )
        logger.debug("Portfolio computed", client_id=client_id, allocations=len(valuations), total_value_usd=str(snapshot.total_value_usd))
        return ServiceResult.ok(snapshot)

    async def compute_overview(self) -> PortfolioOverview:
        """
        Assets under custody across all clients.

        total_value_usd covers ACTIVE assets only; allocated value covers every
        active allocation.
        """
        by_kind: Dict[AssetKind, PFAssetKindTotals] = {}
        total = ZERO
        for view in await self.registry.list_assets():
            totals = by_kind.setdefault(view.kind, PFAssetKindTotals())
            totals.asset_count += 1
            if view.status != AssetStatus.ACTIVE:
                continue
            value, _ = await self.asset_value(view.ref)
            totals.active_asset_count += 1
            totals.value_usd += value
            total += value

        stmt = select(ClientAssetAllocation).where(active_clause(utcnow())).order_by(ClientAssetAllocation.id)
        allocations = list((await self.session.execute(stmt)).scalars().all())
        allocated = ZERO
        for allocation in allocations:
            value, _ = await self.asset_value(AssetRef(kind=allocation.asset_kind, id=allocation.asset_id))
            allocated += allocated_value(allocation, value)

        client_stmt = select(func.count()).select_from(Client).where(Client.status == ClientStatus.ACTIVE)
        active_clients = (await self.session.execute(client_stmt)).scalar_one()

        return PortfolioOverview(
            total_value_usd=total,
            allocated_value_usd=allocated,
            unallocated_value_usd=max(total - allocated, ZERO),
            active_client_count=active_clients,
            active_allocation_count=len(allocations),
            by_kind=by_kind,
            )
