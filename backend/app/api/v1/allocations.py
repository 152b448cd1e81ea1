"""
Allocation API endpoints for CustodyFolio.

- POST /allocations: Create an allocation
- POST /allocations/validate: Dry-run validation
- GET /allocations: List allocations (filters + pagination)
- GET /allocations/conflicts: Assets over-allocated above 100%
- GET /allocations/{id}: Get one allocation
- PATCH /allocations/{id}: Update an active allocation
- POST /allocations/{id}/end: Soft end
- DELETE /allocations/{id}: Hard delete (data-entry fixes only, audited)
- GET /clients/{client_id}/allocations: Active allocations of a client
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.v1.deps import get_config_snapshot
from backend.app.db.models import AssetKind
from backend.app.db.session import get_session_generator, unit_of_work
from backend.app.logging_config import get_logger
from backend.app.schemas.allocations import (
    ALConflict,
    ALCreateItem,
    ALEndItem,
    ALListResponse,
    ALQueryParams,
    ALReadItem,
    ALUpdateItem,
    ALValidateItem,
    ALValidationResult,
    )
from backend.app.schemas.system import ConfigSnapshot
from backend.app.services.allocation_ledger import AllocationLedger
from backend.app.utils.datetime_utils import utcnow

logger = get_logger(__name__)

allocation_router = APIRouter(prefix="/allocations", tags=["allocations"])
client_allocation_router = APIRouter(prefix="/clients", tags=["allocations"])


# =============================================================================
# CREATE / VALIDATE
# =============================================================================

@allocation_router.post("", response_model=ALReadItem, status_code=201)
async def create_allocation(
    item: ALCreateItem,
    session: AsyncSession = Depends(get_session_generator),
    config: ConfigSnapshot = Depends(get_config_snapshot),
    ) -> ALReadItem:
    """
    Create an allocation.

    Errors:
        400: invalid value, inactive client/asset, asset PERCENTAGE total above 100
        404: client or asset not found
        409: client already holds an active allocation on the asset
    """
    async with unit_of_work(session):
        allocation = (await AllocationLedger(session, config).create(item)).unwrap()
    return ALReadItem.from_db_model(allocation)


@allocation_router.post("/validate", response_model=ALValidationResult)
async def validate_allocation(
    item: ALValidateItem,
    session: AsyncSession = Depends(get_session_generator),
    config: ConfigSnapshot = Depends(get_config_snapshot),
    ) -> ALValidationResult:
    """Check an allocation without creating it (errors + warnings)."""
    return await AllocationLedger(session, config).validate(item)


# =============================================================================
# READ
# =============================================================================

@allocation_router.get("", response_model=ALListResponse)
async def list_allocations(
    client_id: Optional[int] = Query(None, gt=0, description="Filter by client"),
    asset_kind: Optional[AssetKind] = Query(None, description="Filter by asset variant"),
    asset_id: Optional[int] = Query(None, gt=0, description="Filter by asset"),
    active_only: bool = Query(False, description="Only allocations active now"),
    limit: int = Query(50, ge=1, le=1000, description="Max results"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    session: AsyncSession = Depends(get_session_generator),
    ) -> ALListResponse:
    """List allocations, most recent start first."""
    params = ALQueryParams(
        client_id=client_id,
        asset_kind=asset_kind,
        asset_id=asset_id,
        active_only=active_only,
        limit=limit,
        offset=offset,
        )
    allocations, total = await AllocationLedger(session).list(params)
    now = utcnow()
    return ALListResponse(
        items=[ALReadItem.from_db_model(a, now) for a in allocations],
        total_count=total,
        limit=limit,
        offset=offset,
        )


@allocation_router.get("/conflicts", response_model=List[ALConflict])
async def list_allocation_conflicts(
    session: AsyncSession = Depends(get_session_generator),
    ) -> List[ALConflict]:
    """Assets whose active PERCENTAGE allocations sum above 100."""
    return await AllocationLedger(session).find_conflicts()


@allocation_router.get("/{allocation_id}", response_model=ALReadItem)
async def get_allocation(
    allocation_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> ALReadItem:
    allocation = (await AllocationLedger(session).get(allocation_id)).unwrap()
    return ALReadItem.from_db_model(allocation)


@client_allocation_router.get("/{client_id}/allocations", response_model=List[ALReadItem])
async def list_client_active_allocations(
    client_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> List[ALReadItem]:
    """Active allocations of a client, oldest start first."""
    allocations = await AllocationLedger(session).get_active_by_client(client_id)
    now = utcnow()
    return [ALReadItem.from_db_model(a, now) for a in allocations]


# =============================================================================
# UPDATE / END / DELETE
# =============================================================================

@allocation_router.patch("/{allocation_id}", response_model=ALReadItem)
async def update_allocation(
    allocation_id: int,
    item: ALUpdateItem,
    session: AsyncSession = Depends(get_session_generator),
    config: ConfigSnapshot = Depends(get_config_snapshot),
    ) -> ALReadItem:
    """Update an active allocation (409 if already ended)."""
    async with unit_of_work(session):
        allocation = (await AllocationLedger(session, config).update(allocation_id, item)).unwrap()
    return ALReadItem.from_db_model(allocation)


@allocation_router.post("/{allocation_id}/end", response_model=ALReadItem)
async def end_allocation(
    allocation_id: int,
    item: Optional[ALEndItem] = None,
    session: AsyncSession = Depends(get_session_generator),
    ) -> ALReadItem:
    """Soft-end an allocation (end_date defaults to now)."""
    end_date = item.end_date if item else None
    async with unit_of_work(session):
        allocation = (await AllocationLedger(session).end(allocation_id, end_date)).unwrap()
    return ALReadItem.from_db_model(allocation)


@allocation_router.delete("/{allocation_id}", status_code=204)
async def delete_allocation(
    allocation_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> None:
    """
    Hard delete an allocation.

    Only for data-entry errors: ending the allocation keeps history and is preferred.
    """
    async with unit_of_work(session):
        (await AllocationLedger(session).hard_delete(allocation_id)).unwrap()
