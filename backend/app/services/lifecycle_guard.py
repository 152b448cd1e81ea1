"""
Lifecycle Guard for CustodyFolio.

The only path that deactivates an asset. An asset referenced by an active
allocation cannot be deactivated: the allocations must be ended first.
Assets are never hard-deleted.

The allocation check and the status write run in the caller's transaction, which
holds the SQLite write lock from its first read: an allocation created concurrently
waits for the commit and then sees the asset inactive.
"""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import AssetStatus
from backend.app.logging_config import get_logger
from backend.app.schemas.assets import AssetView
from backend.app.schemas.common import AssetRef
from backend.app.services.allocation_ledger import AllocationLedger
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.errors import ConflictError
from backend.app.services.result import ServiceResult

logger = get_logger(__name__)


class LifecycleGuard:
    """Gatekeeper of asset deactivation. The caller is responsible for commit/rollback."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.registry = AssetRegistry(session)
        self.ledger = AllocationLedger(session)

    async def can_deactivate(self, ref: AssetRef) -> bool:
        """True when no active allocation references the asset."""
        return not await self.ledger.get_active_by_asset(ref)

    async def deactivate(self, ref: AssetRef) -> ServiceResult[AssetView]:
        """
        Set the asset INACTIVE.

        Fails with NotFoundError (unknown asset) or ConflictError (active allocations
        exist, status left unchanged). Deactivating an inactive asset succeeds.
        """
        asset = await self.registry.get_asset(ref)
        if not asset.success:
            return asset
        if not asset.value.is_active:
            return asset

        active = await self.ledger.get_active_by_asset(ref)
        if active:
            allocation_ids = [a.id for a in active]
            logger.warning(
                "Deactivation refused, asset has active allocations",
                asset=str(ref),
                allocation_ids=allocation_ids,
                )
            return ServiceResult.fail(ConflictError(
                f"Cannot deactivate {ref}: active allocations exist, end them first",
                {"asset": str(ref), "allocation_ids": allocation_ids},
                ))

        result = await self.registry.set_status(ref, AssetStatus.INACTIVE)
        if result.success:
            logger.info("Asset deactivated", asset=str(ref))
        return result
