"""
Sync intake for CustodyFolio.

Entry point for sync collaborators (blockchain data provider for wallets, open-finance
aggregator for accounts). Provider integrations live outside this package: they only
hand over an ASSyncResultItem.

- SUCCESS: every balance is recorded with the same recorded_at, last_sync_at moves.
  Balances of one token at one instant (the same token held on several chains) are
  merged into a single row: quantities and USD values add up, chains are listed.
  A token whose unit price moved more than the configured percentage since its
  previous snapshot raises (or refreshes) the asset's PRICE_CHANGE alert.
- FAILED: sync status and error are stored, a SYNC_FAILURE alert is raised or refreshed

Inactive assets are not synced: a result for one is rejected.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import AssetBalance, AssetStatus, RebalancingAlert, SyncStatus
from backend.app.logging_config import get_logger
from backend.app.schemas.assets import ASBalanceItem, ASSyncResultItem, ASSyncResponse
from backend.app.schemas.common import AssetRef
from backend.app.schemas.system import ConfigSnapshot
from backend.app.services.alert_engine import AlertEngine
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.errors import ValidationError
from backend.app.services.result import ServiceResult
from backend.app.utils.datetime_utils import as_utc, utcnow

logger = get_logger(__name__)


class SyncIntakeService:
    """Apply sync results to the registry. The caller is responsible for commit/rollback."""

    def __init__(self, session: AsyncSession, config: Optional[ConfigSnapshot] = None):
        self.session = session
        self.registry = AssetRegistry(session)
        self.alerts = AlertEngine(session, config)

    async def apply_sync(self, ref: AssetRef, item: ASSyncResultItem) -> ServiceResult[ASSyncResponse]:
        """
        Record the outcome of one sync run.

        Any failing balance fails the whole result; the caller's rollback discards
        the balances already flushed.
        """
        asset = await self.registry.get_asset(ref)
        if not asset.success:
            return ServiceResult.fail(asset.error)
        if asset.value.status != AssetStatus.ACTIVE:
            return ServiceResult.fail(ValidationError(f"{ref} is inactive and cannot be synced", {"asset": str(ref)}))

        synced_at = as_utc(item.synced_at) if item.synced_at else utcnow()

        if item.status == SyncStatus.FAILED:
            marked = await self.registry.mark_sync(ref, SyncStatus.FAILED, error_message=item.error_message)
            if not marked.success:
                return ServiceResult.fail(marked.error)
            alert = await self.alerts.raise_sync_failure(ref, item.error_message)
            if not alert.success:
                return ServiceResult.fail(alert.error)
            return ServiceResult.ok(ASSyncResponse(asset=marked.value, alert_id=alert.value.id))

        recorded = 0
        price_alert_ids: List[int] = []
        for balance in merge_same_token(item.balances, synced_at):
            previous = await self.registry.get_current_balance(ref, balance.token)
            result = await self.registry.record_balance(ref, balance)
            if not result.success:
                logger.warning("Sync result rejected", asset=str(ref), token=balance.token, error=result.error.code)
                return ServiceResult.fail(result.error)
            recorded += 1

            moved = await self._check_price_move(ref, previous, result.value)
            if not moved.success:
                return ServiceResult.fail(moved.error)
            if moved.value is not None and moved.value.id not in price_alert_ids:
                price_alert_ids.append(moved.value.id)

        marked = await self.registry.mark_sync(ref, SyncStatus.SUCCESS, synced_at=synced_at)
        if not marked.success:
            return ServiceResult.fail(marked.error)

        logger.info("Asset synced", asset=str(ref), balances=recorded)
        return ServiceResult.ok(ASSyncResponse(asset=marked.value, recorded_count=recorded, price_alert_ids=price_alert_ids))

    async def _check_price_move(
        self,
        ref: AssetRef,
        previous: Optional[AssetBalance],
        current: AssetBalance,
        ) -> ServiceResult[Optional[RebalancingAlert]]:
        """Compare unit prices with the previous (older) snapshot of the same token."""
        if previous is None or as_utc(previous.recorded_at) >= as_utc(current.recorded_at):
            return ServiceResult.ok(None)
        previous_price = unit_price(previous)
        price = unit_price(current)
        if previous_price is None or price is None:
            return ServiceResult.ok(None)
        return await self.alerts.raise_price_change(ref, current.token, previous_price, price)


def unit_price(balance: AssetBalance) -> Optional[Decimal]:
    """USD value of one unit, None when unpriced or empty."""
    if balance.value_usd is None or not balance.quantity:
        return None
    return balance.value_usd / balance.quantity


def _joined(values: List[Optional[str]]) -> Optional[str]:
    distinct = sorted({v for v in values if v})
    return ",".join(distinct) if distinct else None


def merge_same_token(balances: List[ASBalanceItem], default_recorded_at: datetime) -> List[ASBalanceItem]:
    """
    One balance per (token, recorded_at), in first-seen order.

    Missing recorded_at takes default_recorded_at. value_usd stays None only when no
    merged part was priced.
    """
    groups: Dict[Tuple[str, datetime], List[ASBalanceItem]] = {}
    for balance in balances:
        recorded_at = as_utc(balance.recorded_at) if balance.recorded_at else default_recorded_at
        groups.setdefault((balance.token, recorded_at), []).append(balance)

    merged: List[ASBalanceItem] = []
    for (token, recorded_at), parts in groups.items():
        priced = [p.value_usd for p in parts if p.value_usd is not None]
        if len(parts) > 1:
            logger.debug("Merging balances of one token", token=token, parts=len(parts))
        merged.append(ASBalanceItem(
            token=token,
            quantity=sum((p.quantity for p in parts), Decimal(0)),
            value_usd=sum(priced, Decimal(0)) if priced else None,
            chain=_joined([p.chain for p in parts]),
            balance_type=_joined([p.balance_type for p in parts]),
            recorded_at=recorded_at,
            ))
    return merged
