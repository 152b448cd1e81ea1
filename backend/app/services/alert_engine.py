"""
Drift & Alert Engine for CustodyFolio.

- Allocation drift: realized share of each asset in a client portfolio vs. its target
- ALLOCATION_DRIFT alerts above a threshold (config default 10 points)
- SYNC_FAILURE alerts from sync collaborators and stale-sync scans
- BALANCE_LOW alerts from low-balance scans
- LARGE_TRANSACTION alerts for movements above the configured USD threshold
- PRICE_CHANGE alerts when a token's unit price moves too much between two syncs
- Alert state machine: NEW -> ACKNOWLEDGED, NEW|ACKNOWLEDGED -> RESOLVED|DISMISSED

De-duplication:
At most one open (NEW or ACKNOWLEDGED) alert exists per (alert_type, client_id, asset).
Drift alerts are skipped while one is open; sync, balance and price alerts refresh the
open one (message, data) instead of adding another. Every large transaction gets its
own alert. Alerts are never deleted.
"""
from __future__ import annotations

import json
from datetime import timedelta, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import (
    ASSET_TABLES,
    AlertSeverity,
    AlertStatus,
    AlertType,
    AllocationType,
    AssetStatus,
    AssetTransaction,
    OPEN_ALERT_STATUSES,
    RebalancingAlert,
    )
from backend.app.logging_config import get_logger
from backend.app.schemas.alerts import AllocationDrift, DriftTarget, RBQueryParams, RBSummary
from backend.app.schemas.common import AssetRef, HUNDRED, ZERO, quantize_money
from backend.app.schemas.system import ConfigSnapshot
from backend.app.services.asset_registry import AssetRegistry, sum_value_usd
from backend.app.services.errors import InvalidStateTransitionError, NotFoundError, ValidationError
from backend.app.services.portfolio_valuator import PortfolioValuator
from backend.app.services.result import ServiceResult
from backend.app.services.system_config import default_config_snapshot
from backend.app.utils.datetime_utils import as_utc, utcnow

logger = get_logger(__name__)

# current status -> statuses reachable from it
ALERT_TRANSITIONS = {
    AlertStatus.NEW: {AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED, AlertStatus.DISMISSED},
    AlertStatus.ACKNOWLEDGED: {AlertStatus.RESOLVED, AlertStatus.DISMISSED},
    AlertStatus.RESOLVED: set(),
    AlertStatus.DISMISSED: set(),
    }


def _dump(data: Dict[str, Any]) -> str:
    return json.dumps(data, default=str, sort_keys=True)


class AlertEngine:
    """
    Service for drift evaluation and rebalancing alerts.

    All methods are async and expect an AsyncSession.
    The caller is responsible for commit/rollback.
    """

    def __init__(self, session: AsyncSession, config: Optional[ConfigSnapshot] = None):
        self.session = session
        self.config = config or default_config_snapshot()
        self.registry = AssetRegistry(session)

    # =========================================================================
    # DRIFT
    # =========================================================================

    async def evaluate_drift(
        self,
        client_id: int,
        targets: Optional[List[DriftTarget]] = None,
        ) -> ServiceResult[List[AllocationDrift]]:
        """
        Compare the realized share of each target asset with its target.

        current_allocation_pct = allocated value of the asset / client total * 100
        (0 when the client total is 0) and drift_amount_usd = allocated value - target
        share of the client total. Without explicit targets, the client's active
        PERCENTAGE allocations are the targets. One entry per target, in target order.
        """
        valuator = PortfolioValuator(self.session)
        result = await valuator.compute_client_portfolio(client_id)
        if not result.success:
            return ServiceResult.fail(result.error)
        snapshot = result.value

        if targets is None:
            targets = [
                DriftTarget(
                    asset_kind=v.asset_kind,
                    asset_id=v.asset_id,
                    target_allocation_pct=v.allocation_value,
                    )
                for v in snapshot.allocations
                if v.allocation_type == AllocationType.PERCENTAGE
                ]

        allocated_by_asset: Dict[AssetRef, Decimal] = {}
        for valuation in snapshot.allocations:
            ref = AssetRef(kind=valuation.asset_kind, id=valuation.asset_id)
            allocated_by_asset[ref] = allocated_by_asset.get(ref, ZERO) + valuation.allocated_value_usd

        total = snapshot.total_value_usd
        drifts: List[AllocationDrift] = []
        for target in targets:
            allocated = allocated_by_asset.get(target.asset_ref, ZERO)
            current_pct = quantize_money(allocated / total * HUNDRED) if total > ZERO else ZERO
            target_value = total * target.target_allocation_pct / HUNDRED
            drifts.append(AllocationDrift(
                client_id=client_id,
                asset_kind=target.asset_kind,
                asset_id=target.asset_id,
                current_allocation_pct=current_pct,
                target_allocation_pct=target.target_allocation_pct,
                drift_pct=current_pct - target.target_allocation_pct,
                drift_amount_usd=quantize_money(allocated - target_value),
                ))
        return ServiceResult.ok(drifts)

    def drift_statistics(self, drifts: List[AllocationDrift], threshold_pct: Optional[Decimal] = None) -> Tuple[Decimal, int, Decimal]:
        """
        Returns:
            (threshold used, number of drifts with |drift_pct| > threshold, mean |drift_pct|)
        """
        threshold = threshold_pct if threshold_pct is not None else self.config.drift_threshold_pct
        magnitudes = [abs(d.drift_pct) for d in drifts]
        over = sum(1 for m in magnitudes if m > threshold)
        average = quantize_money(sum(magnitudes, ZERO) / len(magnitudes)) if magnitudes else ZERO
        return threshold, over, average

    async def raise_if_threshold_exceeded(
        self,
        drift: AllocationDrift,
        threshold_pct: Optional[Decimal] = None,
        ) -> ServiceResult[Optional[RebalancingAlert]]:
        """
        Create a NEW ALLOCATION_DRIFT alert when |drift_pct| > threshold.

        Nothing is created (value None) under the threshold or while an open drift
        alert exists for the same client and asset. Severity is HIGH above twice the
        threshold, MEDIUM otherwise.
        """
        threshold = threshold_pct if threshold_pct is not None else self.config.drift_threshold_pct
        if threshold < ZERO:
            return ServiceResult.fail(ValidationError("Drift threshold cannot be negative", {"threshold_pct": str(threshold)}))

        magnitude = abs(drift.drift_pct)
        if magnitude <= threshold:
            return ServiceResult.ok(None)

        existing = await self._find_open(AlertType.ALLOCATION_DRIFT, drift.client_id, drift.asset_ref)
        if existing is not None:
            logger.debug("Drift alert already open", alert_id=existing.id, client_id=drift.client_id, asset=str(drift.asset_ref))
            return ServiceResult.ok(None)

        severity = AlertSeverity.HIGH if magnitude > threshold * 2 else AlertSeverity.MEDIUM
        direction = "above" if drift.drift_pct > ZERO else "below"
        alert = RebalancingAlert(
            client_id=drift.client_id,
            asset_kind=drift.asset_kind,
            asset_id=drift.asset_id,
            alert_type=AlertType.ALLOCATION_DRIFT,
            severity=severity,
            message=(
                f"Allocation of {drift.asset_ref} is {magnitude:.2f} points {direction} target "
                f"(current {drift.current_allocation_pct:.2f}%, target {drift.target_allocation_pct:.2f}%)"
            ),
            alert_data=_dump({
                "current_allocation_pct": drift.current_allocation_pct,
                "target_allocation_pct": drift.target_allocation_pct,
                "drift_pct": drift.drift_pct,
                "drift_amount_usd": drift.drift_amount_usd,
                "threshold_pct": threshold,
                }),
            )
        self.session.add(alert)
        await self.session.flush()

        logger.info("Drift alert raised", alert_id=alert.id, client_id=drift.client_id, asset=str(drift.asset_ref), severity=severity.value)
        return ServiceResult.ok(alert)

    # =========================================================================
    # SYSTEM ALERTS
    # =========================================================================

    async def raise_sync_failure(self, ref: AssetRef, error_message: str) -> ServiceResult[RebalancingAlert]:
        """
        Raise (or refresh) the HIGH system-wide SYNC_FAILURE alert of an asset.
        """
        asset = await self.registry.load(ref)
        if asset is None:
            return ServiceResult.fail(NotFoundError(f"{ref.kind.value.capitalize()} {ref.id} not found", {"asset": str(ref)}))

        logger.warning("Asset sync failed", asset=str(ref), error=error_message)
        alert, _ = await self._create_or_refresh(
            AlertType.SYNC_FAILURE,
            AlertSeverity.HIGH,
            ref,
            message=f"Sync failed for {ref}: {error_message}",
            data={"error": error_message, "failed_at": utcnow().isoformat()},
            )
        return ServiceResult.ok(alert)

    async def raise_large_transaction(self, transaction: AssetTransaction) -> ServiceResult[Optional[RebalancingAlert]]:
        """
        Create a NEW system-wide LARGE_TRANSACTION alert when amount_usd is above the
        configured threshold (HIGH above twice the threshold, MEDIUM otherwise).

        Unpriced or smaller movements create nothing (value None).
        """
        threshold = self.config.large_transaction_threshold_usd
        amount_usd = transaction.amount_usd
        if amount_usd is None or amount_usd <= threshold:
            return ServiceResult.ok(None)

        ref = AssetRef(kind=transaction.asset_kind, id=transaction.asset_id)
        severity = AlertSeverity.HIGH if amount_usd > threshold * 2 else AlertSeverity.MEDIUM
        alert = RebalancingAlert(
            asset_kind=ref.kind,
            asset_id=ref.id,
            alert_type=AlertType.LARGE_TRANSACTION,
            severity=severity,
            message=(
                f"Large {transaction.direction.value} movement on {ref}: {transaction.amount} {transaction.token} "
                f"({amount_usd:.2f} USD, threshold {threshold:.2f} USD)"
            ),
            alert_data=_dump({
                "transaction_id": transaction.id,
                "direction": transaction.direction.value,
                "token": transaction.token,
                "amount": transaction.amount,
                "amount_usd": amount_usd,
                "threshold_usd": threshold,
                "tx_hash": transaction.tx_hash,
                }),
            )
        self.session.add(alert)
        await self.session.flush()

        logger.warning(
            "Large transaction alert raised",
            alert_id=alert.id,
            asset=str(ref),
            transaction_id=transaction.id,
            amount_usd=str(amount_usd),
            )
        return ServiceResult.ok(alert)

    async def raise_price_change(
        self,
        ref: AssetRef,
        token: str,
        previous_price: Decimal,
        price: Decimal,
        ) -> ServiceResult[Optional[RebalancingAlert]]:
        """
        Raise (or refresh) the PRICE_CHANGE alert of an asset when the unit price of
        token moved more than the configured percentage.

        change_pct = (price - previous_price) / previous_price * 100. Nothing happens
        (value None) within the threshold or when previous_price is not positive.
        """
        if previous_price <= ZERO:
            return ServiceResult.ok(None)
        threshold = self.config.price_change_threshold_pct
        change_pct = quantize_money((price - previous_price) / previous_price * HUNDRED)
        if abs(change_pct) <= threshold:
            return ServiceResult.ok(None)

        severity = AlertSeverity.HIGH if abs(change_pct) > threshold * 2 else AlertSeverity.MEDIUM
        direction = "up" if change_pct > ZERO else "down"
        alert, _ = await self._create_or_refresh(
            AlertType.PRICE_CHANGE,
            severity,
            ref,
            message=f"{token} on {ref} is {direction} {abs(change_pct):.2f}% since the previous sync ({previous_price:.6f} -> {price:.6f} USD)",
            data={
                "token": token,
                "previous_price_usd": previous_price,
                "price_usd": price,
                "change_pct": change_pct,
                "threshold_pct": threshold,
                },
            )
        return ServiceResult.ok(alert)

    async def scan_low_balances(self) -> List[int]:
        """
        BALANCE_LOW alert for every active asset whose value is under the configured
        threshold. Assets without any balance are left to the stale-sync scan.

        Returns:
            IDs of alerts created or refreshed
        """
        threshold = self.config.low_balance_threshold_usd
        alert_ids: List[int] = []
        for view in await self.registry.list_assets(status=AssetStatus.ACTIVE):
            balances = await self.registry.get_current_balances(view.ref)
            if not balances:
                continue
            value = sum_value_usd(view.ref, balances)
            if value >= threshold:
                continue
            alert, _ = await self._create_or_refresh(
                AlertType.BALANCE_LOW,
                AlertSeverity.MEDIUM,
                view.ref,
                message=f"Low balance on {view.display_name}: {value:.2f} USD (threshold {threshold:.2f} USD)",
                data={"value_usd": value, "threshold_usd": threshold},
                )
            alert_ids.append(alert.id)
        logger.info("Low balance scan completed", alerts=len(alert_ids))
        return alert_ids

    async def scan_stale_syncs(self, now: Optional[datetime] = None) -> List[int]:
        """
        SYNC_FAILURE alert for every active asset without a successful sync within the
        configured hours. Never-synced assets count from their creation.

        Returns:
            IDs of alerts created or refreshed
        """
        now = as_utc(now) if now else utcnow()
        cutoff = now - timedelta(hours=self.config.sync_stale_hours)
        alert_ids: List[int] = []
        for kind, table in ASSET_TABLES.items():
            stmt = select(table).where(table.status == AssetStatus.ACTIVE).order_by(table.id)
            for asset in (await self.session.execute(stmt)).scalars().all():
                reference_time = as_utc(asset.last_sync_at or asset.created_at)
                if reference_time >= cutoff:
                    continue
                ref = AssetRef(kind=kind, id=asset.id)
                last = as_utc(asset.last_sync_at).isoformat() if asset.last_sync_at else "never"
                alert, _ = await self._create_or_refresh(
                    AlertType.SYNC_FAILURE,
                    AlertSeverity.HIGH,
                    ref,
                    message=f"{ref} has not synced in over {self.config.sync_stale_hours} hours (last sync: {last})",
                    data={"last_sync_at": last, "stale_hours": self.config.sync_stale_hours},
                    )
                alert_ids.append(alert.id)
        if alert_ids:
            logger.warning("Stale asset syncs detected", alerts=len(alert_ids))
        return alert_ids

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    async def acknowledge(self, alert_id: int) -> ServiceResult[RebalancingAlert]:
        """NEW -> ACKNOWLEDGED."""
        return await self._transition(alert_id, AlertStatus.ACKNOWLEDGED)

    async def resolve(self, alert_id: int, resolution_notes: Optional[str] = None) -> ServiceResult[RebalancingAlert]:
        """NEW|ACKNOWLEDGED -> RESOLVED, storing the optional resolution notes."""
        return await self._transition(alert_id, AlertStatus.RESOLVED, resolution_notes=resolution_notes)

    async def dismiss(self, alert_id: int) -> ServiceResult[RebalancingAlert]:
        """NEW|ACKNOWLEDGED -> DISMISSED."""
        return await self._transition(alert_id, AlertStatus.DISMISSED)

    async def _transition(
        self,
        alert_id: int,
        target: AlertStatus,
        resolution_notes: Optional[str] = None,
        ) -> ServiceResult[RebalancingAlert]:
        alert = await self.session.get(RebalancingAlert, alert_id)
        if alert is None:
            return ServiceResult.fail(NotFoundError(f"Alert {alert_id} not found", {"alert_id": alert_id}))
        if target not in ALERT_TRANSITIONS[alert.status]:
            return ServiceResult.fail(InvalidStateTransitionError(
                f"Cannot move alert from {alert.status.value} to {target.value}",
                {"alert_id": alert_id, "status": alert.status.value, "target": target.value},
                ))

        now = utcnow()
        previous = alert.status
        alert.status = target
        if target == AlertStatus.ACKNOWLEDGED:
            alert.acknowledged_at = now
        elif target == AlertStatus.RESOLVED:
            alert.resolved_at = now
            alert.resolution_notes = resolution_notes
        elif target == AlertStatus.DISMISSED:
            alert.dismissed_at = now
        await self.session.flush()

        logger.info("Alert status changed", alert_id=alert_id, old_status=previous.value, new_status=target.value)
        return ServiceResult.ok(alert)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get(self, alert_id: int) -> ServiceResult[RebalancingAlert]:
        alert = await self.session.get(RebalancingAlert, alert_id)
        if alert is None:
            return ServiceResult.fail(NotFoundError(f"Alert {alert_id} not found", {"alert_id": alert_id}))
        return ServiceResult.ok(alert)

    async def list(self, params: RBQueryParams) -> Tuple[List[RebalancingAlert], int]:
        """Filtered page of alerts, newest first. Returns (alerts, total_count)."""
        conditions = []
        if params.severity is not None:
            conditions.append(RebalancingAlert.severity == params.severity)
        if params.status is not None:
            conditions.append(RebalancingAlert.status == params.status)
        if params.alert_type is not None:
            conditions.append(RebalancingAlert.alert_type == params.alert_type)
        if params.client_id is not None:
            conditions.append(RebalancingAlert.client_id == params.client_id)

        total = (await self.session.execute(
            select(func.count()).select_from(RebalancingAlert).where(*conditions)
            )).scalar_one()
        stmt = (
            select(RebalancingAlert)
            .where(*conditions)
            .order_by(RebalancingAlert.created_at.desc(), RebalancingAlert.id.desc())
            .offset(params.offset)
            .limit(params.limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def summary(self) -> RBSummary:
        """Alert counts by status, severity and type."""
        summary = RBSummary()
        for column, target in (
            (RebalancingAlert.status, summary.by_status),
            (RebalancingAlert.severity, summary.by_severity),
            (RebalancingAlert.alert_type, summary.by_type),
        ):
            rows = (await self.session.execute(select(column, func.count()).group_by(column))).all()
            for key, count in rows:
                target[key] = count
        summary.total = sum(summary.by_status.values())
        return summary

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _find_open(self, alert_type: AlertType, client_id: Optional[int], ref: Optional[AssetRef]) -> Optional[RebalancingAlert]:
        stmt = select(RebalancingAlert).where(
            RebalancingAlert.alert_type == alert_type,
            RebalancingAlert.status.in_(OPEN_ALERT_STATUSES),
            RebalancingAlert.client_id.is_(None) if client_id is None else RebalancingAlert.client_id == client_id,
            )
        if ref is None:
            stmt = stmt.where(RebalancingAlert.asset_kind.is_(None), RebalancingAlert.asset_id.is_(None))
        else:
            stmt = stmt.where(RebalancingAlert.asset_kind == ref.kind, RebalancingAlert.asset_id == ref.id)
        result = await self.session.execute(stmt.order_by(RebalancingAlert.id).limit(1))
        return result.scalar_one_or_none()

    async def _create_or_refresh(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        ref: AssetRef,
        message: str,
        data: Dict[str, Any],
        client_id: Optional[int] = None,
        ) -> Tuple[RebalancingAlert, bool]:
        """Returns (alert, created)."""
        existing = await self._find_open(alert_type, client_id, ref)
        if existing is not None:
            existing.message = message
            existing.alert_data = _dump(data)
            existing.severity = severity
            existing.updated_at = utcnow()
            await self.session.flush()
            logger.debug("Open alert refreshed", alert_id=existing.id, alert_type=alert_type.value, asset=str(ref))
            return existing, False

        alert = RebalancingAlert(
            client_id=client_id,
            asset_kind=ref.kind,
            asset_id=ref.id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            alert_data=_dump(data),
            )
        self.session.add(alert)
        await self.session.flush()
        logger.info("Alert raised", alert_id=alert.id, alert_type=alert_type.value, asset=str(ref), severity=severity.value)
        return alert, True
