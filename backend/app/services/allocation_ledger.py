"""
Allocation Ledger for CustodyFolio.

Maintains the time-bounded claims of clients on shares of assets:
- create / update with referential and percentage checks
- soft end (preferred) and audited hard delete (data-entry fixes only)
- active queries by client and by asset (the latter gates asset deactivation)
- dry-run validation and detection of legacy over-allocation

Design Notes:
- Active means end_date IS NULL or end_date >= now, evaluated in SQL
- For one asset, active PERCENTAGE values of all clients sum to at most 100.
  Sums are computed in Python on Decimal values: SQLite stores NUMERIC as float
- A client holds at most one active allocation per asset
- Domain failures are returned in a ServiceResult; the caller commits
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import (
    AllocationType,
    AssetStatus,
    Client,
    ClientAssetAllocation,
    ClientStatus,
    CustodyWallet,
    )
from backend.app.logging_config import get_logger
from backend.app.schemas.allocations import (
    ALConflict,
    ALConflictingAllocation,
    ALCreateItem,
    ALQueryParams,
    ALUpdateItem,
    ALValidateItem,
    ALValidationResult,
    )
from backend.app.schemas.common import AssetRef, HUNDRED, ZERO
from backend.app.schemas.system import ConfigSnapshot
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.errors import (
    AlreadyEndedError,
    ConflictError,
    CoreError,
    NotFoundError,
    ValidationError,
    )
from backend.app.services.result import ServiceResult
from backend.app.services.system_config import default_config_snapshot
from backend.app.utils.datetime_utils import as_utc, utcnow

logger = get_logger(__name__)


def active_clause(now: datetime):
    """SQL condition selecting allocations active at now."""
    return or_(ClientAssetAllocation.end_date.is_(None), ClientAssetAllocation.end_date >= now)


def is_active(allocation: ClientAssetAllocation, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return allocation.end_date is None or as_utc(allocation.end_date) >= now


def _check_value(allocation_type: AllocationType, value: Decimal) -> Optional[ValidationError]:
    if value <= ZERO:
        return ValidationError("Allocation value must be greater than 0", {"allocation_value": str(value)})
    if allocation_type == AllocationType.PERCENTAGE and value > HUNDRED:
        return ValidationError("Percentage allocation cannot exceed 100", {"allocation_value": str(value)})
    return None


class AllocationLedger:
    """
    Service for client asset allocations.

    All methods are async and expect an AsyncSession.
    The caller is responsible for commit/rollback.
    """

    def __init__(self, session: AsyncSession, config: Optional[ConfigSnapshot] = None):
        self.session = session
        self.config = config or default_config_snapshot()
        self.registry = AssetRegistry(session)

    # =========================================================================
    # CREATE / UPDATE
    # =========================================================================

    async def create(self, item: ALCreateItem) -> ServiceResult[ClientAssetAllocation]:
        """
        Create an allocation.

        Fails with:
        - ValidationError: value <= 0, PERCENTAGE > 100, end before start or in the past,
          inactive client or asset, asset PERCENTAGE total above 100
        - NotFoundError: client or asset missing
        - ConflictError: the client already holds an active allocation on the asset
        """
        errors, _, _, _ = await self._evaluate(item)
        if errors:
            logger.info("Allocation rejected", client_id=item.client_id, asset=str(item.asset_ref), error=errors[0].code)
            return ServiceResult.fail(errors[0])

        allocation = ClientAssetAllocation(
            client_id=item.client_id,
            asset_kind=item.asset_kind,
            asset_id=item.asset_id,
            allocation_type=item.allocation_type,
            allocation_value=item.allocation_value,
            start_date=item.effective_start(),
            end_date=as_utc(item.end_date) if item.end_date else None,
            notes=item.notes,
            )
        self.session.add(allocation)
        await self.session.flush()

        logger.info(
            "Allocation created",
            allocation_id=allocation.id,
            client_id=allocation.client_id,
            asset=str(item.asset_ref),
            allocation_type=allocation.allocation_type.value,
            allocation_value=str(allocation.allocation_value),
            )
        return ServiceResult.ok(allocation)

    async def update(self, allocation_id: int, item: ALUpdateItem) -> ServiceResult[ClientAssetAllocation]:
        """
        Update type, value, start date or notes of an active allocation.

        The PERCENTAGE total of the asset is re-checked excluding the allocation itself.
        Ended allocations cannot be updated (AlreadyEndedError): create a new one instead.
        """
        allocation = await self.session.get(ClientAssetAllocation, allocation_id)
        if allocation is None:
            return ServiceResult.fail(_allocation_not_found(allocation_id))
        if not is_active(allocation):
            return ServiceResult.fail(AlreadyEndedError(
                "Cannot update an ended allocation, create a new allocation instead",
                {"allocation_id": allocation_id},
                ))

        fields = item.model_fields_set
        new_type = item.allocation_type if "allocation_type" in fields and item.allocation_type else allocation.allocation_type
        new_value = item.allocation_value if "allocation_value" in fields and item.allocation_value is not None else allocation.allocation_value
        new_start = as_utc(item.start_date) if "start_date" in fields and item.start_date else as_utc(allocation.start_date)

        error = _check_value(new_type, new_value)
        if error:
            return ServiceResult.fail(error)
        if allocation.end_date is not None and as_utc(allocation.end_date) < new_start:
            return ServiceResult.fail(ValidationError("start_date cannot be after end_date"))

        if new_type == AllocationType.PERCENTAGE:
            ref = AssetRef(kind=allocation.asset_kind, id=allocation.asset_id)
            current_total = await self._active_percentage_total(ref, exclude_id=allocation.id)
            if current_total + new_value > HUNDRED:
                return ServiceResult.fail(_over_allocated(current_total, new_value))

        allocation.allocation_type = new_type
        allocation.allocation_value = new_value
        allocation.start_date = new_start
        if "notes" in fields:
            allocation.notes = item.notes
        await self.session.flush()

        logger.info("Allocation updated", allocation_id=allocation.id, client_id=allocation.client_id)
        return ServiceResult.ok(allocation)

    # =========================================================================
    # END / DELETE
    # =========================================================================

    async def end(self, allocation_id: int, end_date: Optional[datetime] = None) -> ServiceResult[ClientAssetAllocation]:
        """
        Soft-end an allocation (end_date defaults to now).

        Fails with NotFoundError, AlreadyEndedError (end_date already set) or
        ValidationError (end_date before start_date).
        """
        allocation = await self.session.get(ClientAssetAllocation, allocation_id)
        if allocation is None:
            return ServiceResult.fail(_allocation_not_found(allocation_id))
        if allocation.end_date is not None:
            return ServiceResult.fail(AlreadyEndedError(
                "Allocation has already been ended",
                {"allocation_id": allocation_id, "end_date": as_utc(allocation.end_date).isoformat()},
                ))

        end_date = as_utc(end_date) if end_date else utcnow()
        if end_date < as_utc(allocation.start_date):
            return ServiceResult.fail(ValidationError(
                "End date cannot be before start date",
                {"start_date": as_utc(allocation.start_date).isoformat(), "end_date": end_date.isoformat()},
                ))

        allocation.end_date = end_date
        await self.session.flush()

        logger.info("Allocation ended", allocation_id=allocation.id, client_id=allocation.client_id, end_date=end_date.isoformat())
        return ServiceResult.ok(allocation)

    async def hard_delete(self, allocation_id: int) -> ServiceResult[int]:
        """
        Physically delete an allocation.

        Only meant to fix data-entry errors: prefer end(). Always logged as a warning
        with the deleted row's content.
        """
        allocation = await self.session.get(ClientAssetAllocation, allocation_id)
        if allocation is None:
            return ServiceResult.fail(_allocation_not_found(allocation_id))

        logger.warning(
            "Allocation hard deleted, prefer ending allocations",
            allocation_id=allocation.id,
            client_id=allocation.client_id,
            asset_kind=allocation.asset_kind.value,
            asset_id=allocation.asset_id,
            allocation_type=allocation.allocation_type.value,
            allocation_value=str(allocation.allocation_value),
            start_date=str(allocation.start_date),
            end_date=str(allocation.end_date) if allocation.end_date else None,
            )
        await self.session.delete(allocation)
        await self.session.flush()
        return ServiceResult.ok(allocation_id)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get(self, allocation_id: int) -> ServiceResult[ClientAssetAllocation]:
        allocation = await self.session.get(ClientAssetAllocation, allocation_id)
        if allocation is None:
            return ServiceResult.fail(_allocation_not_found(allocation_id))
        return ServiceResult.ok(allocation)

    async def get_active_by_client(self, client_id: int) -> List[ClientAssetAllocation]:
        """Active allocations of a client, oldest start first."""
        stmt = (
            select(ClientAssetAllocation)
            .where(ClientAssetAllocation.client_id == client_id, active_clause(utcnow()))
            .order_by(ClientAssetAllocation.start_date, ClientAssetAllocation.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_active_by_asset(self, ref: AssetRef) -> List[ClientAssetAllocation]:
        """Active allocations on an asset, oldest start first."""
        stmt = (
            select(ClientAssetAllocation)
            .where(
                ClientAssetAllocation.asset_kind == ref.kind,
                ClientAssetAllocation.asset_id == ref.id,
                active_clause(utcnow()),
                )
            .order_by(ClientAssetAllocation.start_date, ClientAssetAllocation.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list(self, params: ALQueryParams) -> Tuple[List[ClientAssetAllocation], int]:
        """
        Filtered page of allocations, most recent start first.

        Returns:
            (allocations, total_count before pagination)
        """
        conditions = []
        if params.client_id is not None:
            conditions.append(ClientAssetAllocation.client_id == params.client_id)
        if params.asset_kind is not None:
            conditions.append(ClientAssetAllocation.asset_kind == params.asset_kind)
        if params.asset_id is not None:
            conditions.append(ClientAssetAllocation.asset_id == params.asset_id)
        if params.active_only:
            conditions.append(active_clause(utcnow()))

        count_stmt = select(func.count()).select_from(ClientAssetAllocation).where(*conditions)
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(ClientAssetAllocation)
            .where(*conditions)
            .order_by(ClientAssetAllocation.start_date.desc(), ClientAssetAllocation.id.desc())
            .offset(params.offset)
            .limit(params.limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate(self, item: ALValidateItem) -> ALValidationResult:
        """
        Dry run of create(): every error that would block it, plus warnings.

        Warnings: PERCENTAGE total above the configured warning level, overlap with
        an earlier allocation of the same client on the same asset.
        """
        errors, warnings, current_total, new_total = await self._evaluate(item, exclude_id=item.exclude_allocation_id)
        return ALValidationResult(
            is_valid=not errors,
            errors=[e.message for e in errors],
            warnings=warnings,
            current_total_percentage=current_total,
            new_total_percentage=new_total,
            )

    async def find_conflicts(self) -> List[ALConflict]:
        """
        Assets whose active PERCENTAGE allocations sum above 100.

        create() and update() prevent this; rows written before the check existed
        (or by direct imports) are reported here instead of being hidden.
        """
        stmt = (
            select(ClientAssetAllocation, Client.name)
            .join(Client, Client.id == ClientAssetAllocation.client_id)
            .where(ClientAssetAllocation.allocation_type == AllocationType.PERCENTAGE, active_clause(utcnow()))
            .order_by(ClientAssetAllocation.asset_kind, ClientAssetAllocation.asset_id, ClientAssetAllocation.start_date)
        )
        groups = defaultdict(list)
        for allocation, client_name in (await self.session.execute(stmt)).all():
            groups[AssetRef(kind=allocation.asset_kind, id=allocation.asset_id)].append((allocation, client_name))

        conflicts: List[ALConflict] = []
        for ref, rows in groups.items():
            total = sum((allocation.allocation_value for allocation, _ in rows), ZERO)
            if total <= HUNDRED:
                continue
            asset = await self.registry.load(ref)
            conflicts.append(ALConflict(
                asset_kind=ref.kind,
                asset_id=ref.id,
                asset_identifier=_asset_identifier(asset),
                total_percentage=total,
                allocation_count=len(rows),
                allocations=[
                    ALConflictingAllocation(
                        allocation_id=allocation.id,
                        client_id=allocation.client_id,
                        client_name=client_name,
                        allocation_value=allocation.allocation_value,
                        start_date=as_utc(allocation.start_date),
                        )
                    for allocation, client_name in rows
                    ],
                ))
        if conflicts:
            logger.warning("Over-allocated assets found", count=len(conflicts), assets=[f"{c.asset_kind.value}:{c.asset_id}" for c in conflicts])
        return conflicts

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _active_percentage_total(self, ref: AssetRef, exclude_id: Optional[int] = None) -> Decimal:
        stmt = select(ClientAssetAllocation.allocation_value).where(
            ClientAssetAllocation.asset_kind == ref.kind,
            ClientAssetAllocation.asset_id == ref.id,
            ClientAssetAllocation.allocation_type == AllocationType.PERCENTAGE,
            active_clause(utcnow()),
            )
        if exclude_id is not None:
            stmt = stmt.where(ClientAssetAllocation.id != exclude_id)
        values = (await self.session.execute(stmt)).scalars().all()
        return sum(values, ZERO)

    async def _evaluate(
        self,
        item: ALCreateItem,
        exclude_id: Optional[int] = None,
        ) -> Tuple[List[CoreError], List[str], Optional[Decimal], Optional[Decimal]]:
        """
        Check a prospective allocation.

        Returns:
            (errors in priority order, warnings, current PERCENTAGE total, new total)
        """
        errors: List[CoreError] = []
        warnings: List[str] = []
        now = utcnow()

        error = _check_value(item.allocation_type, item.allocation_value)
        if error:
            errors.append(error)

        start = item.effective_start()
        end = as_utc(item.end_date) if item.end_date else None
        if end is not None and end < start:
            errors.append(ValidationError("End date cannot be before start date"))
        elif end is not None and end < now:
            errors.append(ValidationError("End date must be in the future, an allocation is created active"))

        client = await self.session.get(Client, item.client_id)
        if client is None:
            errors.append(NotFoundError(f"Client {item.client_id} not found", {"client_id": item.client_id}))
        elif client.status != ClientStatus.ACTIVE:
            errors.append(ValidationError("Cannot create an allocation for an inactive client", {"client_id": item.client_id}))

        ref = item.asset_ref
        asset = await self.registry.load(ref)
        if asset is None:
            errors.append(NotFoundError(f"{ref.kind.value.capitalize()} {ref.id} not found", {"asset": str(ref)}))
        elif asset.status != AssetStatus.ACTIVE:
            errors.append(ValidationError(f"Cannot allocate inactive {ref.kind.value.lower()}", {"asset": str(ref)}))

        duplicate_stmt = select(ClientAssetAllocation.id).where(
            ClientAssetAllocation.client_id == item.client_id,
            ClientAssetAllocation.asset_kind == ref.kind,
            ClientAssetAllocation.asset_id == ref.id,
            active_clause(now),
            )
        if exclude_id is not None:
            duplicate_stmt = duplicate_stmt.where(ClientAssetAllocation.id != exclude_id)
        duplicate_id = (await self.session.execute(duplicate_stmt.limit(1))).scalar_one_or_none()
        if duplicate_id is not None:
            errors.append(ConflictError(
                "An active allocation already exists for this client and asset, end it first",
                {"allocation_id": duplicate_id},
                ))

        current_total: Optional[Decimal] = None
        new_total: Optional[Decimal] = None
        if item.allocation_type == AllocationType.PERCENTAGE:
            current_total = await self._active_percentage_total(ref, exclude_id=exclude_id)
            new_total = current_total + item.allocation_value
            if new_total > HUNDRED:
                errors.append(_over_allocated(current_total, item.allocation_value))
            elif new_total > self.config.percentage_warning_pct:
                warnings.append(
                    f"Total percentage allocation is high ({new_total}%). "
                    f"Current: {current_total}%, Requested: {item.allocation_value}%"
                    )

        overlap_stmt = select(ClientAssetAllocation.id).where(
            ClientAssetAllocation.client_id == item.client_id,
            ClientAssetAllocation.asset_kind == ref.kind,
            ClientAssetAllocation.asset_id == ref.id,
            ClientAssetAllocation.start_date <= start,
            or_(ClientAssetAllocation.end_date.is_(None), ClientAssetAllocation.end_date >= start),
            )
        if exclude_id is not None:
            overlap_stmt = overlap_stmt.where(ClientAssetAllocation.id != exclude_id)
        if (await self.session.execute(overlap_stmt.limit(1))).scalar_one_or_none() is not None:
            warnings.append("Allocation dates overlap with an existing allocation for this client and asset")

        return errors, warnings, current_total, new_total


def _allocation_not_found(allocation_id: int) -> NotFoundError:
    return NotFoundError(f"Allocation {allocation_id} not found", {"allocation_id": allocation_id})


def _over_allocated(current_total: Decimal, requested: Decimal) -> ValidationError:
    return ValidationError(
        f"Total percentage allocation would exceed 100%. Current total: {current_total}%, Requested: {requested}%",
        {"current_total": str(current_total), "requested": str(requested)},
        )


def _asset_identifier(asset) -> str:
    if asset is None:
        return "Unknown"
    if isinstance(asset, CustodyWallet):
        return asset.wallet_address
    return asset.account_number or asset.label or "Unknown"
