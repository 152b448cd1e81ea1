"""
Asset Registry for CustodyFolio.

Single entry point for both asset variants (custody wallets, traditional accounts):
- Registration and lookup through AssetRef (kind, id)
- Append-only balance history (asset_balances)
- Current balance = latest snapshot per token
- Current value in the reporting currency

Design Notes:
- The variant tables are reached through ASSET_TABLES; nothing outside this module
  branches on AssetKind to load an asset
- Balances are never updated or deleted. A second snapshot at the same instant for
  the same token is a conflict (UNIQUE constraint backs the pre-check for
  concurrent writers)
- Unpriced balances (value_usd NULL) count as 0 and are logged: a partial sync never
  fails a whole valuation
- set_status() does not check allocations. Deactivation must go through
  LifecycleGuard.deactivate()
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import (
    ASSET_TABLES,
    AssetBalance,
    AssetKind,
    AssetStatus,
    CustodyWallet,
    SyncStatus,
    TraditionalAccount,
    )
from backend.app.logging_config import get_logger
from backend.app.schemas.assets import (
    AssetView,
    ASAccountCreateItem,
    ASBalanceItem,
    ASWalletCreateItem,
    )
from backend.app.schemas.common import AssetRef, ZERO
from backend.app.services.errors import ConflictError, NotFoundError, ValidationError
from backend.app.services.result import ServiceResult
from backend.app.utils.currency_utils import normalize_currency_code, normalize_token
from backend.app.utils.datetime_utils import as_utc, utcnow

logger = get_logger(__name__)

AssetRow = Union[CustodyWallet, TraditionalAccount]


class AssetRegistry:
    """
    Service for asset identity, status and balances.

    All methods are async and expect an AsyncSession.
    The caller is responsible for commit/rollback.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def add_wallet(self, item: ASWalletCreateItem) -> ServiceResult[AssetView]:
        """Register a custody wallet; ConflictError if the address is already registered."""
        stmt = select(CustodyWallet.id).where(CustodyWallet.wallet_address == item.wallet_address)
        if (await self.session.execute(stmt)).scalar_one_or_none() is not None:
            return ServiceResult.fail(ConflictError(
                f"Wallet '{item.wallet_address}' is already registered",
                {"wallet_address": item.wallet_address},
                ))

        wallet = CustodyWallet(
            wallet_address=item.wallet_address,
            label=item.label,
            blockchain_provider=item.blockchain_provider,
            supported_chains=json.dumps(item.supported_chains) if item.supported_chains else None,
            notes=item.notes,
            )
        self.session.add(wallet)
        await self.session.flush()

        logger.info("Wallet registered", asset_kind=AssetKind.WALLET.value, asset_id=wallet.id)
        return ServiceResult.ok(AssetView.from_db_model(wallet))

    async def add_account(self, item: ASAccountCreateItem) -> ServiceResult[AssetView]:
        """Register a traditional account; ConflictError on a duplicate aggregator account ID."""
        if item.provider_account_id:
            stmt = select(TraditionalAccount.id).where(
                TraditionalAccount.open_finance_provider == item.open_finance_provider,
                TraditionalAccount.provider_account_id == item.provider_account_id,
                )
            if (await self.session.execute(stmt)).scalar_one_or_none() is not None:
                return ServiceResult.fail(ConflictError(
                    f"Account '{item.provider_account_id}' is already registered",
                    {"provider_account_id": item.provider_account_id},
                    ))

        account = TraditionalAccount(**item.model_dump())
        self.session.add(account)
        await self.session.flush()

        logger.info("Account registered", asset_kind=AssetKind.ACCOUNT.value, asset_id=account.id)
        return ServiceResult.ok(AssetView.from_db_model(account))

    # =========================================================================
    # LOOKUP
    # =========================================================================

    async def load(self, ref: AssetRef) -> Optional[AssetRow]:
        """Load the variant row behind ref, None if absent."""
        return await self.session.get(ASSET_TABLES[ref.kind], ref.id)

    async def get_asset(self, ref: AssetRef) -> ServiceResult[AssetView]:
        asset = await self.load(ref)
        if asset is None:
            return ServiceResult.fail(_asset_not_found(ref))
        return ServiceResult.ok(AssetView.from_db_model(asset))

    async def list_assets(
        self,
        kind: Optional[AssetKind] = None,
        status: Optional[AssetStatus] = None,
        ) -> List[AssetView]:
        """List assets of both variants (wallets first), optionally filtered."""
        kinds = [kind] if kind else list(ASSET_TABLES.keys())
        views: List[AssetView] = []
        for asset_kind in kinds:
            table = ASSET_TABLES[asset_kind]
            stmt = select(table).order_by(table.id)
            if status:
                stmt = stmt.where(table.status == status)
            result = await self.session.execute(stmt)
            views.extend(AssetView.from_db_model(row) for row in result.scalars().all())
        return views

    # =========================================================================
    # BALANCES
    # =========================================================================

    async def get_current_balances(self, ref: AssetRef) -> List[AssetBalance]:
        """
        Latest snapshot of every distinct token held by the asset.

        Returns:
            One AssetBalance per token, ordered by token
        """
        latest = (
            select(AssetBalance.token, func.max(AssetBalance.recorded_at).label("max_recorded_at"))
            .where(AssetBalance.asset_kind == ref.kind, AssetBalance.asset_id == ref.id)
            .group_by(AssetBalance.token)
            .subquery()
        )
        stmt = (
            select(AssetBalance)
            .join(latest, and_(
                AssetBalance.token == latest.c.token,
                AssetBalance.recorded_at == latest.c.max_recorded_at,
                ))
            .where(AssetBalance.asset_kind == ref.kind, AssetBalance.asset_id == ref.id)
            .order_by(AssetBalance.token)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_current_balance(self, ref: AssetRef, token: str) -> Optional[AssetBalance]:
        """Latest snapshot of one token, None if the asset never held it."""
        stmt = (
            select(AssetBalance)
            .where(
                AssetBalance.asset_kind == ref.kind,
                AssetBalance.asset_id == ref.id,
                AssetBalance.token == normalize_token(token),
                )
            .order_by(AssetBalance.recorded_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_balance_history(self, ref: AssetRef, token: Optional[str] = None, limit: int = 100) -> List[AssetBalance]:
        """Balance snapshots, most recent first."""
        stmt = select(AssetBalance).where(
            AssetBalance.asset_kind == ref.kind,
            AssetBalance.asset_id == ref.id,
            )
        if token:
            stmt = stmt.where(AssetBalance.token == normalize_token(token))
        stmt = stmt.order_by(AssetBalance.recorded_at.desc(), AssetBalance.token).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def record_balance(self, ref: AssetRef, item: ASBalanceItem) -> ServiceResult[AssetBalance]:
        """
        Append a balance snapshot.

        Fails with:
        - NotFoundError: unknown asset
        - ValidationError: account balance whose token is not an ISO 4217 currency
        - ConflictError: a snapshot for the same token and instant already exists
        """
        asset = await self.load(ref)
        if asset is None:
            return ServiceResult.fail(_asset_not_found(ref))

        token = item.token
        if ref.kind == AssetKind.ACCOUNT:
            try:
                token = normalize_currency_code(token)
            except ValueError as e:
                return ServiceResult.fail(ValidationError(str(e), {"token": item.token}))

        recorded_at = as_utc(item.recorded_at) if item.recorded_at else utcnow()

        stmt = select(AssetBalance.id).where(
            AssetBalance.asset_kind == ref.kind,
            AssetBalance.asset_id == ref.id,
            AssetBalance.token == token,
            AssetBalance.recorded_at == recorded_at,
            )
        if (await self.session.execute(stmt)).scalar_one_or_none() is not None:
            return ServiceResult.fail(ConflictError(
                f"A {token} balance is already recorded at {recorded_at.isoformat()} for {ref}",
                {"asset": str(ref), "token": token, "recorded_at": recorded_at.isoformat()},
                ))

        balance = AssetBalance(
            asset_kind=ref.kind,
            asset_id=ref.id,
            token=token,
            chain=item.chain,
            balance_type=item.balance_type,
            quantity=item.quantity,
            value_usd=item.value_usd,
            recorded_at=recorded_at,
            )
        self.session.add(balance)
        await self.session.flush()
        return ServiceResult.ok(balance)

    async def value_usd(self, ref: AssetRef) -> Decimal:
        """
        Current value of the asset: sum of the latest value_usd of each token.

        Tokens without a price count as 0 (logged). An asset without balances is worth 0.
        """
        return sum_value_usd(ref, await self.get_current_balances(ref))

    # =========================================================================
    # STATUS
    # =========================================================================

    async def set_status(self, ref: AssetRef, status: AssetStatus) -> ServiceResult[AssetView]:
        """Write the lifecycle status (no allocation check, see LifecycleGuard)."""
        asset = await self.load(ref)
        if asset is None:
            return ServiceResult.fail(_asset_not_found(ref))
        if asset.status != status:
            previous = asset.status
            asset.status = status
            await self.session.flush()
            logger.info("Asset status changed", asset=str(ref), old_status=previous.value, new_status=status.value)
        return ServiceResult.ok(AssetView.from_db_model(asset))

    async def mark_sync(
        self,
        ref: AssetRef,
        status: SyncStatus,
        error_message: Optional[str] = None,
        synced_at: Optional[datetime] = None,
        ) -> ServiceResult[AssetView]:
        """
        Record the outcome of a sync.

        last_sync_at only moves on SUCCESS, so stale-sync detection keeps seeing
        the last good sync while failures repeat.
        """
        asset = await self.load(ref)
        if asset is None:
            return ServiceResult.fail(_asset_not_found(ref))

        asset.sync_status = status
        if status == SyncStatus.SUCCESS:
            asset.last_sync_at = as_utc(synced_at) if synced_at else utcnow()
            asset.sync_error_message = None
        else:
            asset.sync_error_message = error_message
        await self.session.flush()
        return ServiceResult.ok(AssetView.from_db_model(asset))


def sum_value_usd(ref: AssetRef, balances: List[AssetBalance]) -> Decimal:
    """Sum value_usd of current balances, unpriced ones counted as 0 with a warning."""
    total = ZERO
    for balance in balances:
        if balance.value_usd is None:
            logger.warning(
                "Balance without price counted as zero",
                asset=str(ref),
                token=balance.token,
                recorded_at=str(balance.recorded_at),
                )
            continue
        total += balance.value_usd
    return total


def _asset_not_found(ref: AssetRef) -> NotFoundError:
    return NotFoundError(f"{ref.kind.value.capitalize()} {ref.id} not found", {"asset": str(ref)})
