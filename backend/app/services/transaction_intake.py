"""
Transaction intake for CustodyFolio.

Records movements of funds on an asset, pushed by sync collaborators or entered by
hand. Transactions never touch balances: the current balance of an asset only comes
from balance snapshots. A priced movement above the configured threshold raises a
LARGE_TRANSACTION alert in the same transaction.

Inactive assets do not take new transactions, like they do not take syncs.
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import AssetKind, AssetStatus, AssetTransaction
from backend.app.logging_config import get_logger
from backend.app.schemas.common import AssetRef
from backend.app.schemas.system import ConfigSnapshot
from backend.app.schemas.transactions import TXCreateItem, TXReadItem, TXRecordResponse
from backend.app.services.alert_engine import AlertEngine
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.errors import ConflictError, NotFoundError, ValidationError
from backend.app.services.result import ServiceResult
from backend.app.utils.currency_utils import normalize_currency_code
from backend.app.utils.datetime_utils import as_utc, utcnow

logger = get_logger(__name__)


class TransactionIntakeService:
    """Record and list asset transactions. The caller is responsible for commit/rollback."""

    def __init__(self, session: AsyncSession, config: Optional[ConfigSnapshot] = None):
        self.session = session
        self.registry = AssetRegistry(session)
        self.alerts = AlertEngine(session, config)

    async def record(self, ref: AssetRef, item: TXCreateItem) -> ServiceResult[TXRecordResponse]:
        """
        Append a transaction and raise LARGE_TRANSACTION when it is above threshold.

        Fails with:
        - NotFoundError: unknown asset
        - ValidationError: inactive asset, account transaction in a non ISO 4217 token
        - ConflictError: tx_hash already recorded on this asset
        """
        asset = await self.registry.load(ref)
        if asset is None:
            return ServiceResult.fail(NotFoundError(f"{ref.kind.value.capitalize()} {ref.id} not found", {"asset": str(ref)}))
        if asset.status != AssetStatus.ACTIVE:
            return ServiceResult.fail(ValidationError(f"{ref} is inactive and cannot take transactions", {"asset": str(ref)}))

        token = item.token
        if ref.kind == AssetKind.ACCOUNT:
            try:
                token = normalize_currency_code(token)
            except ValueError as e:
                return ServiceResult.fail(ValidationError(str(e), {"token": item.token}))

        if item.tx_hash is not None:
            stmt = select(AssetTransaction.id).where(
                AssetTransaction.asset_kind == ref.kind,
                AssetTransaction.asset_id == ref.id,
                AssetTransaction.tx_hash == item.tx_hash,
                )
            existing_id = (await self.session.execute(stmt)).scalar_one_or_none()
            if existing_id is not None:
                return ServiceResult.fail(ConflictError(
                    f"Transaction {item.tx_hash} is already recorded for {ref}",
                    {"asset": str(ref), "transaction_id": existing_id},
                    ))

        transaction = AssetTransaction(
            asset_kind=ref.kind,
            asset_id=ref.id,
            direction=item.direction,
            token=token,
            chain=item.chain,
            tx_hash=item.tx_hash,
            amount=item.amount,
            amount_usd=item.amount_usd,
            category=item.category,
            description=item.description,
            is_manual_entry=item.is_manual_entry,
            transaction_date=as_utc(item.transaction_date) if item.transaction_date else utcnow(),
            )
        self.session.add(transaction)
        await self.session.flush()

        logger.info(
            "Transaction recorded",
            transaction_id=transaction.id,
            asset=str(ref),
            direction=transaction.direction.value,
            token=token,
            manual=transaction.is_manual_entry,
            )

        alert = await self.alerts.raise_large_transaction(transaction)
        if not alert.success:
            return ServiceResult.fail(alert.error)
        return ServiceResult.ok(TXRecordResponse(
            transaction=TXReadItem.from_db_model(transaction),
            alert_id=alert.value.id if alert.value is not None else None,
            ))

    async def list_for_asset(self, ref: AssetRef, limit: int = 100) -> List[AssetTransaction]:
        """Transactions of an asset, most recent transaction_date first."""
        stmt = (
            select(AssetTransaction)
            .where(AssetTransaction.asset_kind == ref.kind, AssetTransaction.asset_id == ref.id)
            .order_by(AssetTransaction.transaction_date.desc(), AssetTransaction.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
