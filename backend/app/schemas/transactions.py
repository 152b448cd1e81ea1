"""
Transaction (TX) schemas.

Movements of funds on an asset. Transactions do not change balances (balances come
from syncs only); they are the audit of what moved, and large ones raise a
LARGE_TRANSACTION alert.

**Naming Convention**:
- TX prefix: Transaction schemas
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from backend.app.db.models import AssetKind, AssetTransaction, TransactionDirection
from backend.app.utils.currency_utils import normalize_token
from backend.app.utils.datetime_utils import as_utc, parse_ISO_datetime


class TXCreateItem(BaseModel):
    """One movement to record on an asset. transaction_date defaults to now."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    direction: TransactionDirection
    token: str = Field(..., description="Token symbol (wallet) or ISO 4217 currency (account)")
    amount: Decimal = Field(..., gt=0, description="Moved quantity")
    amount_usd: Optional[Decimal] = Field(default=None, ge=0, description="Value in reporting currency")
    chain: Optional[str] = None
    tx_hash: Optional[str] = Field(default=None, min_length=1, description="On-chain hash or provider id")
    category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    is_manual_entry: bool = False
    transaction_date: Optional[datetime] = None

    @field_validator("token")
    @classmethod
    def _normalize_token(cls, v: str) -> str:
        return normalize_token(v)

    @field_validator("chain")
    @classmethod
    def _normalize_chain(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else None

    @field_validator("transaction_date", mode="before")
    @classmethod
    def _parse_date(cls, v):
        if v is None:
            return v
        return parse_ISO_datetime(v)


class TXReadItem(BaseModel):
    id: int
    asset_kind: AssetKind
    asset_id: int
    direction: TransactionDirection
    token: str
    chain: Optional[str] = None
    tx_hash: Optional[str] = None
    amount: Decimal
    amount_usd: Optional[Decimal] = None
    category: Optional[str] = None
    description: Optional[str] = None
    is_manual_entry: bool
    transaction_date: datetime
    created_at: datetime

    @classmethod
    def from_db_model(cls, transaction: AssetTransaction) -> 'TXReadItem':
        return cls(
            id=transaction.id,
            asset_kind=transaction.asset_kind,
            asset_id=transaction.asset_id,
            direction=transaction.direction,
            token=transaction.token,
            chain=transaction.chain,
            tx_hash=transaction.tx_hash,
            amount=transaction.amount,
            amount_usd=transaction.amount_usd,
            category=transaction.category,
            description=transaction.description,
            is_manual_entry=transaction.is_manual_entry,
            transaction_date=as_utc(transaction.transaction_date),
            created_at=as_utc(transaction.created_at),
            )


class TXRecordResponse(BaseModel):
    transaction: TXReadItem
    alert_id: Optional[int] = Field(default=None, description="LARGE_TRANSACTION alert raised for this movement")
