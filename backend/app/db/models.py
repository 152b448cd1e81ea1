"""
Database models for CustodyFolio.

All models use SQLModel (SQLAlchemy 2.x) with the following conventions:
- Decimal columns use Numeric(18, 6) for money/percentages, Numeric(38, 18) for token quantities
- Timestamps in UTC (created_at, updated_at, recorded_at)
- Enum values are stored as their (upper case) names, name == value
- Foreign keys enforced with PRAGMA foreign_keys=ON

Assets come in two variants (custody wallets and traditional accounts) that live in
separate tables. Everything that needs to point at "an asset" does it with the pair
(asset_kind, asset_id), never with a foreign key, so neither the ledger nor the alerts
depend on a concrete variant.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Column,
    UniqueConstraint,
    Index,
    Numeric,
    Text,
    DateTime,
    event,
    CheckConstraint,
    )
from sqlmodel import Field, SQLModel

from backend.app.utils.datetime_utils import utcnow


# ============================================================================
# ENUMS
# ============================================================================

class ClientStatus(str, Enum):
    """
    Client status.

    Owned by the client-management collaborator. The core only reads it:
    allocations can be created for ACTIVE clients only.
    """
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AssetKind(str, Enum):
    """
    Asset variant discriminator.

    - WALLET: on-chain custody wallet (custody_wallets table), balances per token
    - ACCOUNT: traditional financial account (traditional_accounts table), balances per currency

    Impact: (asset_kind, asset_id) is the reference used by allocations, balances and alerts.
    """
    WALLET = "WALLET"
    ACCOUNT = "ACCOUNT"


class AssetStatus(str, Enum):
    """
    Asset lifecycle status.

    - ACTIVE: asset is synced, valued and can receive new allocations
    - INACTIVE: soft-deleted. Kept for history, rejected by new allocations.

    Assets are never hard-deleted. The only path to INACTIVE goes through the
    lifecycle guard, which refuses while active allocations reference the asset.
    """
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class SyncStatus(str, Enum):
    """Outcome of the last sync of an asset, written by sync collaborators."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class AllocationType(str, Enum):
    """
    How an allocation claims a share of an asset.

    - PERCENTAGE: allocation_value is a percentage (0 < value <= 100) of the asset value.
      The active PERCENTAGE allocations of one asset sum to at most 100 across all clients.
    - FIXED_AMOUNT: allocation_value is an amount in the reporting currency.
      Valued as min(allocation_value, asset value): never more than the asset holds.
    """
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class TransactionDirection(str, Enum):
    """
    Direction of a movement on an asset.

    - IN: funds received
    - OUT: funds sent
    - INTERNAL: move between chains or sub-accounts of the same asset
    """
    IN = "IN"
    OUT = "OUT"
    INTERNAL = "INTERNAL"


class AlertType(str, Enum):
    """
    Rebalancing alert type.

    - ALLOCATION_DRIFT: realized allocation percentage drifted from its target
    - LARGE_TRANSACTION: recorded movement above the configured USD threshold
    - PRICE_CHANGE: unit price of a held token moved more than the configured
      percentage between two syncs
    - BALANCE_LOW: asset value below the configured threshold
    - SYNC_FAILURE: a sync collaborator failed or an asset has not synced recently
    - OTHER: anything else raised by collaborators
    """
    ALLOCATION_DRIFT = "ALLOCATION_DRIFT"
    LARGE_TRANSACTION = "LARGE_TRANSACTION"
    PRICE_CHANGE = "PRICE_CHANGE"
    BALANCE_LOW = "BALANCE_LOW"
    SYNC_FAILURE = "SYNC_FAILURE"
    OTHER = "OTHER"


class AlertSeverity(str, Enum):
    """Alert severity, from LOW to CRITICAL."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    """
    Rebalancing alert state machine.

    Transitions:
    - NEW -> ACKNOWLEDGED
    - NEW | ACKNOWLEDGED -> RESOLVED
    - NEW | ACKNOWLEDGED -> DISMISSED

    RESOLVED and DISMISSED are terminal. NEW and ACKNOWLEDGED are "open":
    an open alert blocks the creation of a duplicate for the same subject.
    """
    NEW = "NEW"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


OPEN_ALERT_STATUSES = (AlertStatus.NEW, AlertStatus.ACKNOWLEDGED)
TERMINAL_ALERT_STATUSES = (AlertStatus.RESOLVED, AlertStatus.DISMISSED)


# ============================================================================
# MODELS
# ============================================================================


class Client(SQLModel, table=True):
    """
    Client owning allocations.

    Created and updated by the client-management collaborator.
    Deleting a client requires ending its allocations first (not handled here).
    """
    __tablename__ = "clients"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    email: str = Field(unique=True, index=True, nullable=False)
    document: Optional[str] = Field(default=None)
    phone_number: Optional[str] = Field(default=None)
    status: ClientStatus = Field(default=ClientStatus.ACTIVE, nullable=False)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class CustodyWallet(SQLModel, table=True):
    """
    On-chain custody wallet (AssetKind.WALLET).

    supported_chains: JSON list of chain names (e.g. ["eth", "polygon"]).
    Balances are stored in asset_balances with asset_kind=WALLET, one row per token and sync.
    """
    __tablename__ = "custody_wallets"

    id: Optional[int] = Field(default=None, primary_key=True)
    wallet_address: str = Field(unique=True, index=True, nullable=False)
    label: Optional[str] = Field(default=None)
    blockchain_provider: str = Field(default="Moralis", nullable=False)
    supported_chains: Optional[str] = Field(default=None, sa_column=Column(Text))
    status: AssetStatus = Field(default=AssetStatus.ACTIVE, nullable=False)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))

    last_sync_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    sync_status: Optional[SyncStatus] = Field(default=None)
    sync_error_message: Optional[str] = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class TraditionalAccount(SQLModel, table=True):
    """
    Traditional financial account (AssetKind.ACCOUNT) linked through an open-finance aggregator.

    provider_item_id / provider_account_id identify the account at the aggregator.
    Balances are stored in asset_balances with asset_kind=ACCOUNT, one row per currency,
    balance_type and sync.
    """
    __tablename__ = "traditional_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    provider_item_id: Optional[str] = Field(default=None, index=True)
    provider_account_id: Optional[str] = Field(default=None)
    account_type: Optional[str] = Field(default=None)
    institution_name: Optional[str] = Field(default=None)
    account_number: Optional[str] = Field(default=None)
    label: Optional[str] = Field(default=None)
    open_finance_provider: str = Field(default="Pluggy", nullable=False)
    status: AssetStatus = Field(default=AssetStatus.ACTIVE, nullable=False)

    last_sync_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    sync_status: Optional[SyncStatus] = Field(default=None)
    sync_error_message: Optional[str] = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class AssetBalance(SQLModel, table=True):
    """
    Balance snapshot of one token/currency on one asset.

    Append-only policy:
    - One row per (asset, token) per sync, never updated or deleted
    - The "current" balance of a token is its row with the latest recorded_at
    - UNIQUE(asset_kind, asset_id, token, recorded_at) serializes concurrent syncs of
      the same asset: two writers cannot both record the same instant

    Fields:
    - token: token symbol (wallets, e.g. "ETH") or ISO 4217 currency (accounts, e.g. "BRL")
    - chain: chain name, wallets only
    - balance_type: AVAILABLE / CURRENT / ..., accounts only
    - value_usd: value in the reporting currency, NULL when the sync could not price it
    """
    __tablename__ = "asset_balances"
    __table_args__ = (
        UniqueConstraint("asset_kind", "asset_id", "token", "recorded_at", name="uq_asset_balances_asset_token_instant"),
        Index("idx_asset_balances_asset_token_recorded", "asset_kind", "asset_id", "token", "recorded_at"),
        )

    id: Optional[int] = Field(default=None, primary_key=True)

    asset_kind: AssetKind = Field(nullable=False)
    asset_id: int = Field(nullable=False)
    token: str = Field(nullable=False)
    chain: Optional[str] = Field(default=None)
    balance_type: Optional[str] = Field(default=None)

    quantity: Decimal = Field(sa_column=Column(Numeric(38, 18), nullable=False))
    value_usd: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(18, 6)))

    recorded_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)


class AssetTransaction(SQLModel, table=True):
    """
    Movement of funds on an asset, pushed by sync collaborators or entered by hand.

    Append-only: rows are never updated or deleted.

    - tx_hash: on-chain hash or provider transaction id, unique per asset when present
    - amount_usd: value in the reporting currency, NULL when unpriced. Movements above
      the configured threshold raise a LARGE_TRANSACTION alert.
    """
    __tablename__ = "asset_transactions"
    __table_args__ = (
        UniqueConstraint("asset_kind", "asset_id", "tx_hash", name="uq_asset_transactions_asset_hash"),
        CheckConstraint("amount > 0", name="ck_asset_transactions_amount_positive"),
        Index("idx_asset_transactions_asset_date", "asset_kind", "asset_id", "transaction_date"),
        )

    id: Optional[int] = Field(default=None, primary_key=True)

    asset_kind: AssetKind = Field(nullable=False)
    asset_id: int = Field(nullable=False)
    direction: TransactionDirection = Field(nullable=False)
    token: str = Field(nullable=False)
    chain: Optional[str] = Field(default=None)
    tx_hash: Optional[str] = Field(default=None)

    amount: Decimal = Field(sa_column=Column(Numeric(38, 18), nullable=False))
    amount_usd: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(18, 6)))

    category: Optional[str] = Field(default=None)
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    is_manual_entry: bool = Field(default=False, nullable=False)
    transaction_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class ClientAssetAllocation(SQLModel, table=True):
    """
    Time-bounded claim of a client on a share of an asset.

    Reference to the asset is weak: (asset_kind, asset_id), no foreign key, because the
    two asset variants live in separate tables.

    Lifecycle:
    - Active while end_date IS NULL or end_date >= now
    - Ended by setting end_date (soft end, preferred)
    - Hard delete exists only to fix data entry errors and is logged

    Invariant: for one asset, the active PERCENTAGE allocation_value sum is <= 100
    (validated on create and update by AllocationLedger).
    """
    __tablename__ = "client_asset_allocations"
    __table_args__ = (
        CheckConstraint("allocation_value > 0", name="ck_allocations_value_positive"),
        Index("idx_allocations_asset", "asset_kind", "asset_id", "end_date"),
        Index("idx_allocations_client_start", "client_id", "start_date"),
        )

    id: Optional[int] = Field(default=None, primary_key=True)

    client_id: int = Field(foreign_key="clients.id", nullable=False, index=True)
    asset_kind: AssetKind = Field(nullable=False)
    asset_id: int = Field(nullable=False)

    allocation_type: AllocationType = Field(nullable=False)
    allocation_value: Decimal = Field(sa_column=Column(Numeric(18, 6), nullable=False))

    start_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    end_date: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class RebalancingAlert(SQLModel, table=True):
    """
    Rebalancing alert (see AlertStatus for the state machine).

    - client_id: NULL for system-wide alerts (sync failures, low balances)
    - asset_kind / asset_id: subject asset, used to de-duplicate open alerts per
      (alert_type, client_id, asset)
    - alert_data: opaque JSON payload (drift figures, sync error, thresholds)
    - resolution_notes: free text written by resolve()

    Alerts are never physically deleted.
    """
    __tablename__ = "rebalancing_alerts"
    __table_args__ = (
        Index("idx_alerts_dedup", "alert_type", "client_id", "asset_kind", "asset_id", "status"),
        )

    id: Optional[int] = Field(default=None, primary_key=True)

    client_id: Optional[int] = Field(default=None, foreign_key="clients.id", index=True)
    asset_kind: Optional[AssetKind] = Field(default=None)
    asset_id: Optional[int] = Field(default=None)

    alert_type: AlertType = Field(nullable=False)
    severity: AlertSeverity = Field(nullable=False)
    message: str = Field(sa_column=Column(Text, nullable=False))
    alert_data: Optional[str] = Field(default=None, sa_column=Column(Text))
    status: AlertStatus = Field(default=AlertStatus.NEW, nullable=False, index=True)
    resolution_notes: Optional[str] = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    acknowledged_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    resolved_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    dismissed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class SystemConfiguration(SQLModel, table=True):
    """
    Key/value runtime settings (drift threshold, low balance threshold, ...).

    Never read ad hoc: services receive a ConfigSnapshot built once per request
    by backend.app.services.system_config.load_config_snapshot().
    """
    __tablename__ = "system_configurations"

    key: str = Field(primary_key=True)
    value: str = Field(nullable=False)
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


ASSET_TABLES = {
    AssetKind.WALLET: CustodyWallet,
    AssetKind.ACCOUNT: TraditionalAccount,
    }


# ============================================================================
# EVENT LISTENERS
# ============================================================================


@event.listens_for(Client, "before_update")
@event.listens_for(CustodyWallet, "before_update")
@event.listens_for(TraditionalAccount, "before_update")
@event.listens_for(ClientAssetAllocation, "before_update")
@event.listens_for(RebalancingAlert, "before_update")
@event.listens_for(SystemConfiguration, "before_update")
def receive_before_update(mapper, connection, target):
    """Update updated_at timestamp on update."""
    target.updated_at = utcnow()
