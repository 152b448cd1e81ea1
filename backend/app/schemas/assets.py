"""
Asset (AS) schemas.

DTOs for the two asset variants (custody wallets and traditional accounts), their
balance snapshots and the sync results pushed by sync collaborators.

**Naming Convention**:
- AS prefix: Asset-related schemas
- Item suffix: Single item in a list (e.g., ASWalletCreateItem)

**Design Notes**:
- AssetView is the variant-independent shape (identity + status + sync state)
  returned for both wallets and accounts
- supported_chains is List[str] in schemas, stored as JSON text in DB
- Token symbols are normalized upper case; for accounts the token must be an
  ISO 4217 currency (checked by the registry, which knows the asset kind)
- All numeric fields use Decimal
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Union

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from backend.app.db.models import (
    AssetKind,
    AssetStatus,
    SyncStatus,
    CustodyWallet,
    TraditionalAccount,
    AssetBalance,
    )
from backend.app.schemas.common import AssetRef
from backend.app.utils.currency_utils import normalize_token
from backend.app.utils.datetime_utils import as_utc, parse_ISO_datetime


def _parse_optional_datetime(v):
    if v is None:
        return v
    return parse_ISO_datetime(v)


# =============================================================================
# ASSET CREATION
# =============================================================================

class ASWalletCreateItem(BaseModel):
    """Register a custody wallet."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    wallet_address: str = Field(..., min_length=1, max_length=128, description="On-chain address")
    label: Optional[str] = Field(default=None, max_length=200)
    blockchain_provider: str = Field(default="Moralis", min_length=1, description="Blockchain data provider name")
    supported_chains: Optional[List[str]] = Field(default=None, description="Chains monitored for this wallet")
    notes: Optional[str] = None

    @field_validator("supported_chains", mode="before")
    @classmethod
    def _normalize_chains(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = v.split(",")
        chains = [str(c).strip().lower() for c in v if str(c).strip()]
        return chains or None


class ASAccountCreateItem(BaseModel):
    """Register a traditional account linked through an open-finance aggregator."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    provider_item_id: Optional[str] = Field(default=None, description="Aggregator item (connection) ID")
    provider_account_id: Optional[str] = Field(default=None, description="Aggregator account ID")
    account_type: Optional[str] = Field(default=None, description="CHECKING, SAVINGS, INVESTMENT, ...")
    institution_name: Optional[str] = None
    account_number: Optional[str] = None
    label: Optional[str] = Field(default=None, max_length=200)
    open_finance_provider: str = Field(default="Pluggy", min_length=1)


# =============================================================================
# ASSET READ
# =============================================================================

class AssetView(BaseModel):
    """
    Identity, status and sync state of an asset, whatever its variant.

    display_name is the wallet label/address or the account label/institution.
    """
    kind: AssetKind
    id: int
    display_name: str
    status: AssetStatus
    provider: str
    last_sync_at: Optional[datetime] = None
    sync_status: Optional[SyncStatus] = None
    sync_error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    # Variant-specific details
    wallet_address: Optional[str] = None
    supported_chains: Optional[List[str]] = None
    institution_name: Optional[str] = None
    account_type: Optional[str] = None

    @property
    def ref(self) -> AssetRef:
        return AssetRef(kind=self.kind, id=self.id)

    @property
    def is_active(self) -> bool:
        return self.status == AssetStatus.ACTIVE

    @classmethod
    def from_db_model(cls, asset: Union[CustodyWallet, TraditionalAccount]) -> 'AssetView':
        """
        Build the shared view from either variant table row.

        Args:
            asset: CustodyWallet or TraditionalAccount instance

        Returns:
            AssetView DTO
        """
        common = dict(
            id=asset.id,
            status=asset.status,
            last_sync_at=as_utc(asset.last_sync_at),
            sync_status=asset.sync_status,
            sync_error_message=asset.sync_error_message,
            created_at=as_utc(asset.created_at),
            )
        if isinstance(asset, CustodyWallet):
            chains = json.loads(asset.supported_chains) if asset.supported_chains else None
            return cls(
                kind=AssetKind.WALLET,
                display_name=asset.label or asset.wallet_address,
                provider=asset.blockchain_provider,
                wallet_address=asset.wallet_address,
                supported_chains=chains,
                **common,
                )
        display_name = asset.label or asset.institution_name or f"Account {asset.id}"
        return cls(
            kind=AssetKind.ACCOUNT,
            display_name=display_name,
            provider=asset.open_finance_provider,
            institution_name=asset.institution_name,
            account_type=asset.account_type,
            **common,
            )


class ASQueryParams(BaseModel):
    """Filters for asset listing."""
    model_config = ConfigDict(extra="forbid")

    kind: Optional[AssetKind] = Field(default=None, description="Filter by variant")
    status: Optional[AssetStatus] = Field(default=None, description="Filter by status")


# =============================================================================
# BALANCES
# =============================================================================

class ASBalanceItem(BaseModel):
    """
    One balance snapshot to record on an asset.

    recorded_at defaults to now; value_usd None means the sync could not price
    the token (counted as 0 in valuations, with a warning).
    """
    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., description="Token symbol (wallet) or ISO 4217 currency (account)")
    quantity: Decimal = Field(..., ge=0, description="Held quantity")
    value_usd: Optional[Decimal] = Field(default=None, ge=0, description="Value in reporting currency")
    chain: Optional[str] = Field(default=None, description="Chain name (wallets only)")
    balance_type: Optional[str] = Field(default=None, description="AVAILABLE, CURRENT, ... (accounts only)")
    recorded_at: Optional[datetime] = Field(default=None, description="Snapshot instant (default: now)")

    @field_validator("token")
    @classmethod
    def _normalize_token(cls, v: str) -> str:
        return normalize_token(v)

    @field_validator("recorded_at", mode="before")
    @classmethod
    def _parse_recorded_at(cls, v):
        return _parse_optional_datetime(v)


class ASBalanceReadItem(BaseModel):
    """Balance snapshot as stored."""
    id: int
    asset_kind: AssetKind
    asset_id: int
    token: str
    chain: Optional[str] = None
    balance_type: Optional[str] = None
    quantity: Decimal
    value_usd: Optional[Decimal] = None
    recorded_at: datetime

    @classmethod
    def from_db_model(cls, balance: AssetBalance) -> 'ASBalanceReadItem':
        return cls(
            id=balance.id,
            asset_kind=balance.asset_kind,
            asset_id=balance.asset_id,
            token=balance.token,
            chain=balance.chain,
            balance_type=balance.balance_type,
            quantity=balance.quantity,
            value_usd=balance.value_usd,
            recorded_at=as_utc(balance.recorded_at),
            )


class ASAssetValue(BaseModel):
    """Current value of an asset: latest snapshot per token and their sum."""
    asset: AssetView
    value_usd: Decimal
    balances: List[ASBalanceReadItem] = Field(default_factory=list)


# =============================================================================
# SYNC INTAKE
# =============================================================================

class ASSyncResultItem(BaseModel):
    """
    Outcome of one sync run, pushed by a sync collaborator.

    - status SUCCESS: balances are recorded (all with the same recorded_at)
    - status FAILED: error_message is required, a SYNC_FAILURE alert is raised
    """
    model_config = ConfigDict(extra="forbid")

    status: SyncStatus
    balances: List[ASBalanceItem] = Field(default_factory=list)
    error_message: Optional[str] = Field(default=None, max_length=2000)
    synced_at: Optional[datetime] = Field(default=None, description="Sync instant (default: now)")

    @field_validator("synced_at", mode="before")
    @classmethod
    def _parse_synced_at(cls, v):
        return _parse_optional_datetime(v)

    @field_validator("error_message")
    @classmethod
    def _strip_error(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _check_failure_has_message(self):
        if self.status == SyncStatus.FAILED and not self.error_message:
            raise ValueError("error_message is required when status is FAILED")
        return self


class ASSyncResponse(BaseModel):
    """Result of applying a sync."""
    asset: AssetView
    recorded_count: int = 0
    alert_id: Optional[int] = Field(default=None, description="SYNC_FAILURE alert raised or refreshed")
    price_alert_ids: List[int] = Field(default_factory=list, description="PRICE_CHANGE alerts raised or refreshed")
