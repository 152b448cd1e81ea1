"""
Allocation (AL) schemas.

DTOs for the allocation ledger: time-bounded claims of clients on shares of assets.

**Naming Convention**:
- AL prefix: Allocation-related schemas
- Item suffix: Single item in a list (e.g., ALCreateItem)

**Design Notes**:
- allocation_value bounds (> 0, <= 100 for PERCENTAGE) are NOT enforced here: the
  ledger checks them and returns a ValidationError, so API and CLI callers get the
  same error whatever entry point they use
- All datetimes are normalized to aware UTC
- ALValidationResult is a dry run: errors block creation, warnings do not
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from backend.app.db.models import AssetKind, AllocationType, ClientAssetAllocation
from backend.app.schemas.common import AssetRef
from backend.app.utils.datetime_utils import parse_ISO_datetime, as_utc, utcnow


def _parse_optional_datetime(v):
    if v is None:
        return v
    return parse_ISO_datetime(v)


# =============================================================================
# CREATE / UPDATE / END
# =============================================================================

class ALCreateItem(BaseModel):
    """
    New allocation of a client on an asset.

    start_date defaults to now. end_date may be set in the future (scheduled end).
    """
    model_config = ConfigDict(extra="forbid")

    client_id: int = Field(..., gt=0)
    asset_kind: AssetKind
    asset_id: int = Field(..., gt=0)
    allocation_type: AllocationType
    allocation_value: Decimal = Field(..., description="Percentage (0-100] or amount in reporting currency")
    start_date: Optional[datetime] = Field(default=None, description="Default: now")
    end_date: Optional[datetime] = Field(default=None, description="Optional scheduled end")
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, v):
        return _parse_optional_datetime(v)

    @property
    def asset_ref(self) -> AssetRef:
        return AssetRef(kind=self.asset_kind, id=self.asset_id)

    def effective_start(self) -> datetime:
        return as_utc(self.start_date) if self.start_date else utcnow()


class ALValidateItem(ALCreateItem):
    """Dry-run validation request; exclude_allocation_id skips one allocation (update scenarios)."""
    exclude_allocation_id: Optional[int] = Field(default=None, gt=0)


class ALUpdateItem(BaseModel):
    """
    Partial update of an active allocation.

    Asset and client cannot change: end the allocation and create a new one instead.
    """
    model_config = ConfigDict(extra="forbid")

    allocation_type: Optional[AllocationType] = None
    allocation_value: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("start_date", mode="before")
    @classmethod
    def _parse_start(cls, v):
        return _parse_optional_datetime(v)

    @model_validator(mode="after")
    def _check_not_empty(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ALEndItem(BaseModel):
    """End an allocation; end_date defaults to now."""
    model_config = ConfigDict(extra="forbid")

    end_date: Optional[datetime] = None

    @field_validator("end_date", mode="before")
    @classmethod
    def _parse_end(cls, v):
        return _parse_optional_datetime(v)


# =============================================================================
# READ / QUERY
# =============================================================================

class ALReadItem(BaseModel):
    """Allocation as stored, plus its derived active flag."""
    id: int
    client_id: int
    asset_kind: AssetKind
    asset_id: int
    allocation_type: AllocationType
    allocation_value: Decimal
    start_date: datetime
    end_date: Optional[datetime] = None
    notes: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_db_model(cls, allocation: ClientAssetAllocation, now: Optional[datetime] = None) -> 'ALReadItem':
        """
        Create ALReadItem from database ClientAssetAllocation model.

        Args:
            allocation: ClientAssetAllocation instance
            now: reference instant for is_active (default: now)
        """
        now = now or utcnow()
        end_date = as_utc(allocation.end_date) if allocation.end_date else None
        return cls(
            id=allocation.id,
            client_id=allocation.client_id,
            asset_kind=allocation.asset_kind,
            asset_id=allocation.asset_id,
            allocation_type=allocation.allocation_type,
            allocation_value=allocation.allocation_value,
            start_date=as_utc(allocation.start_date),
            end_date=end_date,
            notes=allocation.notes,
            is_active=end_date is None or end_date >= now,
            created_at=as_utc(allocation.created_at),
            updated_at=as_utc(allocation.updated_at),
            )


class ALQueryParams(BaseModel):
    """
    Query parameters for filtering allocations.

    Used by GET /api/v1/allocations endpoint.
    """
    model_config = ConfigDict(extra="forbid")

    client_id: Optional[int] = Field(default=None, gt=0, description="Filter by client")
    asset_kind: Optional[AssetKind] = Field(default=None, description="Filter by asset variant")
    asset_id: Optional[int] = Field(default=None, gt=0, description="Filter by asset")
    active_only: bool = Field(default=False, description="Only allocations active now")

    limit: int = Field(default=50, ge=1, le=1000, description="Max results")
    offset: int = Field(default=0, ge=0, description="Offset for pagination")


class ALListResponse(BaseModel):
    """Page of allocations."""
    items: List[ALReadItem]
    total_count: int
    limit: int
    offset: int


# =============================================================================
# VALIDATION / CONFLICTS
# =============================================================================

class ALValidationResult(BaseModel):
    """Outcome of a dry-run validation."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    current_total_percentage: Optional[Decimal] = Field(default=None, description="Active PERCENTAGE sum on the asset")
    new_total_percentage: Optional[Decimal] = Field(default=None, description="Sum including the requested value")


class ALConflictingAllocation(BaseModel):
    allocation_id: int
    client_id: int
    client_name: str
    allocation_value: Decimal
    start_date: datetime


class ALConflict(BaseModel):
    """Asset whose active PERCENTAGE allocations sum above 100 (legacy data)."""
    asset_kind: AssetKind
    asset_id: int
    asset_identifier: str
    total_percentage: Decimal
    allocation_count: int
    allocations: List[ALConflictingAllocation] = Field(default_factory=list)
