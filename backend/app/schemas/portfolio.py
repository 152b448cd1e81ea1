"""
Portfolio (PF) schemas.

Read-only valuation DTOs produced by the portfolio valuator and consumed by the
API and by the export collaborator.

**Design Notes**:
- All values are expressed in the reporting currency (USD by default)
- as_of is the latest recorded_at of the balances used, not the call time, so
  the snapshot is a pure function of stored state
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict

from pydantic import BaseModel, Field

from backend.app.db.models import AssetKind, AllocationType


class AllocationValuation(BaseModel):
    """Value of one active allocation."""
    allocation_id: int
    asset_kind: AssetKind
    asset_id: int
    allocation_type: AllocationType
    allocation_value: Decimal = Field(..., description="Percentage or fixed amount as stored")
    asset_value_usd: Decimal = Field(..., description="Current total value of the asset")
    allocated_value_usd: Decimal = Field(..., description="Share of the asset value owned by the client")


class ClientPortfolioSnapshot(BaseModel):
    """Valuation of all active allocations of one client."""
    client_id: int
    total_value_usd: Decimal
    wallet_value_usd: Decimal = Decimal("0")
    account_value_usd: Decimal = Decimal("0")
    allocations: List[AllocationValuation] = Field(default_factory=list)
    as_of: Optional[datetime] = Field(default=None, description="Latest balance instant used, None when no balance exists")


class PFAssetKindTotals(BaseModel):
    asset_count: int = 0
    active_asset_count: int = 0
    value_usd: Decimal = Decimal("0")


class PortfolioOverview(BaseModel):
    """
    Assets under custody.

    allocated_value_usd sums every client's allocated value; unallocated is the
    remainder of the active assets' value (never negative).
    """
    total_value_usd: Decimal
    allocated_value_usd: Decimal
    unallocated_value_usd: Decimal
    active_client_count: int
    active_allocation_count: int
    by_kind: Dict[AssetKind, PFAssetKindTotals] = Field(default_factory=dict)
