"""
Rebalancing alert (RB) schemas.

**Naming Convention**:
- RB prefix: Rebalancing alert schemas
- DriftTarget / AllocationDrift: inputs and outputs of drift evaluation

**Design Notes**:
- alert_data is opaque JSON text in DB, exposed as a dict
- drift_pct = current_allocation_pct - target_allocation_pct (signed)
- drift_amount_usd = allocated value - target share of the client total (signed, same sign as drift_pct)
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, ConfigDict

from backend.app.db.models import (
    AssetKind,
    AlertType,
    AlertSeverity,
    AlertStatus,
    RebalancingAlert,
    )
from backend.app.schemas.common import AssetRef
from backend.app.utils.datetime_utils import as_utc


# =============================================================================
# DRIFT
# =============================================================================

class DriftTarget(BaseModel):
    """Target share (percentage of the client total) of one asset."""
    model_config = ConfigDict(extra="forbid")

    asset_kind: AssetKind
    asset_id: int = Field(..., gt=0)
    target_allocation_pct: Decimal = Field(..., ge=0, le=100)

    @property
    def asset_ref(self) -> AssetRef:
        return AssetRef(kind=self.asset_kind, id=self.asset_id)


class AllocationDrift(BaseModel):
    """Realized vs. target share of one asset in a client portfolio."""
    client_id: int
    asset_kind: AssetKind
    asset_id: int
    current_allocation_pct: Decimal
    target_allocation_pct: Decimal
    drift_pct: Decimal
    drift_amount_usd: Decimal = Field(default=Decimal("0"), description="Value to move to get back on target")

    @property
    def asset_ref(self) -> AssetRef:
        return AssetRef(kind=self.asset_kind, id=self.asset_id)


class RBDriftRequest(BaseModel):
    """Optional explicit targets for drift evaluation (default: active PERCENTAGE allocations)."""
    model_config = ConfigDict(extra="forbid")

    targets: Optional[List[DriftTarget]] = None
    threshold_pct: Optional[Decimal] = Field(default=None, ge=0, description="Override of the configured threshold")
    raise_alerts: bool = Field(default=False, description="Raise ALLOCATION_DRIFT alerts for drifts above threshold")


class RBDriftResponse(BaseModel):
    drifts: List[AllocationDrift] = Field(default_factory=list)
    raised_alert_ids: List[int] = Field(default_factory=list)
    threshold_pct: Decimal = Field(..., description="Threshold the drifts were compared with")
    drifts_over_threshold: int = 0
    average_drift_pct: Decimal = Field(default=Decimal("0"), description="Mean of |drift_pct|")


# =============================================================================
# ALERT READ / TRANSITIONS
# =============================================================================

class RBReadItem(BaseModel):
    """Alert as stored."""
    id: int
    client_id: Optional[int] = None
    asset_kind: Optional[AssetKind] = None
    asset_id: Optional[int] = None
    alert_type: AlertType
    severity: AlertSeverity
    status: AlertStatus
    message: str
    alert_data: Optional[Dict[str, Any]] = None
    resolution_notes: Optional[str] = None
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None

    @classmethod
    def from_db_model(cls, alert: RebalancingAlert) -> 'RBReadItem':
        return cls(
            id=alert.id,
            client_id=alert.client_id,
            asset_kind=alert.asset_kind,
            asset_id=alert.asset_id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            status=alert.status,
            message=alert.message,
            alert_data=json.loads(alert.alert_data) if alert.alert_data else None,
            resolution_notes=alert.resolution_notes,
            created_at=as_utc(alert.created_at),
            acknowledged_at=as_utc(alert.acknowledged_at),
            resolved_at=as_utc(alert.resolved_at),
            dismissed_at=as_utc(alert.dismissed_at),
            )


class RBResolveItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resolution_notes: Optional[str] = Field(default=None, max_length=2000)


class RBQueryParams(BaseModel):
    """
    Query parameters for filtering alerts.

    Used by GET /api/v1/alerts endpoint.
    """
    model_config = ConfigDict(extra="forbid")

    severity: Optional[AlertSeverity] = None
    status: Optional[AlertStatus] = None
    alert_type: Optional[AlertType] = None
    client_id: Optional[int] = Field(default=None, gt=0)

    limit: int = Field(default=50, ge=1, le=1000, description="Max results")
    offset: int = Field(default=0, ge=0, description="Offset for pagination")


class RBListResponse(BaseModel):
    items: List[RBReadItem]
    total_count: int
    limit: int
    offset: int


class RBSummary(BaseModel):
    """Alert counts by status, severity and type."""
    total: int = 0
    by_status: Dict[AlertStatus, int] = Field(default_factory=dict)
    by_severity: Dict[AlertSeverity, int] = Field(default_factory=dict)
    by_type: Dict[AlertType, int] = Field(default_factory=dict)


class RBScanResult(BaseModel):
    """Alerts raised or refreshed by a background scan."""
    low_balance_alert_ids: List[int] = Field(default_factory=list)
    stale_sync_alert_ids: List[int] = Field(default_factory=list)
