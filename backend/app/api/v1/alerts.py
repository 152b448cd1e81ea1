"""
Rebalancing alert API endpoints for CustodyFolio.

- GET /alerts: List alerts (filters + pagination)
- GET /alerts/summary: Counts by status, severity and type
- GET /alerts/{id}: Get one alert
- POST /alerts/{id}/acknowledge | /resolve | /dismiss: State transitions
- POST /alerts/scan: Run the low-balance and stale-sync scans
- POST /clients/{client_id}/drift: Evaluate drift, optionally raising alerts
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.v1.deps import get_config_snapshot
from backend.app.db.models import AlertSeverity, AlertStatus, AlertType
from backend.app.db.session import get_session_generator, unit_of_work
from backend.app.logging_config import get_logger
from backend.app.schemas.alerts import (
    RBDriftRequest,
    RBDriftResponse,
    RBListResponse,
    RBQueryParams,
    RBReadItem,
    RBResolveItem,
    RBScanResult,
    RBSummary,
    )
from backend.app.schemas.system import ConfigSnapshot
from backend.app.services.alert_engine import AlertEngine

logger = get_logger(__name__)

alert_router = APIRouter(prefix="/alerts", tags=["alerts"])
drift_router = APIRouter(prefix="/clients", tags=["alerts"])


# =============================================================================
# READ
# =============================================================================

@alert_router.get("", response_model=RBListResponse)
async def list_alerts(
    severity: Optional[AlertSeverity] = Query(None, description="Filter by severity"),
    status: Optional[AlertStatus] = Query(None, description="Filter by status"),
    alert_type: Optional[AlertType] = Query(None, description="Filter by type"),
    client_id: Optional[int] = Query(None, gt=0, description="Filter by client"),
    limit: int = Query(50, ge=1, le=1000, description="Max results"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    session: AsyncSession = Depends(get_session_generator),
    ) -> RBListResponse:
    """List alerts, newest first."""
    params = RBQueryParams(
        severity=severity,
        status=status,
        alert_type=alert_type,
        client_id=client_id,
        limit=limit,
        offset=offset,
        )
    alerts, total = await AlertEngine(session).list(params)
    return RBListResponse(
        items=[RBReadItem.from_db_model(a) for a in alerts],
        total_count=total,
        limit=limit,
        offset=offset,
        )


@alert_router.get("/summary", response_model=RBSummary)
async def get_alert_summary(
    session: AsyncSession = Depends(get_session_generator),
    ) -> RBSummary:
    return await AlertEngine(session).summary()


@alert_router.get("/{alert_id}", response_model=RBReadItem)
async def get_alert(
    alert_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> RBReadItem:
    alert = (await AlertEngine(session).get(alert_id)).unwrap()
    return RBReadItem.from_db_model(alert)


# =============================================================================
# TRANSITIONS
# =============================================================================

@alert_router.post("/{alert_id}/acknowledge", response_model=RBReadItem)
async def acknowledge_alert(
    alert_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> RBReadItem:
    """NEW -> ACKNOWLEDGED (409 from any other status)."""
    async with unit_of_work(session):
        alert = (await AlertEngine(session).acknowledge(alert_id)).unwrap()
    return RBReadItem.from_db_model(alert)


@alert_router.post("/{alert_id}/resolve", response_model=RBReadItem)
async def resolve_alert(
    alert_id: int,
    item: Optional[RBResolveItem] = None,
    session: AsyncSession = Depends(get_session_generator),
    ) -> RBReadItem:
    """NEW|ACKNOWLEDGED -> RESOLVED (409 once terminal)."""
    notes = item.resolution_notes if item else None
    async with unit_of_work(session):
        alert = (await AlertEngine(session).resolve(alert_id, notes)).unwrap()
    return RBReadItem.from_db_model(alert)


@alert_router.post("/{alert_id}/dismiss", response_model=RBReadItem)
async def dismiss_alert(
    alert_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> RBReadItem:
    """NEW|ACKNOWLEDGED -> DISMISSED (409 once terminal)."""
    async with unit_of_work(session):
        alert = (await AlertEngine(session).dismiss(alert_id)).unwrap()
    return RBReadItem.from_db_model(alert)


# =============================================================================
# SCANS / DRIFT
# =============================================================================

@alert_router.post("/scan", response_model=RBScanResult)
async def scan_alerts(
    session: AsyncSession = Depends(get_session_generator),
    config: ConfigSnapshot = Depends(get_config_snapshot),
    ) -> RBScanResult:
    """Run the low-balance and stale-sync checks once (no scheduler in this service)."""
    async with unit_of_work(session):
        engine = AlertEngine(session, config)
        low = await engine.scan_low_balances()
        stale = await engine.scan_stale_syncs()
    return RBScanResult(low_balance_alert_ids=low, stale_sync_alert_ids=stale)


@drift_router.post("/{client_id}/drift", response_model=RBDriftResponse)
async def evaluate_client_drift(
    client_id: int,
    item: Optional[RBDriftRequest] = None,
    session: AsyncSession = Depends(get_session_generator),
    config: ConfigSnapshot = Depends(get_config_snapshot),
    ) -> RBDriftResponse:
    """
    Evaluate allocation drift of a client.

    Without targets, the client's active PERCENTAGE allocations are used. With
    raise_alerts, an ALLOCATION_DRIFT alert is raised for each drift above threshold
    (skipped while one is already open).
    """
    item = item or RBDriftRequest()
    raised = []
    async with unit_of_work(session):
        engine = AlertEngine(session, config)
        drifts = (await engine.evaluate_drift(client_id, item.targets)).unwrap()
        if item.raise_alerts:
            for drift in drifts:
                alert = (await engine.raise_if_threshold_exceeded(drift, item.threshold_pct)).unwrap()
                if alert is not None:
                    raised.append(alert.id)
        threshold, over, average = engine.drift_statistics(drifts, item.threshold_pct)
    return RBDriftResponse(
        drifts=drifts,
        raised_alert_ids=raised,
        threshold_pct=threshold,
        drifts_over_threshold=over,
        average_drift_pct=average,
        )
