"""
API v1 router.
Aggregates all v1 endpoints.
"""
from fastapi import APIRouter

from backend.app.api.v1 import allocations, alerts, assets, clients, portfolio, system
from backend.app.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Include sub-routers
router.include_router(clients.client_router)
router.include_router(allocations.client_allocation_router)
router.include_router(alerts.drift_router)
router.include_router(allocations.allocation_router)
router.include_router(assets.asset_router)
router.include_router(portfolio.portfolio_router)
router.include_router(alerts.alert_router)
router.include_router(system.system_router)


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns service status.

    Returns:
        dict: Status message
    """
    logger.debug("Health check requested")
    return {"status": "ok"}
