"""
Portfolio API endpoints for CustodyFolio (read-only, also used by the export collaborator).

- GET /portfolio/overview: Assets under custody, allocated vs. unallocated
- GET /portfolio/clients/{client_id}: Valuation snapshot of a client
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_session_generator
from backend.app.logging_config import get_logger
from backend.app.schemas.portfolio import ClientPortfolioSnapshot, PortfolioOverview
from backend.app.services.portfolio_valuator import PortfolioValuator

logger = get_logger(__name__)

portfolio_router = APIRouter(prefix="/portfolio", tags=["portfolio"])


@portfolio_router.get("/overview", response_model=PortfolioOverview)
async def get_portfolio_overview(
    session: AsyncSession = Depends(get_session_generator),
    ) -> PortfolioOverview:
    return await PortfolioValuator(session).compute_overview()


@portfolio_router.get("/clients/{client_id}", response_model=ClientPortfolioSnapshot)
async def get_client_portfolio(
    client_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> ClientPortfolioSnapshot:
    """
    Value every active allocation of the client.

    as_of is the latest balance instant used, not the request time.
    """
    return (await PortfolioValuator(session).compute_client_portfolio(client_id)).unwrap()
