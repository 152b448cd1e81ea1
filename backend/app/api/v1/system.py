"""
System configuration API endpoints for CustodyFolio.

- GET /system/configuration: Stored rows and effective values
- PUT /system/configuration: Upsert values (known keys are range-checked)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_session_generator, unit_of_work
from backend.app.schemas.system import SYConfigResponse, SYConfigUpdateItem
from backend.app.services.system_config import SystemConfigService, load_config_snapshot

system_router = APIRouter(prefix="/system", tags=["system"])


async def _config_response(session: AsyncSession) -> SYConfigResponse:
    return SYConfigResponse(
        settings=await SystemConfigService(session).list_items(),
        effective=await load_config_snapshot(session),
        )


@system_router.get("/configuration", response_model=SYConfigResponse)
async def get_configuration(
    session: AsyncSession = Depends(get_session_generator),
    ) -> SYConfigResponse:
    return await _config_response(session)


@system_router.put("/configuration", response_model=SYConfigResponse)
async def update_configuration(
    item: SYConfigUpdateItem,
    session: AsyncSession = Depends(get_session_generator),
    ) -> SYConfigResponse:
    async with unit_of_work(session):
        (await SystemConfigService(session).update(item.settings)).unwrap()
    return await _config_response(session)
