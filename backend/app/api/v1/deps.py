"""
Shared FastAPI dependencies.

FastAPI caches dependencies per request, so get_config_snapshot() and the endpoint
share the same session and the configuration is read once per request.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_session_generator
from backend.app.schemas.system import ConfigSnapshot
from backend.app.services.system_config import load_config_snapshot


async def get_config_snapshot(session: AsyncSession = Depends(get_session_generator)) -> ConfigSnapshot:
    return await load_config_snapshot(session)
