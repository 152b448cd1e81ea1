"""
Client service: minimal surface of the client-management collaborator.

The engine only reads clients (existence, status); create, list and status change
exist so the API is usable end to end.
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import Client, ClientStatus
from backend.app.logging_config import get_logger
from backend.app.schemas.clients import CLCreateItem
from backend.app.services.errors import ConflictError, NotFoundError
from backend.app.services.result import ServiceResult

logger = get_logger(__name__)


class ClientService:
    """The caller is responsible for commit/rollback."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, item: CLCreateItem) -> ServiceResult[Client]:
        stmt = select(Client.id).where(Client.email == item.email)
        if (await self.session.execute(stmt)).scalar_one_or_none() is not None:
            return ServiceResult.fail(ConflictError(f"A client with email '{item.email}' already exists", {"email": item.email}))

        client = Client(**item.model_dump())
        self.session.add(client)
        await self.session.flush()
        logger.info("Client created", client_id=client.id)
        return ServiceResult.ok(client)

    async def get(self, client_id: int) -> ServiceResult[Client]:
        client = await self.session.get(Client, client_id)
        if client is None:
            return ServiceResult.fail(NotFoundError(f"Client {client_id} not found", {"client_id": client_id}))
        return ServiceResult.ok(client)

    async def list(self, status: Optional[ClientStatus] = None) -> List[Client]:
        stmt = select(Client).order_by(Client.name, Client.id)
        if status is not None:
            stmt = stmt.where(Client.status == status)
        return list((await self.session.execute(stmt)).scalars().all())

    async def set_status(self, client_id: int, status: ClientStatus) -> ServiceResult[Client]:
        result = await self.get(client_id)
        if not result.success:
            return result
        client = result.value
        if client.status != status:
            client.status = status
            await self.session.flush()
            logger.info("Client status changed", client_id=client_id, new_status=status.value)
        return ServiceResult.ok(client)
