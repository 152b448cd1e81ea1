"""
Client API endpoints for CustodyFolio.

- POST /clients: Create a client
- GET /clients: List clients
- GET /clients/{id}: Get one client
- PATCH /clients/{id}/status: Activate / deactivate a client
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import ClientStatus
from backend.app.db.session import get_session_generator, unit_of_work
from backend.app.schemas.clients import CLCreateItem, CLReadItem, CLStatusItem
from backend.app.services.client_service import ClientService

client_router = APIRouter(prefix="/clients", tags=["clients"])


@client_router.post("", response_model=CLReadItem, status_code=201)
async def create_client(
    item: CLCreateItem,
    session: AsyncSession = Depends(get_session_generator),
    ) -> CLReadItem:
    async with unit_of_work(session):
        client = (await ClientService(session).create(item)).unwrap()
    return CLReadItem.from_db_model(client)


@client_router.get("", response_model=List[CLReadItem])
async def list_clients(
    status: Optional[ClientStatus] = Query(None, description="Filter by status"),
    session: AsyncSession = Depends(get_session_generator),
    ) -> List[CLReadItem]:
    return [CLReadItem.from_db_model(c) for c in await ClientService(session).list(status)]


@client_router.get("/{client_id}", response_model=CLReadItem)
async def get_client(
    client_id: int,
    session: AsyncSession = Depends(get_session_generator),
    ) -> CLReadItem:
    client = (await ClientService(session).get(client_id)).unwrap()
    return CLReadItem.from_db_model(client)


@client_router.patch("/{client_id}/status", response_model=CLReadItem)
async def set_client_status(
    client_id: int,
    item: CLStatusItem,
    session: AsyncSession = Depends(get_session_generator),
    ) -> CLReadItem:
    async with unit_of_work(session):
        client = (await ClientService(session).set_status(client_id, item.status)).unwrap()
    return CLReadItem.from_db_model(client)
