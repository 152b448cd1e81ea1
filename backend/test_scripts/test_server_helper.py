"""
Test Server Helper

Runs the FastAPI app in-process for API tests.

The app is served through httpx.ASGITransport (no port, no thread, no lifespan),
and its session dependency is redirected to the throw-away database of the test,
so every request of a test sees the same data and nothing else.

Usage:
    async with _TestingAppClient(engine) as client:
        response = await client.post(f"{API_PREFIX}/clients", json={...})
"""
import uuid

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from backend.app.config import get_settings
from backend.app.db.session import get_session_generator

API_PREFIX = get_settings().API_V1_PREFIX
TEST_BASE_URL = "http://testserver"


class _TestingAppClient:
    """
    httpx.AsyncClient bound to the app, with sessions opened on the given engine.

    raise_app_exceptions=False lets the generic 500 handler answer instead of
    the exception reaching the test.
    """

    def __init__(self, engine: AsyncEngine, raise_app_exceptions: bool = True):
        self.engine = engine
        self.raise_app_exceptions = raise_app_exceptions
        self.client: httpx.AsyncClient | None = None

    async def _session_override(self):
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    async def __aenter__(self) -> httpx.AsyncClient:
        from backend.app.main import app

        self.app = app
        app.dependency_overrides[get_session_generator] = self._session_override
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=self.raise_app_exceptions)
        self.client = httpx.AsyncClient(transport=transport, base_url=TEST_BASE_URL)
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()
        self.client = None
        self.app.dependency_overrides.pop(get_session_generator, None)


# ============================================================================
# REQUEST HELPERS
# ============================================================================

async def create_client(client: httpx.AsyncClient, name: str) -> int:
    """POST /clients and return the new id."""
    email = f"{name.lower()}.{uuid.uuid4().hex[:8]}@example.com"
    response = await client.post(f"{API_PREFIX}/clients", json={"name": name, "email": email})
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def create_wallet(client: httpx.AsyncClient, label: str = "Wallet") -> int:
    """POST /assets/wallets and return the new id."""
    payload = {"wallet_address": f"0x{uuid.uuid4().hex}", "label": label, "supported_chains": ["eth"]}
    response = await client.post(f"{API_PREFIX}/assets/wallets", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def record_balance(client: httpx.AsyncClient, kind: str, asset_id: int, token: str, value_usd: str) -> dict:
    """POST one balance snapshot (quantity 1) and return it."""
    payload = {"token": token, "quantity": "1", "value_usd": value_usd}
    response = await client.post(f"{API_PREFIX}/assets/{kind}/{asset_id}/balances", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def allocation_payload(client_id: int, kind: str, asset_id: int, value: str, allocation_type: str = "PERCENTAGE") -> dict:
    return {
        "client_id": client_id,
        "asset_kind": kind,
        "asset_id": asset_id,
        "allocation_type": allocation_type,
        "allocation_value": value,
        }
