"""
Tests for LifecycleGuard.

An asset referenced by an active allocation cannot be deactivated.

Reference: backend/app/services/lifecycle_guard.py
"""
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Setup test database BEFORE importing app modules
from backend.test_scripts.test_db_config import setup_test_database, create_test_engine
setup_test_database()

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import AssetKind, AssetStatus
from backend.app.schemas.common import AssetRef
from backend.app.services.allocation_ledger import AllocationLedger
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.errors import ConflictError, NotFoundError
from backend.app.services.lifecycle_guard import LifecycleGuard
from backend.test_scripts.factories import allocate, make_client, make_wallet


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = await create_test_engine(tmp_path / "guard.db")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.mark.asyncio
async def test_deactivate_unallocated_asset(session):
    wallet = await make_wallet(session)
    guard = LifecycleGuard(session)

    assert await guard.can_deactivate(wallet.ref)
    view = (await guard.deactivate(wallet.ref)).unwrap()

    assert view.status == AssetStatus.INACTIVE


@pytest.mark.asyncio
async def test_active_allocation_blocks_deactivation(session):
    """Refused with the blocking allocation IDs, status unchanged."""
    alice = await make_client(session, "Alice")
    wallet = await make_wallet(session)
    allocation = await allocate(session, alice, wallet, "60")
    guard = LifecycleGuard(session)

    assert not await guard.can_deactivate(wallet.ref)
    result = await guard.deactivate(wallet.ref)

    assert isinstance(result.error, ConflictError)
    assert result.error.details["allocation_ids"] == [allocation.id]
    assert (await AssetRegistry(session).get_asset(wallet.ref)).value.status == AssetStatus.ACTIVE


@pytest.mark.asyncio
async def test_ending_allocations_unblocks(session):
    alice = await make_client(session, "Alice")
    wallet = await make_wallet(session)
    allocation = await allocate(session, alice, wallet, "60")
    await AllocationLedger(session).end(allocation.id)

    result = await LifecycleGuard(session).deactivate(wallet.ref)

    assert result.success
    assert result.value.status == AssetStatus.INACTIVE


@pytest.mark.asyncio
async def test_deactivate_is_idempotent(session):
    wallet = await make_wallet(session)
    guard = LifecycleGuard(session)
    await guard.deactivate(wallet.ref)

    result = await guard.deactivate(wallet.ref)

    assert result.success
    assert result.value.status == AssetStatus.INACTIVE


@pytest.mark.asyncio
async def test_deactivate_unknown_asset(session):
    result = await LifecycleGuard(session).deactivate(AssetRef(kind=AssetKind.ACCOUNT, id=31))
    assert isinstance(result.error, NotFoundError)
