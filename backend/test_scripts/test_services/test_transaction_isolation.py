"""
Tests for transaction isolation of read-then-write sequences on SQLite.

Two sessions are interleaved on purpose: the first one pauses right after its
check, while the second one tries to write. The second writer must wait for the
first commit and then see the committed state.

Tests cover:
- A transaction holds the write lock from its first read (async and sync engines)
- Deactivate vs create allocation on the same asset
- Two percentage allocations racing for the same asset

Reference: backend/app/db/session.py, backend/app/services/lifecycle_guard.py,
backend/app/services/allocation_ledger.py
"""
import asyncio
import sqlite3
import sys
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Setup test database BEFORE importing app modules
from backend.test_scripts.test_db_config import setup_test_database, create_test_engine, sqlite_url
setup_test_database()

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import AssetStatus, Client
from backend.app.db.session import get_sync_engine, unit_of_work
from backend.app.services.allocation_ledger import AllocationLedger
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.errors import ValidationError
from backend.app.services.lifecycle_guard import LifecycleGuard
from backend.test_scripts.factories import allocation_item, make_client, make_wallet
from backend.test_scripts.test_utils import print_section, print_success

# Time the first session keeps its transaction open after the second writer started
HOLD_SECONDS = 0.3


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "isolation.db"


@pytest_asyncio.fixture
async def engine(db_path):
    engine = await create_test_engine(db_path)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(engine):
    """Two clients and one wallet, committed."""
    async with AsyncSession(engine, expire_on_commit=False) as session:
        async with unit_of_work(session):
            alice = await make_client(session, "Alice")
            bob = await make_client(session, "Bob")
            wallet = await make_wallet(session)
    return alice, bob, wallet


def write_lock_is_free(db_path: Path) -> bool:
    """Try to take the write lock from a plain sqlite3 connection, without waiting."""
    conn = sqlite3.connect(str(db_path), timeout=0)
    try:
        conn.isolation_level = None
        conn.execute("BEGIN IMMEDIATE")
        conn.execute("ROLLBACK")
        return True
    except sqlite3.OperationalError as e:
        assert "locked" in str(e)
        return False
    finally:
        conn.close()


async def create_in_own_session(engine, item, started: asyncio.Event):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        async with unit_of_work(session):
            started.set()
            return (await AllocationLedger(session).create(item)).unwrap()


# ============================================================================
# WRITE LOCK
# ============================================================================

@pytest.mark.asyncio
async def test_first_read_takes_write_lock(engine, db_path):
    async with AsyncSession(engine) as session:
        assert write_lock_is_free(db_path)
        await session.execute(select(Client))
        assert not write_lock_is_free(db_path)

    assert write_lock_is_free(db_path)


def test_sync_engine_first_read_takes_write_lock(tmp_path):
    db_path = tmp_path / "sync.db"
    engine = get_sync_engine(sqlite_url(db_path))
    try:
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1
            assert not write_lock_is_free(db_path)
            conn.rollback()
        assert write_lock_is_free(db_path)
    finally:
        engine.dispose()


# ============================================================================
# INTERLEAVED WRITERS
# ============================================================================

@pytest.mark.asyncio
async def test_allocation_created_during_deactivate_is_rejected(engine, seeded):
    """The allocation writer waits for the deactivation and then sees the asset inactive."""
    print_section("Deactivate vs create allocation")
    alice, _, wallet = seeded
    started = asyncio.Event()
    writer: list = []

    async with AsyncSession(engine, expire_on_commit=False) as session:
        guard = LifecycleGuard(session)
        check = guard.ledger.get_active_by_asset

        async def check_then_let_writer_in(ref):
            active = await check(ref)
            item = allocation_item(alice, wallet, "60")
            writer.append(asyncio.create_task(create_in_own_session(engine, item, started)))
            await started.wait()
            await asyncio.sleep(HOLD_SECONDS)
            return active

        guard.ledger.get_active_by_asset = check_then_let_writer_in
        async with unit_of_work(session):
            (await guard.deactivate(wallet.ref)).unwrap()

    with pytest.raises(ValidationError, match="inactive"):
        await writer[0]

    async with AsyncSession(engine) as session:
        assert (await AssetRegistry(session).load(wallet.ref)).status == AssetStatus.INACTIVE
        assert await AllocationLedger(session).get_active_by_asset(wallet.ref) == []
    print_success("Allocation rejected after the asset went inactive")


@pytest.mark.asyncio
async def test_racing_percentage_allocations_stay_within_100(engine, seeded):
    """60% and 50% on the same asset: the second writer sees the first one's total."""
    print_section("Concurrent percentage allocations")
    alice, bob, wallet = seeded
    started = asyncio.Event()
    writer: list = []

    async with AsyncSession(engine, expire_on_commit=False) as session:
        ledger = AllocationLedger(session)
        total = ledger._active_percentage_total

        async def total_then_let_writer_in(ref, exclude_id=None):
            current = await total(ref, exclude_id=exclude_id)
            item = allocation_item(bob, wallet, "50")
            writer.append(asyncio.create_task(create_in_own_session(engine, item, started)))
            await started.wait()
            await asyncio.sleep(HOLD_SECONDS)
            return current

        ledger._active_percentage_total = total_then_let_writer_in
        async with unit_of_work(session):
            (await ledger.create(allocation_item(alice, wallet, "60"))).unwrap()

    with pytest.raises(ValidationError, match="exceed 100"):
        await writer[0]

    async with AsyncSession(engine) as session:
        active = await AllocationLedger(session).get_active_by_asset(wallet.ref)
    assert [(a.client_id, a.allocation_value) for a in active] == [(alice.id, Decimal("60"))]
    print_success("Second allocation rejected, total stays at 60%")
