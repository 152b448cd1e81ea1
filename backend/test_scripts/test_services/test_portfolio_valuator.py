"""
Tests for PortfolioValuator.

Client snapshots (PERCENTAGE and clamped FIXED_AMOUNT valuation, as_of),
purity of repeated calls and the custody overview.

Reference: backend/app/services/portfolio_valuator.py
"""
import sys
from decimal import Decimal
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

from backend.app.db.models import AllocationType, AssetKind, ClientAssetAllocation, ClientStatus
from backend.app.services.allocation_ledger import AllocationLedger
from backend.app.services.client_service import ClientService
from backend.app.services.errors import NotFoundError
from backend.app.services.lifecycle_guard import LifecycleGuard
from backend.app.services.portfolio_valuator import PortfolioValuator, allocated_value
from backend.test_scripts.factories import allocate, hours_ago, make_account, make_client, make_wallet, record


# ============================================================================
# PYTEST FIXTURES
# ============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = await create_test_engine(tmp_path / "valuator.db")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ============================================================================
# PURE VALUATION
# ============================================================================

class TestAllocatedValue:

    def test_percentage(self):
        allocation = ClientAssetAllocation(allocation_type=AllocationType.PERCENTAGE, allocation_value=Decimal("60"))
        assert allocated_value(allocation, Decimal("1000")) == Decimal("600")

    def test_fixed_amount_below_asset_value(self):
        allocation = ClientAssetAllocation(allocation_type=AllocationType.FIXED_AMOUNT, allocation_value=Decimal("250"))
        assert allocated_value(allocation, Decimal("1000")) == Decimal("250")

    def test_fixed_amount_clamped_to_asset_value(self):
        allocation = ClientAssetAllocation(allocation_type=AllocationType.FIXED_AMOUNT, allocation_value=Decimal("5000"))
        assert allocated_value(allocation, Decimal("1000")) == Decimal("1000")


# ============================================================================
# CLIENT PORTFOLIO
# ============================================================================

class TestClientPortfolio:

    @pytest.mark.asyncio
    async def test_sixty_percent_of_thousand(self, session):
        """Alice holds 60% of W, worth 1000: her portfolio is worth 600."""
        alice = await make_client(session, "Alice")
        wallet = await make_wallet(session, "W")
        await record(session, wallet, "ETH", "1000")
        await allocate(session, alice, wallet, "60")

        snapshot = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        assert snapshot.total_value_usd == Decimal("600")
        assert snapshot.wallet_value_usd == Decimal("600")
        assert snapshot.account_value_usd == Decimal("0")
        assert len(snapshot.allocations) == 1
        assert snapshot.allocations[0].asset_value_usd == Decimal("1000")

    @pytest.mark.asyncio
    async def test_wallets_and_accounts_split(self, session):
        alice = await make_client(session, "Alice")
        wallet = await make_wallet(session)
        account = await make_account(session)
        await record(session, wallet, "BTC", "2000")
        await record(session, account, "USD", "800")
        await allocate(session, alice, wallet, "25")
        await allocate(session, alice, account, "5000", AllocationType.FIXED_AMOUNT)

        snapshot = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        assert snapshot.wallet_value_usd == Decimal("500")
        assert snapshot.account_value_usd == Decimal("800")
        assert snapshot.total_value_usd == Decimal("1300")

    @pytest.mark.asyncio
    async def test_as_of_is_latest_balance_used(self, session):
        alice = await make_client(session, "Alice")
        wallet = await make_wallet(session)
        account = await make_account(session)
        latest = hours_ago(1)
        await record(session, wallet, "ETH", "100", recorded_at=hours_ago(4))
        await record(session, account, "EUR", "100", recorded_at=latest)
        await allocate(session, alice, wallet, "50")
        await allocate(session, alice, account, "50")

        snapshot = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        assert snapshot.as_of == latest

    @pytest.mark.asyncio
    async def test_empty_portfolio(self, session):
        alice = await make_client(session, "Alice")
        snapshot = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        assert snapshot.total_value_usd == Decimal("0")
        assert snapshot.allocations == []
        assert snapshot.as_of is None

    @pytest.mark.asyncio
    async def test_unknown_client(self, session):
        result = await PortfolioValuator(session).compute_client_portfolio(404)
        assert isinstance(result.error, NotFoundError)

    @pytest.mark.asyncio
    async def test_ended_allocations_are_not_valued(self, session):
        alice = await make_client(session, "Alice")
        wallet = await make_wallet(session)
        await record(session, wallet, "ETH", "1000")
        allocation = await allocate(session, alice, wallet, "60")
        await AllocationLedger(session).end(allocation.id)

        snapshot = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        assert snapshot.total_value_usd == Decimal("0")

    @pytest.mark.asyncio
    async def test_repeated_calls_are_equal(self, session):
        """No write between two calls: equal snapshots."""
        alice = await make_client(session, "Alice")
        wallet = await make_wallet(session)
        await record(session, wallet, "ETH", "1234.56")
        await allocate(session, alice, wallet, "33.3")

        first = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()
        second = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        assert first == second
        assert first.total_value_usd == Decimal("411.098480")

    @pytest.mark.asyncio
    async def test_new_balance_changes_value(self, session):
        alice = await make_client(session, "Alice")
        wallet = await make_wallet(session)
        await record(session, wallet, "ETH", "1000", recorded_at=hours_ago(2))
        await allocate(session, alice, wallet, "50")
        before = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        await record(session, wallet, "ETH", "3000", recorded_at=hours_ago(1))
        after = (await PortfolioValuator(session).compute_client_portfolio(alice.id)).unwrap()

        assert before.total_value_usd == Decimal("500")
        assert after.total_value_usd == Decimal("1500")


# ============================================================================
# OVERVIEW
# ============================================================================

class TestOverview:

    @pytest.mark.asyncio
    async def test_overview_totals(self, session):
        alice = await make_client(session, "Alice")
        bob = await make_client(session, "Bob")
        carol = await make_client(session, "Carol")
        await ClientService(session).set_status(carol.id, ClientStatus.INACTIVE)

        wallet = await make_wallet(session)
        account = await make_account(session)
        idle = await make_wallet(session)
        await record(session, wallet, "ETH", "1000")
        await record(session, account, "USD", "500")
        await record(session, idle, "ETH", "700")
        await LifecycleGuard(session).deactivate(idle.ref)

        await allocate(session, alice, wallet, "60")
        await allocate(session, bob, account, "200", AllocationType.FIXED_AMOUNT)

        overview = await PortfolioValuator(session).compute_overview()

        assert overview.total_value_usd == Decimal("1500")
        assert overview.allocated_value_usd == Decimal("800")
        assert overview.unallocated_value_usd == Decimal("700")
        assert overview.active_client_count == 2
        assert overview.active_allocation_count == 2
        assert overview.by_kind[AssetKind.WALLET].asset_count == 2
        assert overview.by_kind[AssetKind.WALLET].active_asset_count == 1
        assert overview.by_kind[AssetKind.ACCOUNT].value_usd == Decimal("500")
