"""
Tests for TransactionIntakeService.

Movements are appended per asset; a priced movement above the configured USD
threshold raises its own LARGE_TRANSACTION alert.

Reference: backend/app/services/transaction_intake.py
"""
import json
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

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import AlertSeverity, AlertType, AssetKind, AssetStatus, TransactionDirection
from backend.app.schemas.common import AssetRef
from backend.app.schemas.system import ConfigSnapshot
from backend.app.schemas.transactions import TXCreateItem
from backend.app.services.alert_engine import AlertEngine
from backend.app.services.asset_registry import AssetRegistry
from backend.app.services.errors import ConflictError, NotFoundError, ValidationError
from backend.app.services.transaction_intake import TransactionIntakeService
from backend.test_scripts.factories import hours_ago, make_account, make_wallet
from backend.test_scripts.test_utils import print_section, print_success


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = await create_test_engine(tmp_path / "transactions.db")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def config():
    return ConfigSnapshot(large_transaction_threshold_usd=Decimal("10000"))


def movement(amount_usd=None, token="ETH", direction=TransactionDirection.OUT, **extra) -> TXCreateItem:
    return TXCreateItem(
        direction=direction,
        token=token,
        amount=Decimal("1"),
        amount_usd=Decimal(amount_usd) if amount_usd is not None else None,
        **extra,
        )


# ============================================================================
# LARGE TRANSACTION ALERTS
# ============================================================================

class TestLargeTransactions:

    @pytest.mark.asyncio
    async def test_above_threshold_raises_alert(self, session, config):
        print_section("LARGE_TRANSACTION alerts")
        wallet = await make_wallet(session)

        response = (await TransactionIntakeService(session, config).record(wallet.ref, movement("15000", tx_hash="0xaa"))).unwrap()

        alert = (await AlertEngine(session).get(response.alert_id)).unwrap()
        assert alert.alert_type == AlertType.LARGE_TRANSACTION
        assert alert.severity == AlertSeverity.MEDIUM
        assert alert.client_id is None
        assert (alert.asset_kind, alert.asset_id) == (AssetKind.WALLET, wallet.id)
        assert json.loads(alert.alert_data)["transaction_id"] == response.transaction.id
        print_success("Alert raised above the threshold")

    @pytest.mark.asyncio
    async def test_far_above_threshold_is_high(self, session, config):
        wallet = await make_wallet(session)

        response = (await TransactionIntakeService(session, config).record(wallet.ref, movement("25000"))).unwrap()

        assert (await AlertEngine(session).get(response.alert_id)).unwrap().severity == AlertSeverity.HIGH

    @pytest.mark.parametrize("amount_usd", ["10000", "50", None])
    @pytest.mark.asyncio
    async def test_at_or_below_threshold_or_unpriced_raises_nothing(self, session, config, amount_usd):
        wallet = await make_wallet(session)

        response = (await TransactionIntakeService(session, config).record(wallet.ref, movement(amount_usd))).unwrap()

        assert response.alert_id is None
        assert response.transaction.amount_usd == (Decimal(amount_usd) if amount_usd else None)

    @pytest.mark.asyncio
    async def test_every_large_movement_gets_its_own_alert(self, session, config):
        wallet = await make_wallet(session)
        service = TransactionIntakeService(session, config)

        first = (await service.record(wallet.ref, movement("20000", tx_hash="0x01"))).unwrap()
        second = (await service.record(wallet.ref, movement("20000", tx_hash="0x02"))).unwrap()

        assert first.alert_id != second.alert_id

    @pytest.mark.asyncio
    async def test_configured_threshold_is_used(self, session):
        wallet = await make_wallet(session)
        service = TransactionIntakeService(session, ConfigSnapshot(large_transaction_threshold_usd=Decimal("100")))

        response = (await service.record(wallet.ref, movement("150", direction=TransactionDirection.IN))).unwrap()

        alert = (await AlertEngine(session).get(response.alert_id)).unwrap()
        assert "IN movement" in alert.message


# ============================================================================
# RECORDING RULES
# ============================================================================

class TestRecording:

    @pytest.mark.asyncio
    async def test_duplicate_hash_conflicts(self, session):
        wallet = await make_wallet(session)
        service = TransactionIntakeService(session)
        first = (await service.record(wallet.ref, movement("10", tx_hash="0xdup"))).unwrap()

        result = await service.record(wallet.ref, movement("10", tx_hash="0xdup"))

        assert isinstance(result.error, ConflictError)
        assert result.error.details["transaction_id"] == first.transaction.id

    @pytest.mark.asyncio
    async def test_same_hash_on_another_asset_is_fine(self, session):
        service = TransactionIntakeService(session)
        first = await make_wallet(session)
        second = await make_wallet(session)

        (await service.record(first.ref, movement("10", tx_hash="0xshared"))).unwrap()
        result = await service.record(second.ref, movement("10", tx_hash="0xshared"))

        assert result.success

    @pytest.mark.asyncio
    async def test_account_needs_a_currency(self, session):
        account = await make_account(session)
        service = TransactionIntakeService(session)

        rejected = await service.record(account.ref, movement("10", token="ETH"))
        accepted = (await service.record(account.ref, movement("10", token="brl"))).unwrap()

        assert isinstance(rejected.error, ValidationError)
        assert accepted.transaction.token == "BRL"

    @pytest.mark.asyncio
    async def test_inactive_asset_rejected(self, session):
        wallet = await make_wallet(session)
        await AssetRegistry(session).set_status(wallet.ref, AssetStatus.INACTIVE)

        result = await TransactionIntakeService(session).record(wallet.ref, movement("10"))

        assert isinstance(result.error, ValidationError)

    @pytest.mark.asyncio
    async def test_unknown_asset(self, session):
        result = await TransactionIntakeService(session).record(AssetRef(kind=AssetKind.ACCOUNT, id=42), movement("10"))
        assert isinstance(result.error, NotFoundError)

    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, session):
        wallet = await make_wallet(session)
        service = TransactionIntakeService(session)
        old = (await service.record(wallet.ref, movement("1", transaction_date=hours_ago(48)))).unwrap()
        new = (await service.record(wallet.ref, movement("2", transaction_date=hours_ago(1)))).unwrap()

        listed = await service.list_for_asset(wallet.ref)

        assert [t.id for t in listed] == [new.transaction.id, old.transaction.id]


def test_amount_must_be_positive():
    with pytest.raises(PydanticValidationError):
        TXCreateItem(direction=TransactionDirection.IN, token="ETH", amount=Decimal("0"))
