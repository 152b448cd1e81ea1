"""
Asset API Tests.

Tests for Asset endpoints:
- POST /assets/wallets, POST /assets/accounts: Register (201, 409 duplicate address)
- GET /assets, GET /assets/{kind}/{id}: Listing and current value
- GET/POST /assets/{kind}/{id}/balances: History and recording
- POST /assets/{kind}/{id}/sync: Sync results (balances or SYNC_FAILURE alert)
- GET/POST /assets/{kind}/{id}/transactions: Movements and LARGE_TRANSACTION alerts
- GET /assets/{kind}/{id}/can-deactivate, POST .../deactivate, POST .../activate

Reference: backend/app/api/v1/assets.py
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

from backend.test_scripts.test_server_helper import (
    API_PREFIX,
    _TestingAppClient,
    allocation_payload,
    create_client,
    create_wallet,
    record_balance,
    )
from backend.test_scripts.test_utils import print_section, print_success


# ============================================================================
# PYTEST FIXTURES
# ============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = await create_test_engine(tmp_path / "assets_api.db")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def client(engine):
    async with _TestingAppClient(engine) as client:
        yield client


async def create_account(client, currency_label: str = "Checking") -> int:
    payload = {"provider_account_id": "acc-1", "institution_name": "Test Bank", "account_type": "CHECKING", "label": currency_label}
    response = await client.post(f"{API_PREFIX}/assets/accounts", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["id"]


# ============================================================================
# REGISTRATION / READ
# ============================================================================

@pytest.mark.asyncio
async def test_register_and_list(client):
    print_section("POST /assets/wallets + /assets/accounts")
    wallet = await create_wallet(client, "Cold storage")
    account = await create_account(client)

    all_assets = (await client.get(f"{API_PREFIX}/assets")).json()
    wallets = (await client.get(f"{API_PREFIX}/assets", params={"kind": "WALLET"})).json()

    assert {(a["kind"], a["id"]) for a in all_assets} == {("WALLET", wallet), ("ACCOUNT", account)}
    assert [a["id"] for a in wallets] == [wallet]
    assert wallets[0]["status"] == "ACTIVE"
    print_success("Assets registered")


@pytest.mark.asyncio
async def test_duplicate_wallet_address_is_409(client):
    payload = {"wallet_address": "0xabc", "label": "A"}
    first = await client.post(f"{API_PREFIX}/assets/wallets", json=payload)
    second = await client.post(f"{API_PREFIX}/assets/wallets", json=payload)

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_unknown_asset_is_404(client):
    response = await client.get(f"{API_PREFIX}/assets/WALLET/999")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_invalid_kind_is_400(client):
    response = await client.get(f"{API_PREFIX}/assets/VAULT/1")
    assert response.status_code == 400


# ============================================================================
# BALANCES
# ============================================================================

@pytest.mark.asyncio
async def test_asset_value_sums_current_balances(client):
    wallet = await create_wallet(client)
    await record_balance(client, "WALLET", wallet, "ETH", "900")
    await record_balance(client, "WALLET", wallet, "USDC", "100")

    response = await client.get(f"{API_PREFIX}/assets/WALLET/{wallet}")

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["value_usd"]) == Decimal("1000")
    assert {b["token"] for b in data["balances"]} == {"ETH", "USDC"}


@pytest.mark.asyncio
async def test_balance_history_newest_first(client):
    wallet = await create_wallet(client)
    old = {"token": "ETH", "quantity": "1", "value_usd": "100", "recorded_at": "2026-01-01T00:00:00Z"}
    await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/balances", json=old)
    await record_balance(client, "WALLET", wallet, "ETH", "200")

    history = (await client.get(f"{API_PREFIX}/assets/WALLET/{wallet}/balances", params={"token": "ETH"})).json()
    current = (await client.get(f"{API_PREFIX}/assets/WALLET/{wallet}")).json()

    assert [Decimal(b["value_usd"]) for b in history] == [Decimal("200"), Decimal("100")]
    assert Decimal(current["value_usd"]) == Decimal("200")


@pytest.mark.asyncio
async def test_negative_quantity_is_400(client):
    wallet = await create_wallet(client)
    response = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/balances", json={"token": "ETH", "quantity": "-1"})
    assert response.status_code == 400


# ============================================================================
# SYNC
# ============================================================================

@pytest.mark.asyncio
async def test_successful_sync(client):
    account = await create_account(client)
    payload = {
        "status": "SUCCESS",
        "balances": [{"token": "usd", "quantity": "2500", "value_usd": "2500", "balance_type": "AVAILABLE"}],
        }

    response = await client.post(f"{API_PREFIX}/assets/ACCOUNT/{account}/sync", json=payload)

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["recorded_count"] == 1
    assert data["alert_id"] is None
    assert data["asset"]["sync_status"] == "SUCCESS"
    assert data["asset"]["last_sync_at"] is not None


@pytest.mark.asyncio
async def test_failed_sync_raises_alert(client):
    wallet = await create_wallet(client)
    payload = {"status": "FAILED", "error_message": "rate limited"}

    response = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/sync", json=payload)

    alert_id = response.json()["alert_id"]
    alert = (await client.get(f"{API_PREFIX}/alerts/{alert_id}")).json()
    assert alert["alert_type"] == "SYNC_FAILURE"
    assert alert["asset_kind"] == "WALLET"
    assert alert["asset_id"] == wallet


@pytest.mark.asyncio
async def test_failed_sync_without_message_is_400(client):
    wallet = await create_wallet(client)
    response = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/sync", json={"status": "FAILED"})
    assert response.status_code == 400


# ============================================================================
# TRANSACTIONS
# ============================================================================

@pytest.mark.asyncio
async def test_large_transaction_raises_alert(client):
    print_section("POST /assets/{kind}/{id}/transactions")
    wallet = await create_wallet(client)
    await client.put(f"{API_PREFIX}/system/configuration", json={"settings": {"large_transaction_threshold_usd": "5000"}})
    payload = {"direction": "OUT", "token": "eth", "amount": "3", "amount_usd": "9000", "tx_hash": "0xfeed", "chain": "ETH"}

    response = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/transactions", json=payload)
    duplicate = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/transactions", json=payload)

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["transaction"]["token"] == "ETH"
    assert data["transaction"]["chain"] == "eth"
    alert = (await client.get(f"{API_PREFIX}/alerts/{data['alert_id']}")).json()
    assert alert["alert_type"] == "LARGE_TRANSACTION"
    assert alert["severity"] == "MEDIUM"
    assert duplicate.status_code == 409
    print_success("Large transaction alerted, duplicate hash rejected")


@pytest.mark.asyncio
async def test_transaction_history(client):
    account = await create_account(client)
    for amount, date in (("10", "2026-01-01T10:00:00Z"), ("20", "2026-02-01T10:00:00Z")):
        payload = {"direction": "IN", "token": "BRL", "amount": amount, "transaction_date": date, "is_manual_entry": True}
        response = await client.post(f"{API_PREFIX}/assets/ACCOUNT/{account}/transactions", json=payload)
        assert response.json()["alert_id"] is None

    history = (await client.get(f"{API_PREFIX}/assets/ACCOUNT/{account}/transactions")).json()
    missing = await client.get(f"{API_PREFIX}/assets/ACCOUNT/999/transactions")

    assert [Decimal(t["amount"]) for t in history] == [Decimal("20"), Decimal("10")]
    assert all(t["is_manual_entry"] for t in history)
    assert missing.status_code == 404


# ============================================================================
# LIFECYCLE
# ============================================================================

@pytest.mark.asyncio
async def test_deactivate_blocked_by_active_allocation(client):
    """Deactivation is refused (409) while an active allocation references the asset."""
    alice = await create_client(client, "Alice")
    wallet = await create_wallet(client)
    allocation = (await client.post(f"{API_PREFIX}/allocations", json=allocation_payload(alice, "WALLET", wallet, "60"))).json()

    check = (await client.get(f"{API_PREFIX}/assets/WALLET/{wallet}/can-deactivate")).json()
    blocked = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/deactivate")

    assert check == {"asset": f"WALLET:{wallet}", "can_deactivate": False}
    assert blocked.status_code == 409
    assert blocked.json()["details"]["allocation_ids"] == [allocation["id"]]

    await client.post(f"{API_PREFIX}/allocations/{allocation['id']}/end")
    deactivated = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/deactivate")

    assert deactivated.status_code == 200
    assert deactivated.json()["status"] == "INACTIVE"


@pytest.mark.asyncio
async def test_inactive_asset_rejects_allocations_until_reactivated(client):
    alice = await create_client(client, "Alice")
    wallet = await create_wallet(client)
    await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/deactivate")

    rejected = await client.post(f"{API_PREFIX}/allocations", json=allocation_payload(alice, "WALLET", wallet, "10"))
    reactivated = await client.post(f"{API_PREFIX}/assets/WALLET/{wallet}/activate")
    accepted = await client.post(f"{API_PREFIX}/allocations", json=allocation_payload(alice, "WALLET", wallet, "10"))

    assert rejected.status_code == 400
    assert reactivated.json()["status"] == "ACTIVE"
    assert accepted.status_code == 201
