"""
Tests for the custody Pydantic schemas.

Schema sources: backend/app/schemas/common.py, assets.py, allocations.py,
clients.py, system.py

Tests cover:
- AssetRef: parse / str round trip, hashing
- ASWalletCreateItem: chain normalization
- ASBalanceItem: token normalization, negative amounts
- ASSyncResultItem: FAILED requires a message
- ALCreateItem / ALUpdateItem: date parsing, empty update
- CLCreateItem: email check
- ConfigSnapshot: bounds
- quantize_money
"""
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from backend.app.db.models import AllocationType, AssetKind, SyncStatus
from backend.app.schemas.allocations import ALCreateItem, ALUpdateItem
from backend.app.schemas.assets import ASBalanceItem, ASSyncResultItem, ASWalletCreateItem
from backend.app.schemas.clients import CLCreateItem
from backend.app.schemas.common import AssetRef, quantize_money
from backend.app.schemas.system import ConfigSnapshot
from backend.app.utils.currency_utils import normalize_currency_code


# ============================================================================
# TESTS: AssetRef
# ============================================================================

class TestAssetRef:
    """Test the KIND:ID asset reference."""

    def test_parse_and_str(self):
        ref = AssetRef.parse("wallet:3")
        assert ref == AssetRef(kind=AssetKind.WALLET, id=3)
        assert str(ref) == "WALLET:3"

    @pytest.mark.parametrize("value", ["WALLET", "VAULT:1", "ACCOUNT:x", "ACCOUNT:0"])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            AssetRef.parse(value)

    def test_hashable(self):
        refs = {AssetRef.parse("ACCOUNT:1"), AssetRef(kind=AssetKind.ACCOUNT, id=1)}
        assert len(refs) == 1


# ============================================================================
# TESTS: Asset schemas
# ============================================================================

class TestAssetSchemas:
    """Test wallet registration and balance snapshot validation."""

    def test_chains_normalized(self):
        item = ASWalletCreateItem(wallet_address=" 0xabc ", supported_chains=" ETH, Polygon ,")
        assert item.wallet_address == "0xabc"
        assert item.supported_chains == ["eth", "polygon"]

    def test_empty_chain_list_is_none(self):
        assert ASWalletCreateItem(wallet_address="0xabc", supported_chains=[" "]).supported_chains is None

    def test_token_upper_cased(self):
        assert ASBalanceItem(token=" usdc ", quantity=Decimal("1")).token == "USDC"

    def test_invalid_token(self):
        with pytest.raises(ValidationError):
            ASBalanceItem(token="bad token", quantity=Decimal("1"))

    @pytest.mark.parametrize("field", ["quantity", "value_usd"])
    def test_negative_amounts_rejected(self, field):
        values = {"token": "ETH", "quantity": Decimal("1"), field: Decimal("-1")}
        with pytest.raises(ValidationError):
            ASBalanceItem(**values)

    def test_recorded_at_parsed_to_utc(self):
        item = ASBalanceItem(token="ETH", quantity=Decimal("1"), recorded_at="2026-03-01T10:00:00+02:00")
        assert item.recorded_at == datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def test_failed_sync_needs_message(self):
        with pytest.raises(ValidationError):
            ASSyncResultItem(status=SyncStatus.FAILED)
        assert ASSyncResultItem(status=SyncStatus.FAILED, error_message=" timeout ").error_message == "timeout"

    def test_currency_codes(self):
        assert normalize_currency_code(" brl ") == "BRL"
        with pytest.raises(ValueError):
            normalize_currency_code("ETH")


# ============================================================================
# TESTS: Allocation schemas
# ============================================================================

class TestAllocationSchemas:
    """Test allocation create/update payloads."""

    def test_create_defaults(self):
        item = ALCreateItem(
            client_id=1,
            asset_kind=AssetKind.WALLET,
            asset_id=2,
            allocation_type=AllocationType.PERCENTAGE,
            allocation_value=Decimal("60"),
            )
        assert item.start_date is None
        assert item.asset_ref == AssetRef(kind=AssetKind.WALLET, id=2)
        assert item.effective_start().tzinfo is not None

    def test_create_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            ALCreateItem(
                client_id=1,
                asset_kind="WALLET",
                asset_id=2,
                allocation_type="PERCENTAGE",
                allocation_value="60",
                wallet_id=2,
                )

    def test_update_requires_a_field(self):
        with pytest.raises(ValidationError):
            ALUpdateItem()
        assert ALUpdateItem(notes=None).model_fields_set == {"notes"}


# ============================================================================
# TESTS: Client / configuration schemas
# ============================================================================

class TestClientAndConfigSchemas:

    def test_email_lower_cased(self):
        assert CLCreateItem(name="Alice", email="Alice@Example.com").email == "alice@example.com"

    @pytest.mark.parametrize("email", ["alice", "@example.com", "alice@"])
    def test_invalid_email(self, email):
        with pytest.raises(ValidationError):
            CLCreateItem(name="Alice", email=email)

    def test_config_defaults(self):
        snapshot = ConfigSnapshot()
        assert snapshot.drift_threshold_pct == Decimal("10")
        assert snapshot.percentage_warning_pct == Decimal("90")
        assert snapshot.large_transaction_threshold_usd == Decimal("10000")
        assert snapshot.price_change_threshold_pct == Decimal("20")

    @pytest.mark.parametrize("values", [
        {"drift_threshold_pct": Decimal("-1")},
        {"low_balance_threshold_usd": Decimal("-1")},
        {"sync_stale_hours": 0},
        {"percentage_warning_pct": Decimal("101")},
        ])
    def test_config_bounds(self, values):
        with pytest.raises(ValidationError):
            ConfigSnapshot(**values)


def test_quantize_money_half_even():
    assert quantize_money(Decimal("0.0000005")) == Decimal("0.000000")
    assert quantize_money(Decimal("0.0000015")) == Decimal("0.000002")
    assert quantize_money(Decimal("600")) == Decimal("600.000000")
