"""
System (SY) schemas: runtime configuration.

ConfigSnapshot is the immutable view of the runtime knobs handed to services
once per request. It merges Settings defaults with system_configurations rows.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict

from pydantic import BaseModel, Field, ConfigDict

from backend.app.db.models import SystemConfiguration
from backend.app.utils.datetime_utils import as_utc

# system_configurations keys understood by the engine
DRIFT_THRESHOLD_KEY = "drift_threshold_pct"
LOW_BALANCE_THRESHOLD_KEY = "low_balance_threshold_usd"
SYNC_STALE_HOURS_KEY = "sync_stale_hours"
PERCENTAGE_WARNING_KEY = "percentage_warning_pct"
LARGE_TRANSACTION_THRESHOLD_KEY = "large_transaction_threshold_usd"
PRICE_CHANGE_THRESHOLD_KEY = "price_change_threshold_pct"


class ConfigSnapshot(BaseModel):
    """Runtime knobs, frozen for the duration of a request."""
    model_config = ConfigDict(frozen=True)

    drift_threshold_pct: Decimal = Field(default=Decimal("10"), ge=0)
    low_balance_threshold_usd: Decimal = Field(default=Decimal("1000"), ge=0)
    sync_stale_hours: int = Field(default=24, gt=0)
    percentage_warning_pct: Decimal = Field(default=Decimal("90"), gt=0, le=100)
    large_transaction_threshold_usd: Decimal = Field(default=Decimal("10000"), gt=0)
    price_change_threshold_pct: Decimal = Field(default=Decimal("20"), gt=0)


class SYConfigItem(BaseModel):
    key: str
    value: str
    description: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_db_model(cls, config: SystemConfiguration) -> 'SYConfigItem':
        return cls(
            key=config.key,
            value=config.value,
            description=config.description,
            updated_at=as_utc(config.updated_at),
            )


class SYConfigResponse(BaseModel):
    """Stored rows plus the effective snapshot after defaults are applied."""
    settings: Dict[str, SYConfigItem] = Field(default_factory=dict)
    effective: ConfigSnapshot


class SYConfigUpdateItem(BaseModel):
    """Upsert of configuration values (key -> value as text)."""
    model_config = ConfigDict(extra="forbid")

    settings: Dict[str, str] = Field(..., min_length=1)
