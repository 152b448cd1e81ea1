"""
Runtime configuration service.

Builds the ConfigSnapshot handed to services: defaults come from Settings, rows
of system_configurations override them. The snapshot is loaded once per request,
so a request never sees two different thresholds.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import get_settings
from backend.app.db.models import SystemConfiguration
from backend.app.logging_config import get_logger
from backend.app.schemas.system import (
    ConfigSnapshot,
    SYConfigItem,
    DRIFT_THRESHOLD_KEY,
    LOW_BALANCE_THRESHOLD_KEY,
    SYNC_STALE_HOURS_KEY,
    PERCENTAGE_WARNING_KEY,
    LARGE_TRANSACTION_THRESHOLD_KEY,
    PRICE_CHANGE_THRESHOLD_KEY,
    )
from backend.app.services.errors import ValidationError
from backend.app.services.result import ServiceResult
from backend.app.utils.datetime_utils import utcnow

logger = get_logger(__name__)

# key -> (parser, description)
_KNOWN_KEYS = {
    DRIFT_THRESHOLD_KEY: (Decimal, "Absolute drift (percentage points) above which an ALLOCATION_DRIFT alert is raised"),
    LOW_BALANCE_THRESHOLD_KEY: (Decimal, "Asset value (reporting currency) below which a BALANCE_LOW alert is raised"),
    SYNC_STALE_HOURS_KEY: (int, "Hours without a successful sync before a SYNC_FAILURE alert is raised"),
    PERCENTAGE_WARNING_KEY: (Decimal, "Total PERCENTAGE allocation above which validation emits a warning"),
    LARGE_TRANSACTION_THRESHOLD_KEY: (Decimal, "Transaction value (reporting currency) above which a LARGE_TRANSACTION alert is raised"),
    PRICE_CHANGE_THRESHOLD_KEY: (Decimal, "Unit price move (percent) between two syncs above which a PRICE_CHANGE alert is raised"),
    }


def default_config_snapshot() -> ConfigSnapshot:
    """Snapshot built from Settings only."""
    settings = get_settings()
    return ConfigSnapshot(
        drift_threshold_pct=settings.DRIFT_THRESHOLD_PCT,
        low_balance_threshold_usd=settings.LOW_BALANCE_THRESHOLD_USD,
        sync_stale_hours=settings.SYNC_STALE_HOURS,
        percentage_warning_pct=settings.PERCENTAGE_WARNING_PCT,
        large_transaction_threshold_usd=settings.LARGE_TRANSACTION_THRESHOLD_USD,
        price_change_threshold_pct=settings.PRICE_CHANGE_THRESHOLD_PCT,
        )


def _parse_value(key: str, raw: str):
    parser, _ = _KNOWN_KEYS[key]
    try:
        return parser(raw.strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid value '{raw}' for '{key}'") from e


async def load_config_snapshot(session: AsyncSession) -> ConfigSnapshot:
    """
    Load the runtime configuration once.

    Unknown keys are ignored; a stored value that does not parse falls back to the
    default and is logged (a bad row must not take the engine down).
    """
    defaults = default_config_snapshot()
    result = await session.execute(select(SystemConfiguration))
    overrides = {}
    for row in result.scalars().all():
        if row.key not in _KNOWN_KEYS:
            continue
        try:
            overrides[row.key] = _parse_value(row.key, row.value)
        except ValueError as e:
            logger.warning("Ignoring invalid configuration value", key=row.key, value=row.value, error=str(e))

    if not overrides:
        return defaults
    try:
        return ConfigSnapshot.model_validate({**defaults.model_dump(), **overrides})
    except ValueError as e:
        logger.warning("Configuration overrides out of range, using defaults", error=str(e))
        return defaults


class SystemConfigService:
    """
    Read and upsert system_configurations rows.

    The caller is responsible for commit/rollback.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_items(self) -> Dict[str, SYConfigItem]:
        result = await self.session.execute(select(SystemConfiguration).order_by(SystemConfiguration.key))
        return {row.key: SYConfigItem.from_db_model(row) for row in result.scalars().all()}

    async def update(self, settings: Dict[str, str]) -> ServiceResult[List[SYConfigItem]]:
        """
        Upsert configuration values.

        Known keys are parsed and range-checked against ConfigSnapshot before
        anything is written; unknown keys are stored as-is.

        Returns:
            ServiceResult with the written rows, ValidationError on bad values
        """
        candidate = (await load_config_snapshot(self.session)).model_dump()
        for key, value in settings.items():
            if not key or not key.strip():
                return ServiceResult.fail(ValidationError("Configuration key cannot be empty"))
            if key in _KNOWN_KEYS:
                try:
                    candidate[key] = _parse_value(key, value)
                except ValueError as e:
                    return ServiceResult.fail(ValidationError(str(e), {"key": key}))
        try:
            ConfigSnapshot.model_validate(candidate)
        except ValueError as e:
            return ServiceResult.fail(ValidationError("Configuration value out of range", {"error": str(e)}))

        written: List[SYConfigItem] = []
        for key, value in settings.items():
            row = await self.session.get(SystemConfiguration, key)
            if row is None:
                description = _KNOWN_KEYS[key][1] if key in _KNOWN_KEYS else None
                row = SystemConfiguration(key=key, value=value.strip(), description=description)
                self.session.add(row)
            else:
                row.value = value.strip()
                row.updated_at = utcnow()
            written.append(row)
        await self.session.flush()

        logger.info("System configuration updated", keys=sorted(settings.keys()))
        return ServiceResult.ok([SYConfigItem.from_db_model(row) for row in written])
