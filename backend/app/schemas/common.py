"""
Common schemas shared across subsystems.

**Domain Coverage**:
- AssetRef: (kind, id) reference to either asset variant
- ErrorResponse: body of every 4xx/5xx answer produced from a CoreError
- DateTimeRangeModel: reusable datetime range for list filters
- Decimal helpers shared by valuation and drift DTOs
"""
# Postpones evaluation of type hints to improve imports and performance. Also avoid circular import issues.
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Optional, Any

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from backend.app.db.models import AssetKind
from backend.app.utils.datetime_utils import parse_ISO_datetime

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Scale of Numeric(18, 6) columns
MONEY_QUANT = Decimal("0.000001")


def quantize_money(value: Decimal) -> Decimal:
    """
    Round a money/percentage value to the 6 decimals stored in the database.

    Examples:
        >>> quantize_money(Decimal("600.0000004"))
        Decimal('600.000000')
    """
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_EVEN)


class AssetRef(BaseModel):
    """
    Reference to an asset of either variant.

    Hashable (frozen) so it can key dicts and sets.

    Examples:
        >>> AssetRef(kind=AssetKind.WALLET, id=3)
        >>> AssetRef.parse("WALLET:3")
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: AssetKind = Field(..., description="Asset variant (WALLET or ACCOUNT)")
    id: int = Field(..., gt=0, description="Asset ID inside its variant table")

    @classmethod
    def parse(cls, value: str) -> AssetRef:
        """Parse the 'KIND:ID' string form (used by the CLI)."""
        try:
            kind, raw_id = value.split(":", 1)
            return cls(kind=AssetKind(kind.strip().upper()), id=int(raw_id))
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid asset reference '{value}', expected KIND:ID (e.g. WALLET:3)") from e

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class ErrorResponse(BaseModel):
    """Error body returned by the API for every failed operation."""
    code: str = Field(..., description="Machine readable error code (VALIDATION_ERROR, NOT_FOUND, ...)")
    message: str = Field(..., description="Human readable message")
    details: Optional[dict[str, Any]] = Field(default=None, description="Extra context (never internals)")


class DateTimeRangeModel(BaseModel):
    """
    Datetime range with optional end (open range).

    Both bounds are inclusive and normalized to aware UTC datetimes.
    """
    model_config = ConfigDict(extra="forbid")

    start: datetime = Field(..., description="Range start (inclusive)")
    end: Optional[datetime] = Field(default=None, description="Range end (inclusive), None = open")

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_bounds(cls, v):
        if v is None:
            return v
        return parse_ISO_datetime(v)

    @model_validator(mode="after")
    def check_order(self):
        if self.end is not None and self.end < self.start:
            raise ValueError("end must be >= start")
        return self
