"""
Pydantic schemas for CustodyFolio.

Used across multiple subsystems (DB, API, Services) to validate data structures
and standardize data exchange between components.

**Organization by Domain**:
- common.py: Shared schemas (AssetRef, ErrorResponse, DateTimeRangeModel)
- assets.py: Wallet/account registration, AssetView, balances, sync results
- allocations.py: Allocation ledger CRUD, validation and conflicts
- portfolio.py: Portfolio snapshots and overview
- alerts.py: Drift and rebalancing alert schemas
- clients.py: Minimal client create/read
- system.py: Runtime configuration and ConfigSnapshot
- transactions.py: Movements recorded on assets

**Naming Conventions**:
- AS prefix: Assets
- AL prefix: Allocations
- RB prefix: Rebalancing alerts
- CL prefix: Clients
- SY prefix: System configuration
- TX prefix: Transactions
"""
from backend.app.schemas.common import (
    AssetRef,
    ErrorResponse,
    DateTimeRangeModel,
    )
from backend.app.schemas.assets import (
    AssetView,
    ASWalletCreateItem,
    ASAccountCreateItem,
    ASQueryParams,
    ASBalanceItem,
    ASBalanceReadItem,
    ASAssetValue,
    ASSyncResultItem,
    ASSyncResponse,
    )
from backend.app.schemas.allocations import (
    ALCreateItem,
    ALValidateItem,
    ALUpdateItem,
    ALEndItem,
    ALReadItem,
    ALQueryParams,
    ALListResponse,
    ALValidationResult,
    ALConflict,
    ALConflictingAllocation,
    )
from backend.app.schemas.portfolio import (
    AllocationValuation,
    ClientPortfolioSnapshot,
    PortfolioOverview,
    PFAssetKindTotals,
    )
from backend.app.schemas.alerts import (
    DriftTarget,
    AllocationDrift,
    RBDriftRequest,
    RBDriftResponse,
    RBReadItem,
    RBResolveItem,
    RBQueryParams,
    RBListResponse,
    RBSummary,
    RBScanResult,
    )
from backend.app.schemas.clients import (
    CLCreateItem,
    CLStatusItem,
    CLReadItem,
    )
from backend.app.schemas.system import (
    ConfigSnapshot,
    SYConfigItem,
    SYConfigResponse,
    SYConfigUpdateItem,
    )
from backend.app.schemas.transactions import (
    TXCreateItem,
    TXReadItem,
    TXRecordResponse,
    )

__all__ = [
    # Common
    "AssetRef",
    "ErrorResponse",
    "DateTimeRangeModel",
    # Assets
    "AssetView",
    "ASWalletCreateItem",
    "ASAccountCreateItem",
    "ASQueryParams",
    "ASBalanceItem",
    "ASBalanceReadItem",
    "ASAssetValue",
    "ASSyncResultItem",
    "ASSyncResponse",
    # Allocations
    "ALCreateItem",
    "ALValidateItem",
    "ALUpdateItem",
    "ALEndItem",
    "ALReadItem",
    "ALQueryParams",
    "ALListResponse",
    "ALValidationResult",
    "ALConflict",
    "ALConflictingAllocation",
    # Portfolio
    "AllocationValuation",
    "ClientPortfolioSnapshot",
    "PortfolioOverview",
    "PFAssetKindTotals",
    # Alerts
    "DriftTarget",
    "AllocationDrift",
    "RBDriftRequest",
    "RBDriftResponse",
    "RBReadItem",
    "RBResolveItem",
    "RBQueryParams",
    "RBListResponse",
    "RBSummary",
    "RBScanResult",
    # Clients
    "CLCreateItem",
    "CLStatusItem",
    "CLReadItem",
    # System
    "ConfigSnapshot",
    "SYConfigItem",
    "SYConfigResponse",
    "SYConfigUpdateItem",
    # Transactions
    "TXCreateItem",
    "TXReadItem",
    "TXRecordResponse",
    ]
