"""
Database module exports.
"""
from backend.app.db.base import (
    SQLModel,
    # Enums
    ClientStatus,
    AssetKind,
    AssetStatus,
    SyncStatus,
    AllocationType,
    TransactionDirection,
    AlertType,
    AlertSeverity,
    AlertStatus,
    # Models
    Client,
    CustodyWallet,
    TraditionalAccount,
    AssetBalance,
    AssetTransaction,
    ClientAssetAllocation,
    RebalancingAlert,
    SystemConfiguration,
    )
from backend.app.db.session import get_sync_engine, get_async_engine, get_session_generator, unit_of_work

__all__ = [
    "SQLModel",
    "get_sync_engine",  # For sync scripts (migrations, checks)
    "get_async_engine",  # For async FastAPI app
    "get_session_generator",
    "unit_of_work",
    # Enums
    "ClientStatus",
    "AssetKind",
    "AssetStatus",
    "SyncStatus",
    "AllocationType",
    "TransactionDirection",
    "AlertType",
    "AlertSeverity",
    "AlertStatus",
    # Models
    "Client",
    "CustodyWallet",
    "TraditionalAccount",
    "AssetBalance",
    "AssetTransaction",
    "ClientAssetAllocation",
    "RebalancingAlert",
    "SystemConfiguration",
    ]
