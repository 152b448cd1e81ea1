"""
Database base module.
SQLModel base classes and metadata.
Import all models here so Alembic can detect them.
"""
from sqlmodel import SQLModel

# Import all models so Alembic can detect them
from backend.app.db.models import (
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

__all__ = [
    "SQLModel",
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
