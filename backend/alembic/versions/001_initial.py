"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Tables: clients, custody_wallets, traditional_accounts, asset_balances,
client_asset_allocations, rebalancing_alerts, system_configurations.
Must stay in sync with backend/app/db/models.py
(backend/test_scripts/test_db/test_migration_schema.py compares them).
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = '001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""
    conn = op.get_bind()

    print("Starting migration 001_initial...")

    print("Creating table: clients...")
    conn.execute(sa.text("""CREATE TABLE clients
                            (
                                id           INTEGER PRIMARY KEY,
                                name         VARCHAR     NOT NULL,
                                email        VARCHAR     NOT NULL,
                                document     VARCHAR,
                                phone_number VARCHAR,
                                status       VARCHAR(8)  NOT NULL,
                                notes        TEXT,
                                created_at   DATETIME    NOT NULL,
                                updated_at   DATETIME    NOT NULL
                            )"""))
    conn.execute(sa.text("CREATE UNIQUE INDEX ix_clients_email ON clients (email)"))

    print("Creating table: custody_wallets...")
    conn.execute(sa.text("""CREATE TABLE custody_wallets
                            (
                                id                  INTEGER PRIMARY KEY,
                                wallet_address      VARCHAR    NOT NULL,
                                label               VARCHAR,
                                blockchain_provider VARCHAR    NOT NULL,
                                supported_chains    TEXT,
                                status              VARCHAR(8) NOT NULL,
                                notes               TEXT,
                                last_sync_at        DATETIME,
                                sync_status         VARCHAR(7),
                                sync_error_message  TEXT,
                                created_at          DATETIME   NOT NULL,
                                updated_at          DATETIME   NOT NULL
                            )"""))
    conn.execute(sa.text("CREATE UNIQUE INDEX ix_custody_wallets_wallet_address ON custody_wallets (wallet_address)"))

    print("Creating table: traditional_accounts...")
    conn.execute(sa.text("""CREATE TABLE traditional_accounts
                            (
                                id                    INTEGER PRIMARY KEY,
                                provider_item_id      VARCHAR,
                                provider_account_id   VARCHAR,
                                account_type          VARCHAR,
                                institution_name      VARCHAR,
                                account_number        VARCHAR,
                                label                 VARCHAR,
                                open_finance_provider VARCHAR    NOT NULL,
                                status                VARCHAR(8) NOT NULL,
                                last_sync_at          DATETIME,
                                sync_status           VARCHAR(7),
                                sync_error_message    TEXT,
                                created_at            DATETIME   NOT NULL,
                                updated_at            DATETIME   NOT NULL
                            )"""))
    conn.execute(sa.text("CREATE INDEX ix_traditional_accounts_provider_item_id ON traditional_accounts (provider_item_id)"))

    print("Creating table: asset_balances...")
    conn.execute(sa.text("""CREATE TABLE asset_balances
                            (
                                id           INTEGER PRIMARY KEY,
                                asset_kind   VARCHAR(7)      NOT NULL,
                                asset_id     INTEGER         NOT NULL,
                                token        VARCHAR         NOT NULL,
                                chain        VARCHAR,
                                balance_type VARCHAR,
                                quantity     NUMERIC(38, 18) NOT NULL,
                                value_usd    NUMERIC(18, 6),
                                recorded_at  DATETIME        NOT NULL,
                                CONSTRAINT uq_asset_balances_asset_token_instant UNIQUE (asset_kind, asset_id, token, recorded_at)
                            )"""))
    conn.execute(sa.text(
        "CREATE INDEX idx_asset_balances_asset_token_recorded ON asset_balances (asset_kind, asset_id, token, recorded_at)"
        ))

    print("Creating table: client_asset_allocations...")
    conn.execute(sa.text("""CREATE TABLE client_asset_allocations
                            (
                                id               INTEGER PRIMARY KEY,
                                client_id        INTEGER        NOT NULL,
                                asset_kind       VARCHAR(7)     NOT NULL,
                                asset_id         INTEGER        NOT NULL,
                                allocation_type  VARCHAR(12)    NOT NULL,
                                allocation_value NUMERIC(18, 6) NOT NULL,
                                start_date       DATETIME       NOT NULL,
                                end_date         DATETIME,
                                notes            TEXT,
                                created_at       DATETIME       NOT NULL,
                                updated_at       DATETIME       NOT NULL,
                                CONSTRAINT ck_allocations_value_positive CHECK (allocation_value > 0),
                                FOREIGN KEY (client_id) REFERENCES clients (id)
                            )"""))
    conn.execute(sa.text("CREATE INDEX ix_client_asset_allocations_client_id ON client_asset_allocations (client_id)"))
    conn.execute(sa.text("CREATE INDEX idx_allocations_asset ON client_asset_allocations (asset_kind, asset_id, end_date)"))
    conn.execute(sa.text("CREATE INDEX idx_allocations_client_start ON client_asset_allocations (client_id, start_date)"))

    print("Creating table: rebalancing_alerts...")
    conn.execute(sa.text("""CREATE TABLE rebalancing_alerts
                            (
                                id               INTEGER PRIMARY KEY,
                                client_id        INTEGER,
                                asset_kind       VARCHAR(7),
                                asset_id         INTEGER,
                                alert_type       VARCHAR(17) NOT NULL,
                                severity         VARCHAR(8)  NOT NULL,
                                message          TEXT        NOT NULL,
                                alert_data       TEXT,
                                status           VARCHAR(12) NOT NULL,
                                resolution_notes TEXT,
                                created_at       DATETIME    NOT NULL,
                                acknowledged_at  DATETIME,
                                resolved_at      DATETIME,
                                dismissed_at     DATETIME,
                                updated_at       DATETIME    NOT NULL,
                                FOREIGN KEY (client_id) REFERENCES clients (id)
                            )"""))
    conn.execute(sa.text("CREATE INDEX ix_rebalancing_alerts_client_id ON rebalancing_alerts (client_id)"))
    conn.execute(sa.text("CREATE INDEX ix_rebalancing_alerts_status ON rebalancing_alerts (status)"))
    conn.execute(sa.text(
        "CREATE INDEX idx_alerts_dedup ON rebalancing_alerts (alert_type, client_id, asset_kind, asset_id, status)"
        ))

    print("Creating table: system_configurations...")
    conn.execute(sa.text("""CREATE TABLE system_configurations
                            (
                                key         VARCHAR  NOT NULL PRIMARY KEY,
                                value       VARCHAR  NOT NULL,
                                description TEXT,
                                updated_at  DATETIME NOT NULL
                            )"""))

    print("Migration 001_initial completed")


def downgrade() -> None:
    """Drop all tables (reverse dependency order)."""
    for table in (
        "system_configurations",
        "rebalancing_alerts",
        "client_asset_allocations",
        "asset_balances",
        "traditional_accounts",
        "custody_wallets",
        "clients",
    ):
        op.drop_table(table)
