"""asset transactions

Revision ID: 002_asset_transactions
Revises: 001_initial
Create Date: 2026-10-17

Tables: asset_transactions (movements feeding LARGE_TRANSACTION alerts).
Must stay in sync with backend/app/db/models.py
(backend/test_scripts/test_db/test_migration_schema.py compares them).
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = '002_asset_transactions'
down_revision: Union[str, Sequence[str], None] = '001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create asset_transactions."""
    conn = op.get_bind()

    print("Starting migration 002_asset_transactions...")

    print("Creating table: asset_transactions...")
    conn.execute(sa.text("""CREATE TABLE asset_transactions
                            (
                                id               INTEGER PRIMARY KEY,
                                asset_kind       VARCHAR(7)      NOT NULL,
                                asset_id         INTEGER         NOT NULL,
                                direction        VARCHAR(8)      NOT NULL,
                                token            VARCHAR         NOT NULL,
                                chain            VARCHAR,
                                tx_hash          VARCHAR,
                                amount           NUMERIC(38, 18) NOT NULL,
                                amount_usd       NUMERIC(18, 6),
                                category         VARCHAR,
                                description      TEXT,
                                is_manual_entry  BOOLEAN         NOT NULL,
                                transaction_date DATETIME        NOT NULL,
                                created_at       DATETIME        NOT NULL,
                                CONSTRAINT uq_asset_transactions_asset_hash UNIQUE (asset_kind, asset_id, tx_hash),
                                CONSTRAINT ck_asset_transactions_amount_positive CHECK (amount > 0)
                            )"""))
    conn.execute(sa.text(
        "CREATE INDEX idx_asset_transactions_asset_date ON asset_transactions (asset_kind, asset_id, transaction_date)"
        ))

    print("Migration 002_asset_transactions completed")


def downgrade() -> None:
    """Drop asset_transactions."""
    op.drop_table("asset_transactions")
