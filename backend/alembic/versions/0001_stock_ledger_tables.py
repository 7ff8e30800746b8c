"""Create stock ledger, stock entry and activity log tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "stock_ledgers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("theater_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("theater_id", "product_id", name="uq_stock_ledgers_scope"),
    )
    op.create_index("ix_stock_ledgers_theater_id", "stock_ledgers", ["theater_id"])

    op.create_table(
        "stock_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ledger_id", sa.String(36),
            sa.ForeignKey("stock_ledgers.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("theater_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column(
            "entry_type",
            sa.Enum("ADDED", name="stock_entry_type"),
            nullable=False, server_default="ADDED",
        ),
        sa.Column("quantity_added", sa.Integer(), nullable=False),
        sa.Column("used_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("damage_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expire_date", sa.Date()),
        sa.Column("batch_number", sa.String(100)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("quantity_added >= 0", name="ck_stock_entries_quantity"),
        sa.CheckConstraint("used_stock >= 0", name="ck_stock_entries_used"),
        sa.CheckConstraint("damage_stock >= 0", name="ck_stock_entries_damage"),
        sa.CheckConstraint(
            "used_stock + damage_stock <= quantity_added",
            name="ck_stock_entries_conservation",
        ),
    )
    op.create_index("ix_stock_entries_ledger_id", "stock_entries", ["ledger_id"])
    op.create_index(
        "ix_stock_entries_scope_date", "stock_entries",
        ["theater_id", "product_id", "entry_date"],
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36)),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("theater_id", sa.String(64), nullable=False),
        sa.Column("product_id", sa.String(64)),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_theater_id", "activity_logs", ["theater_id"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("stock_entries")
    op.drop_table("stock_ledgers")
    sa.Enum(name="stock_entry_type").drop(op.get_bind(), checkfirst=True)
