"""Per-product stock ledger.

StockLedger is the header row for one (theater, product) pair.  It holds
the low-stock threshold and the optimistic-lock version, and it is the row
locked while a mutation runs against the ledger.

StockEntry records one stock-in movement.  Consumption and damage are
counters on the entry they were taken from; expiry is never stored, it is
derived from `expire_date` at query time.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class StockEntryType(str, enum.Enum):
    ADDED = "ADDED"


class StockLedger(Base):
    """One ledger per (theater, product)."""
    __tablename__ = "stock_ledgers"
    __table_args__ = (
        UniqueConstraint("theater_id", "product_id", name="uq_stock_ledgers_scope"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    theater_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Low-stock alert threshold
    min_stock_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Bumped by every mutation; a stale version on flush raises StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}


class StockEntry(Base):
    """A stock-in movement and the counters consumed against it."""
    __tablename__ = "stock_entries"
    __table_args__ = (
        CheckConstraint("quantity_added >= 0", name="ck_stock_entries_quantity"),
        CheckConstraint("used_stock >= 0", name="ck_stock_entries_used"),
        CheckConstraint("damage_stock >= 0", name="ck_stock_entries_damage"),
        CheckConstraint(
            "used_stock + damage_stock <= quantity_added",
            name="ck_stock_entries_conservation",
        ),
        Index("ix_stock_entries_scope_date", "theater_id", "product_id", "entry_date"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    ledger_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_ledgers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    # Denormalised scope so entry lookups never need the header join
    theater_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_type: Mapped[StockEntryType] = mapped_column(
        SAEnum(StockEntryType, name="stock_entry_type"),
        default=StockEntryType.ADDED, nullable=False,
    )

    quantity_added: Mapped[int] = mapped_column(Integer, nullable=False)
    used_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    damage_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Stock is written off at 00:01 on the day after this date
    expire_date: Mapped[date | None] = mapped_column(Date)

    batch_number: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(36))  # principal id
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    ledger = relationship("StockLedger", lazy="raise")
