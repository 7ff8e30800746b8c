"""Aggregate model imports for Alembic auto-detection."""

from app.models.stock import StockEntry, StockEntryType, StockLedger  # noqa: F401
from app.models.activity_log import ActivityLog  # noqa: F401
