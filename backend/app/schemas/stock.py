"""Pydantic schemas for the stock ledger API.

Wire format is camelCase (`usedStock`, `expireDate`, ...); Python code uses
snake_case field names.  The entry date travels as `date`.
"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.stock import StockEntryType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ── Entry writes ────────────────────────────────────────────

class StockEntryCreate(CamelModel):
    """Payload for POST /api/stock/{theaterId}/{productId}."""
    model_config = ConfigDict(extra="forbid")

    entry_date: date = Field(..., alias="date")
    quantity: int
    used_stock: int = 0
    damage_stock: int = 0
    expire_date: date | None = None
    batch_number: str | None = Field(None, max_length=100)
    notes: str | None = None


class StockEntryUpdate(CamelModel):
    """Partial update; only the fields sent are changed."""
    model_config = ConfigDict(extra="forbid")

    entry_date: date | None = Field(None, alias="date")
    quantity: int | None = None
    used_stock: int | None = None
    damage_stock: int | None = None
    expire_date: date | None = None
    batch_number: str | None = Field(None, max_length=100)
    notes: str | None = None


# ── Entry reads ─────────────────────────────────────────────

class StockEntryOut(CamelModel):
    id: str
    theater_id: str
    product_id: str
    entry_date: date = Field(..., alias="date")
    entry_type: StockEntryType = Field(..., alias="type")
    quantity_added: int
    used_stock: int
    damage_stock: int
    expire_date: date | None = None
    batch_number: str | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Evaluated against the request's asOf
    available: int | None = None
    is_expired: bool | None = None


# ── Period report ───────────────────────────────────────────

class PeriodOut(CamelModel):
    year: int
    month: int
    label: str


class MonthlyPeriodSummaryOut(CamelModel):
    year: int
    month: int
    opening_balance: int
    total_added: int
    total_used: int
    total_damaged: int
    total_expired: int
    expired_carryover: int
    closing_balance: int
    entry_count: int


class StockPeriodResponse(CamelModel):
    """GET /api/stock/{theaterId}/{productId}?year=&month="""
    entries: list[StockEntryOut]
    current_stock: int
    statistics: MonthlyPeriodSummaryOut
    period: PeriodOut
    as_of: datetime


class CurrentStockResponse(CamelModel):
    theater_id: str
    product_id: str
    current_stock: int
    as_of: datetime


# ── Deletes ─────────────────────────────────────────────────

class EntryDeletedResponse(CamelModel):
    message: str
    entry_id: str
    period: PeriodOut


class PeriodClearedResponse(CamelModel):
    message: str
    cleared_count: int
    period: PeriodOut


# ── Consumption ─────────────────────────────────────────────

class ConsumptionRequest(CamelModel):
    """Record sold or damaged units, taken from the oldest stock first."""
    quantity: int
    on_date: date | None = Field(None, alias="date")
    kind: Literal["sale", "damage"] = "sale"


class AllocationOut(CamelModel):
    entry_id: str
    entry_date: date = Field(..., alias="date")
    batch_number: str | None = None
    quantity: int


class ConsumptionResponse(CamelModel):
    kind: str
    quantity: int
    on_date: date = Field(..., alias="date")
    allocations: list[AllocationOut]
    current_stock: int


# ── Ledger header ───────────────────────────────────────────

class UpdateMinStockRequest(CamelModel):
    min_stock_level: int = Field(..., ge=0)


class StockLedgerOut(CamelModel):
    id: str
    theater_id: str
    product_id: str
    min_stock_level: int
    version: int
    updated_at: datetime | None = None


class LedgerOverviewOut(CamelModel):
    product_id: str
    current_stock: int
    min_stock_level: int
    entry_count: int
    is_low: bool


# ── Alerts ──────────────────────────────────────────────────

class StockAlertOut(CamelModel):
    alert_type: str
    severity: str
    message: str
    current_value: int
    threshold: int | None = None
    entry_id: str | None = None
    expire_date: date | None = None
    expires_at: datetime | None = None
