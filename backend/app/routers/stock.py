"""Stock ledger router.

Endpoints (mounted under /api/stock):
    POST   /{theater_id}/{product_id}                  Add a stock entry
    GET    /{theater_id}/{product_id}?year=&month=     Month's entries + statistics
    PUT    /{theater_id}/{product_id}/{entry_id}       Partial update of an entry
    DELETE /{theater_id}/{product_id}/{entry_id}       Delete an entry (?year=&month=)
    DELETE /{theater_id}/{product_id}/clear-month      Delete a month's entries
    GET    /{theater_id}/{product_id}/current          Current stock
    POST   /{theater_id}/{product_id}/consume          FIFO sale / damage
    PATCH  /{theater_id}/{product_id}/min-level        Low-stock threshold
    GET    /{theater_id}/{product_id}/alerts           Stock and expiry alerts
    GET    /{theater_id}/{product_id}/export           Monthly report as CSV
    GET    /{theater_id}                               Every ledger of a theater
    GET    /{theater_id}/export                        Every product's month as CSV (?year=&month=)

Theater ids come from the path and are checked against the caller's token
by `require_theater_access`.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import Principal, require_permission, require_theater_access
from app.database import get_db
from app.models.stock import StockEntry
from app.schemas.stock import (
    AllocationOut,
    ConsumptionRequest,
    ConsumptionResponse,
    CurrentStockResponse,
    EntryDeletedResponse,
    LedgerOverviewOut,
    MonthlyPeriodSummaryOut,
    PeriodClearedResponse,
    PeriodOut,
    StockAlertOut,
    StockEntryCreate,
    StockEntryOut,
    StockEntryUpdate,
    StockLedgerOut,
    StockPeriodResponse,
    UpdateMinStockRequest,
)
from app.services.aggregation import Period
from app.services.expiry import available_quantity, is_expired
from app.services.ledger import LedgerService
from app.utils.clock import Clock, now_local

router = APIRouter()


# ── Dependencies ────────────────────────────────────────────

def get_clock() -> Clock:
    """Business-local clock; overridden in tests."""
    return now_local


# ── Helpers ──────────────────────────────────────────────────

def _entry_out(entry: StockEntry, as_of: datetime | None = None) -> StockEntryOut:
    out = StockEntryOut.model_validate(entry)
    if as_of is not None:
        out.available = available_quantity(entry, as_of)
        out.is_expired = is_expired(entry, as_of)
    return out


def _period_out(period: Period) -> PeriodOut:
    return PeriodOut(year=period.year, month=period.month, label=period.label)


def _csv_response(csv_text: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── POST /api/stock/{theater_id}/{product_id} ───────────────

@router.post("/{theater_id}/{product_id}", response_model=StockEntryOut, status_code=201)
async def add_stock_entry(
    body: StockEntryCreate,
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("stock.write")),
    clock: Clock = Depends(get_clock),
):
    """Record a stock-in movement."""
    service = LedgerService(db, principal=principal, clock=clock)
    entry = await service.add_entry(
        theater_id,
        product_id,
        entry_date=body.entry_date,
        quantity=body.quantity,
        used_stock=body.used_stock,
        damage_stock=body.damage_stock,
        expire_date=body.expire_date,
        batch_number=body.batch_number,
        notes=body.notes,
    )
    return _entry_out(entry, clock())


# ── GET /api/stock/{theater_id} ─────────────────────────────

@router.get("/{theater_id}", response_model=list[LedgerOverviewOut])
async def list_ledgers(
    as_of: datetime | None = Query(None, alias="asOf"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission("stock.read")),
    clock: Clock = Depends(get_clock),
):
    """Current stock for every product that has a ledger in this theater."""
    service = LedgerService(db, clock=clock)
    overview = await service.list_ledgers(theater_id, as_of)
    return [LedgerOverviewOut.model_validate(o) for o in overview]


# ── GET /api/stock/{theater_id}/export ──────────────────────
# Declared before the product routes so "export" is not read as a product id.

@router.get("/{theater_id}/export")
async def export_theater_monthly_stock(
    year: int = Query(..., ge=1, le=9998),
    month: int = Query(..., ge=1, le=12),
    as_of: datetime | None = Query(None, alias="asOf"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission("reports.export")),
    clock: Clock = Depends(get_clock),
):
    """Download the month's figures for every product of the theater as CSV."""
    service = LedgerService(db, clock=clock)
    filename, csv_text = await service.export_theater_monthly_csv(
        theater_id, year, month, as_of,
    )
    return _csv_response(csv_text, filename)


# ── GET /api/stock/{theater_id}/{product_id} ────────────────

@router.get("/{theater_id}/{product_id}", response_model=StockPeriodResponse)
async def get_monthly_stock(
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    year: int | None = Query(None, ge=1, le=9998),
    month: int | None = Query(None, ge=1, le=12),
    as_of: datetime | None = Query(None, alias="asOf"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission("stock.read")),
    clock: Clock = Depends(get_clock),
):
    """Entries dated in the month, the month's statistics and current stock.

    Defaults to the current month.  Nothing is written: expiry is evaluated
    against `asOf` (default now) on every call.
    """
    service = LedgerService(db, clock=clock)
    today = clock().date()
    view = await service.get_period_view(
        theater_id, product_id, year or today.year, month or today.month, as_of,
    )
    return StockPeriodResponse(
        entries=[_entry_out(e, view.as_of) for e in view.entries],
        current_stock=view.current_stock,
        statistics=MonthlyPeriodSummaryOut.model_validate(view.summary),
        period=_period_out(view.period),
        as_of=view.as_of,
    )


# ── GET /api/stock/{theater_id}/{product_id}/current ────────

@router.get("/{theater_id}/{product_id}/current", response_model=CurrentStockResponse)
async def get_current_stock(
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    as_of: datetime | None = Query(None, alias="asOf"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission("stock.read")),
    clock: Clock = Depends(get_clock),
):
    service = LedgerService(db, clock=clock)
    moment = service.resolve_as_of(as_of)
    current = await service.get_current_stock(theater_id, product_id, moment)
    return CurrentStockResponse(
        theater_id=theater_id,
        product_id=product_id,
        current_stock=current,
        as_of=moment,
    )


# ── GET /api/stock/{theater_id}/{product_id}/alerts ─────────

@router.get("/{theater_id}/{product_id}/alerts", response_model=list[StockAlertOut])
async def get_stock_alerts(
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    as_of: datetime | None = Query(None, alias="asOf"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission("stock.read")),
    clock: Clock = Depends(get_clock),
):
    """Out-of-stock, low-stock and near-expiry alerts for one product."""
    service = LedgerService(db, clock=clock)
    alerts = await service.get_alerts(theater_id, product_id, as_of)
    return [StockAlertOut.model_validate(a) for a in alerts]


# ── GET /api/stock/{theater_id}/{product_id}/export ─────────

@router.get("/{theater_id}/{product_id}/export")
async def export_monthly_stock(
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    year: int = Query(..., ge=1, le=9998),
    month: int = Query(..., ge=1, le=12),
    as_of: datetime | None = Query(None, alias="asOf"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission("reports.export")),
    clock: Clock = Depends(get_clock),
):
    """Download the month's entries and statistics as CSV."""
    service = LedgerService(db, clock=clock)
    filename, csv_text = await service.export_monthly_csv(
        theater_id, product_id, year, month, as_of,
    )
    return _csv_response(csv_text, filename)


# ── POST /api/stock/{theater_id}/{product_id}/consume ───────

@router.post("/{theater_id}/{product_id}/consume", response_model=ConsumptionResponse)
async def consume_stock(
    body: ConsumptionRequest,
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("stock.write")),
    clock: Clock = Depends(get_clock),
):
    """Record sold or damaged units against the oldest unexpired stock."""
    service = LedgerService(db, principal=principal, clock=clock)
    result = await service.record_consumption(
        theater_id, product_id, body.quantity, on_date=body.on_date, kind=body.kind,
    )
    return ConsumptionResponse(
        kind=result.kind,
        quantity=result.quantity,
        on_date=result.on_date,
        allocations=[AllocationOut.model_validate(a) for a in result.allocations],
        current_stock=result.current_stock,
    )


# ── PATCH /api/stock/{theater_id}/{product_id}/min-level ────

@router.patch("/{theater_id}/{product_id}/min-level", response_model=StockLedgerOut)
async def update_min_stock_level(
    body: UpdateMinStockRequest,
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("stock.write")),
):
    """Update the low-stock alert threshold."""
    service = LedgerService(db, principal=principal)
    ledger = await service.set_min_stock_level(theater_id, product_id, body.min_stock_level)
    return StockLedgerOut.model_validate(ledger)


# ── DELETE /api/stock/{theater_id}/{product_id}/clear-month ─
# Declared before the entry delete route so "clear-month" is not read as an id.

@router.delete("/{theater_id}/{product_id}/clear-month", response_model=PeriodClearedResponse)
async def clear_month(
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    year: int = Query(..., ge=1, le=9998),
    month: int = Query(..., ge=1, le=12),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("stock.delete")),
):
    """Delete every entry dated in the month. Later months re-derive from the rest."""
    service = LedgerService(db, principal=principal)
    cleared = await service.clear_period(theater_id, product_id, year, month)
    period = Period(year, month)
    return PeriodClearedResponse(
        message=f"Cleared {cleared} entries from {period.label}",
        cleared_count=cleared,
        period=_period_out(period),
    )


# ── PUT /api/stock/{theater_id}/{product_id}/{entry_id} ─────

@router.put("/{theater_id}/{product_id}/{entry_id}", response_model=StockEntryOut)
async def update_stock_entry(
    body: StockEntryUpdate,
    entry_id: str,
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("stock.write")),
    clock: Clock = Depends(get_clock),
):
    """Change only the fields sent; the month figures re-derive on the next read."""
    service = LedgerService(db, principal=principal, clock=clock)
    entry = await service.update_entry(
        theater_id, product_id, entry_id, body.model_dump(exclude_unset=True),
    )
    return _entry_out(entry, clock())


# ── DELETE /api/stock/{theater_id}/{product_id}/{entry_id} ──

@router.delete("/{theater_id}/{product_id}/{entry_id}", response_model=EntryDeletedResponse)
async def delete_stock_entry(
    entry_id: str,
    product_id: str = Path(..., max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    year: int = Query(..., ge=1, le=9998),
    month: int = Query(..., ge=1, le=12),
    theater_id: str = Depends(require_theater_access),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("stock.delete")),
):
    service = LedgerService(db, principal=principal)
    period = await service.delete_entry(theater_id, product_id, entry_id, year, month)
    return EntryDeletedResponse(
        message="Stock entry deleted",
        entry_id=entry_id,
        period=_period_out(period),
    )
