"""Ledger service — stock entry mutations and balance queries.

Every mutation runs inside `_ledger_scope`, which

  1. takes the in-process lock for the (theater, product) ledger,
     bounded by `settings.ledger_lock_timeout_seconds`,
  2. row-locks the ledger header in the database,
  3. runs the mutation and appends an activity log row,
  4. bumps the header version and commits before returning.

Reads take no locks: they load the ledger's committed entries and replay
them through a PeriodAggregator built for that one call, evaluating
expiry against the query time.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, AsyncIterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.middleware.exceptions import (
    StockConflictError,
    StockNotFoundError,
    StockValidationError,
)
from app.models.stock import StockEntry, StockEntryType, StockLedger
from app.services.aggregation import (
    LAST_LEDGER_DATE,
    MonthlyPeriodSummary,
    Period,
    PeriodAggregator,
)
from app.services.expiry import available_quantity
from app.services.stock_alerts import StockAlert, evaluate_alerts
from app.services.stock_store import StockEntryStore
from app.utils.activity import log_activity
from app.utils.clock import Clock, now_local, to_local
from app.utils.csv_export import (
    export_filename,
    render_monthly_csv,
    render_theater_monthly_csv,
    theater_export_filename,
)
from app.utils.locks import LedgerLockRegistry, ledger_locks

logger = logging.getLogger(__name__)

# Request field name → model attribute, for partial updates
UPDATABLE_FIELDS: dict[str, str] = {
    "entry_date": "entry_date",
    "quantity": "quantity_added",
    "quantity_added": "quantity_added",
    "used_stock": "used_stock",
    "damage_stock": "damage_stock",
    "expire_date": "expire_date",
    "batch_number": "batch_number",
    "notes": "notes",
}

_FIELD_LABELS = {
    "entry_date": "date",
    "quantity_added": "quantity",
    "used_stock": "usedStock",
    "damage_stock": "damageStock",
    "expire_date": "expireDate",
    "batch_number": "batchNumber",
    "notes": "notes",
}

CONSUMPTION_KINDS = ("sale", "damage")


# ── Result types ─────────────────────────────────────────────


@dataclass(frozen=True)
class Allocation:
    """Quantity taken from one entry by a FIFO consumption."""
    entry_id: str
    entry_date: date
    batch_number: str | None
    quantity: int


@dataclass
class ConsumptionResult:
    kind: str
    quantity: int
    on_date: date
    allocations: list[Allocation] = field(default_factory=list)
    current_stock: int = 0


@dataclass
class PeriodView:
    """Everything the monthly stock screen shows, from one replay."""
    period: Period
    as_of: datetime
    entries: list[StockEntry]
    summary: MonthlyPeriodSummary
    current_stock: int


@dataclass(frozen=True)
class LedgerOverview:
    product_id: str
    current_stock: int
    min_stock_level: int
    entry_count: int
    is_low: bool


@dataclass(frozen=True)
class ProductMonthReport:
    """One product's month inside a theater-wide report."""
    product_id: str
    summary: MonthlyPeriodSummary
    current_stock: int
    min_stock_level: int

    @property
    def is_low(self) -> bool:
        return self.current_stock <= self.min_stock_level


# ── Service ─────────────────────────────────────────────────


class LedgerService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        principal=None,
        clock: Clock = now_local,
        locks: LedgerLockRegistry = ledger_locks,
        lock_timeout: float | None = None,
    ):
        self.db = db
        self.store = StockEntryStore(db)
        self.principal = principal
        self.clock = clock
        self.locks = locks
        self.lock_timeout = (
            settings.ledger_lock_timeout_seconds if lock_timeout is None else lock_timeout
        )

    # ── Mutations ────────────────────────────────────────────

    async def add_entry(
        self,
        theater_id: str,
        product_id: str,
        entry_date: date,
        quantity: int,
        used_stock: int = 0,
        damage_stock: int = 0,
        expire_date: date | None = None,
        batch_number: str | None = None,
        notes: str | None = None,
    ) -> StockEntry:
        scope = {"theater_id": theater_id, "product_id": product_id}
        _require_date(entry_date, "date", scope)
        if expire_date is not None:
            _require_date(expire_date, "expireDate", scope)
        _require_int(quantity, "quantity", scope)
        if quantity <= 0:
            raise StockValidationError(
                "Quantity must be greater than 0", field="quantity", **scope,
            )
        _require_non_negative(used_stock, "usedStock", scope)
        _require_non_negative(damage_stock, "damageStock", scope)
        if used_stock + damage_stock > quantity:
            raise StockValidationError(
                f"Used ({used_stock}) plus damaged ({damage_stock}) stock "
                f"cannot exceed the quantity added ({quantity})",
                field="usedStock", **scope,
            )
        _check_expiry_order(entry_date, expire_date, scope)

        async with self._ledger_scope(theater_id, product_id) as ledger:
            entry = StockEntry(
                ledger_id=ledger.id,
                theater_id=theater_id,
                product_id=product_id,
                entry_date=entry_date,
                entry_type=StockEntryType.ADDED,
                quantity_added=quantity,
                used_stock=used_stock,
                damage_stock=damage_stock,
                expire_date=expire_date,
                batch_number=batch_number,
                notes=notes,
                created_by=self._actor_id,
            )
            await self.store.add_entry(entry)
            log_activity(
                self.db, self.principal,
                action="stock_added",
                theater_id=theater_id,
                product_id=product_id,
                entity_id=entry.id,
                summary=f"Added {quantity} units dated {entry_date.isoformat()}",
                details={"batchNumber": batch_number, "expireDate": _iso(expire_date)},
            )

        logger.info(
            "Stock entry %s added: theater=%s product=%s qty=%d date=%s",
            entry.id, theater_id, product_id, quantity, entry_date,
        )
        return entry

    async def update_entry(
        self,
        theater_id: str,
        product_id: str,
        entry_id: str,
        changes: dict[str, Any],
    ) -> StockEntry:
        scope = {"theater_id": theater_id, "product_id": product_id}
        updates = _normalise_changes(changes, scope)

        async with self._ledger_scope(theater_id, product_id):
            entry = await self._get_scoped_entry(theater_id, product_id, entry_id)

            merged = {
                attr: updates.get(attr, getattr(entry, attr))
                for attr in ("entry_date", "quantity_added", "used_stock",
                             "damage_stock", "expire_date")
            }
            if merged["used_stock"] + merged["damage_stock"] > merged["quantity_added"]:
                changed = next(
                    (a for a in ("used_stock", "damage_stock", "quantity_added") if a in updates),
                    "used_stock",
                )
                raise StockConflictError(
                    f"Used ({merged['used_stock']}) plus damaged "
                    f"({merged['damage_stock']}) stock would exceed the quantity "
                    f"added ({merged['quantity_added']})",
                    field=_FIELD_LABELS[changed], **scope,
                )
            _check_expiry_order(merged["entry_date"], merged["expire_date"], scope)

            before = {attr: _iso(getattr(entry, attr)) for attr in updates}
            for attr, value in updates.items():
                setattr(entry, attr, value)
            await self.db.flush()

            log_activity(
                self.db, self.principal,
                action="stock_updated",
                theater_id=theater_id,
                product_id=product_id,
                entity_id=entry.id,
                summary=f"Updated {', '.join(_FIELD_LABELS[a] for a in updates) or 'nothing'}",
                details={
                    "before": before,
                    "after": {attr: _iso(v) for attr, v in updates.items()},
                },
            )

        logger.info(
            "Stock entry %s updated: theater=%s product=%s fields=%s",
            entry_id, theater_id, product_id, sorted(updates),
        )
        return entry

    async def delete_entry(
        self,
        theater_id: str,
        product_id: str,
        entry_id: str,
        year: int,
        month: int,
    ) -> Period:
        """Delete an entry dated in (year, month).

        Returns the first period whose figures change; every later period
        changes with it through the carry-forward chain.
        """
        scope = {"theater_id": theater_id, "product_id": product_id}
        period = _period(year, month, scope)

        async with self._ledger_scope(theater_id, product_id):
            entry = await self._get_scoped_entry(theater_id, product_id, entry_id)
            if not period.contains(entry.entry_date):
                raise StockNotFoundError(
                    "Stock entry", f"{entry_id} in {period.label}", **scope,
                )
            details = {
                "entryDate": entry.entry_date.isoformat(),
                "quantity": entry.quantity_added,
                "usedStock": entry.used_stock,
                "damageStock": entry.damage_stock,
            }
            await self.store.delete_entry(entry)
            log_activity(
                self.db, self.principal,
                action="stock_deleted",
                theater_id=theater_id,
                product_id=product_id,
                entity_id=entry_id,
                summary=f"Deleted entry dated {details['entryDate']}",
                details=details,
            )

        logger.info(
            "Stock entry %s deleted: theater=%s product=%s period=%s",
            entry_id, theater_id, product_id, period.label,
        )
        return period

    async def clear_period(
        self, theater_id: str, product_id: str, year: int, month: int,
    ) -> int:
        """Delete every entry dated in (year, month). Returns the count."""
        scope = {"theater_id": theater_id, "product_id": product_id}
        period = _period(year, month, scope)

        async with self._ledger_scope(theater_id, product_id):
            cleared = await self.store.delete_period(theater_id, product_id, period)
            if not cleared:
                raise StockNotFoundError("Stock entries", period.label, **scope)
            log_activity(
                self.db, self.principal,
                action="period_cleared",
                theater_id=theater_id,
                product_id=product_id,
                entity_type="stock_period",
                summary=f"Cleared {cleared} entries from {period.label}",
                details={"year": year, "month": month, "clearedCount": cleared},
            )

        logger.info(
            "Cleared %d stock entries: theater=%s product=%s period=%s",
            cleared, theater_id, product_id, period.label,
        )
        return cleared

    async def record_consumption(
        self,
        theater_id: str,
        product_id: str,
        quantity: int,
        on_date: date | None = None,
        kind: str = "sale",
    ) -> ConsumptionResult:
        """Take `quantity` from the oldest unexpired stock (FIFO).

        Sales raise `used_stock`, damage raises `damage_stock`, on the
        entries the units are taken from.  All or nothing: if the ledger
        does not hold enough sellable stock, nothing is written.
        """
        scope = {"theater_id": theater_id, "product_id": product_id}
        if kind not in CONSUMPTION_KINDS:
            raise StockValidationError(
                f"kind must be one of {', '.join(CONSUMPTION_KINDS)}", field="kind", **scope,
            )
        _require_int(quantity, "quantity", scope)
        if quantity <= 0:
            raise StockValidationError(
                "Quantity must be greater than 0", field="quantity", **scope,
            )

        now = self.clock()
        on_date = on_date or now.date()
        _require_date(on_date, "date", scope)
        if on_date > now.date():
            raise StockValidationError(
                "Consumption cannot be dated in the future", field="date", **scope,
            )
        # Stock is judged as it stood at the end of the consumption day
        moment = min(now, datetime.combine(on_date, time.max))
        attr = "used_stock" if kind == "sale" else "damage_stock"

        async with self._ledger_scope(theater_id, product_id):
            candidates = await self.store.list_entries_up_to(theater_id, product_id, on_date)
            available = sum(available_quantity(e, moment) for e in candidates)
            if available < quantity:
                raise StockConflictError(
                    f"Insufficient stock: {quantity} requested, {available} available",
                    field="quantity", available=available, **scope,
                )

            result = ConsumptionResult(kind=kind, quantity=quantity, on_date=on_date)
            remaining = quantity
            for entry in candidates:
                if remaining == 0:
                    break
                take = min(remaining, available_quantity(entry, moment))
                if take <= 0:
                    continue
                setattr(entry, attr, getattr(entry, attr) + take)
                remaining -= take
                result.allocations.append(Allocation(
                    entry_id=entry.id,
                    entry_date=entry.entry_date,
                    batch_number=entry.batch_number,
                    quantity=take,
                ))
            await self.db.flush()

            log_activity(
                self.db, self.principal,
                action="stock_consumed",
                theater_id=theater_id,
                product_id=product_id,
                entity_type="stock_ledger",
                summary=f"Recorded {quantity} units as {kind} on {on_date.isoformat()}",
                details={
                    "kind": kind,
                    "allocations": [
                        {"entryId": a.entry_id, "quantity": a.quantity}
                        for a in result.allocations
                    ],
                },
            )

        result.current_stock = await self.get_current_stock(theater_id, product_id)
        logger.info(
            "Recorded %s of %d units: theater=%s product=%s across %d entries",
            kind, quantity, theater_id, product_id, len(result.allocations),
        )
        return result

    async def set_min_stock_level(
        self, theater_id: str, product_id: str, level: int,
    ) -> StockLedger:
        scope = {"theater_id": theater_id, "product_id": product_id}
        _require_non_negative(level, "minStockLevel", scope)

        async with self._ledger_scope(theater_id, product_id) as ledger:
            previous = ledger.min_stock_level
            ledger.min_stock_level = level
            log_activity(
                self.db, self.principal,
                action="min_level_changed",
                theater_id=theater_id,
                product_id=product_id,
                entity_type="stock_ledger",
                entity_id=ledger.id,
                summary=f"Minimum stock level {previous} → {level}",
            )
        return ledger

    # ── Queries ──────────────────────────────────────────────

    async def get_current_stock(
        self, theater_id: str, product_id: str, as_of: datetime | None = None,
    ) -> int:
        aggregator = await self._aggregator(theater_id, product_id, as_of)
        return aggregator.current_balance()

    async def get_monthly_report(
        self,
        theater_id: str,
        product_id: str,
        year: int,
        month: int,
        as_of: datetime | None = None,
    ) -> MonthlyPeriodSummary:
        period = _period(year, month, {"theater_id": theater_id, "product_id": product_id})
        aggregator = await self._aggregator(theater_id, product_id, as_of)
        return aggregator.summarize(period.year, period.month)

    async def list_entries(
        self, theater_id: str, product_id: str, year: int, month: int,
    ) -> list[StockEntry]:
        period = _period(year, month, {"theater_id": theater_id, "product_id": product_id})
        return await self.store.list_entries_in_period(theater_id, product_id, period)

    async def get_period_view(
        self,
        theater_id: str,
        product_id: str,
        year: int,
        month: int,
        as_of: datetime | None = None,
    ) -> PeriodView:
        period = _period(year, month, {"theater_id": theater_id, "product_id": product_id})
        aggregator = await self._aggregator(theater_id, product_id, as_of)
        return PeriodView(
            period=period,
            as_of=aggregator.as_of,
            entries=aggregator.entries_in(period),
            summary=aggregator.summarize(period.year, period.month),
            current_stock=aggregator.current_balance(),
        )

    async def get_alerts(
        self, theater_id: str, product_id: str, as_of: datetime | None = None,
    ) -> list[StockAlert]:
        ledger = await self.store.get_ledger(theater_id, product_id)
        entries = await self.store.list_entries(theater_id, product_id)
        min_level = (
            ledger.min_stock_level if ledger is not None
            else settings.default_min_stock_level
        )
        return evaluate_alerts(
            entries,
            min_stock_level=min_level,
            as_of=self.resolve_as_of(as_of),
            warning_days=settings.expiry_warning_days,
        )

    async def export_monthly_csv(
        self,
        theater_id: str,
        product_id: str,
        year: int,
        month: int,
        as_of: datetime | None = None,
    ) -> tuple[str, str]:
        """Return (filename, csv text) for the month's entries and statistics."""
        view = await self.get_period_view(theater_id, product_id, year, month, as_of)
        csv_text = render_monthly_csv(
            view.entries, view.summary, view.as_of,
            theater_id=theater_id, product_id=product_id,
        )
        return export_filename(theater_id, product_id, year, month), csv_text

    async def list_ledgers(
        self, theater_id: str, as_of: datetime | None = None,
    ) -> list[LedgerOverview]:
        overview = []
        for ledger, aggregator in await self._theater_aggregators(theater_id, as_of):
            current = aggregator.current_balance()
            overview.append(LedgerOverview(
                product_id=ledger.product_id,
                current_stock=current,
                min_stock_level=ledger.min_stock_level,
                entry_count=len(aggregator.entries),
                is_low=current <= ledger.min_stock_level,
            ))
        return overview

    async def export_theater_monthly_csv(
        self,
        theater_id: str,
        year: int,
        month: int,
        as_of: datetime | None = None,
    ) -> tuple[str, str]:
        """Return (filename, csv text) with one summary row per product ledger.

        Raises StockNotFoundError when the theater has no ledgers at all.
        """
        period = _period(year, month, {"theater_id": theater_id, "product_id": None})
        as_of = self.resolve_as_of(as_of)
        pairs = await self._theater_aggregators(theater_id, as_of)
        if not pairs:
            raise StockNotFoundError("Stock ledgers for theater", theater_id, theater_id=theater_id)

        reports = [
            ProductMonthReport(
                product_id=ledger.product_id,
                summary=aggregator.summarize(period.year, period.month),
                current_stock=aggregator.current_balance(),
                min_stock_level=ledger.min_stock_level,
            )
            for ledger, aggregator in pairs
        ]
        csv_text = render_theater_monthly_csv(
            reports, as_of, theater_id=theater_id, year=period.year, month=period.month,
        )
        return theater_export_filename(theater_id, period.year, period.month), csv_text

    # ── Internal ─────────────────────────────────────────────

    async def _theater_aggregators(
        self, theater_id: str, as_of: datetime | None,
    ) -> list[tuple[StockLedger, PeriodAggregator]]:
        """Every ledger of a theater with an aggregator over its entries."""
        as_of = self.resolve_as_of(as_of)
        ledgers = await self.store.list_ledgers(theater_id)
        by_product: dict[str, list[StockEntry]] = defaultdict(list)
        for entry in await self.store.list_entries_for_theater(theater_id):
            by_product[entry.product_id].append(entry)

        return [
            (
                ledger,
                PeriodAggregator(
                    by_product.get(ledger.product_id, []), as_of,
                    theater_id=theater_id, product_id=ledger.product_id,
                ),
            )
            for ledger in ledgers
        ]

    @property
    def _actor_id(self) -> str | None:
        return getattr(self.principal, "user_id", None)

    def resolve_as_of(self, as_of: datetime | None) -> datetime:
        """`as_of` as business-local time, or the clock's now."""
        return to_local(as_of) if as_of is not None else self.clock()

    async def _aggregator(
        self, theater_id: str, product_id: str, as_of: datetime | None,
    ) -> PeriodAggregator:
        entries = await self.store.list_entries(theater_id, product_id)
        return PeriodAggregator(
            entries, self.resolve_as_of(as_of), theater_id=theater_id, product_id=product_id,
        )

    async def _get_scoped_entry(
        self, theater_id: str, product_id: str, entry_id: str,
    ) -> StockEntry:
        entry = await self.store.get_entry(entry_id)
        if (
            entry is None
            or entry.theater_id != theater_id
            or entry.product_id != product_id
        ):
            raise StockNotFoundError(
                "Stock entry", entry_id, theater_id=theater_id, product_id=product_id,
            )
        return entry

    @asynccontextmanager
    async def _ledger_scope(
        self, theater_id: str, product_id: str,
    ) -> AsyncIterator[StockLedger]:
        scope = {"theater_id": theater_id, "product_id": product_id}
        async with self.locks.hold(theater_id, product_id, self.lock_timeout):
            try:
                ledger = await self.store.lock_ledger(
                    theater_id, product_id, self.lock_timeout,
                )
                yield ledger
                self.store.touch(ledger)
                await self.store.commit()
            except StaleDataError as exc:
                await self.store.rollback()
                raise StockConflictError(
                    "Stock ledger was changed by another request; reload and retry",
                    **scope,
                ) from exc
            except IntegrityError as exc:
                await self.store.rollback()
                logger.warning(
                    "Integrity error on ledger theater=%s product=%s: %s",
                    theater_id, product_id, exc.orig,
                )
                raise StockConflictError(
                    "Stock quantities would become inconsistent", **scope,
                ) from exc
            except BaseException:
                await self.store.rollback()
                raise


# ── Validation helpers ──────────────────────────────────────


def _iso(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _period(year: int, month: int, scope: dict) -> Period:
    try:
        return Period(year, month)
    except (TypeError, ValueError) as exc:
        raise StockValidationError(str(exc), field="month", **scope) from exc


def _require_int(value, label: str, scope: dict) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise StockValidationError(
            f"{label} must be a whole number", field=label, **scope,
        )


def _require_non_negative(value, label: str, scope: dict) -> None:
    _require_int(value, label, scope)
    if value < 0:
        raise StockValidationError(
            f"{label} cannot be negative", field=label, **scope,
        )


def _require_date(value, label: str, scope: dict) -> None:
    if not isinstance(value, date) or isinstance(value, datetime):
        raise StockValidationError(
            f"{label} must be a calendar date", field=label, **scope,
        )
    if value > LAST_LEDGER_DATE:
        raise StockValidationError(
            f"{label} cannot be later than {LAST_LEDGER_DATE.isoformat()}",
            field=label, **scope,
        )


def _check_expiry_order(entry_date: date, expire_date: date | None, scope: dict) -> None:
    if expire_date is not None and expire_date < entry_date:
        raise StockValidationError(
            "Expiry date cannot be before the entry date", field="expireDate", **scope,
        )


def _normalise_changes(changes: dict[str, Any], scope: dict) -> dict[str, Any]:
    """Map request field names to model attributes and validate each value."""
    updates: dict[str, Any] = {}
    for name, value in changes.items():
        attr = UPDATABLE_FIELDS.get(name)
        if attr is None:
            raise StockValidationError(f"Field cannot be updated: {name}", field=name, **scope)
        updates[attr] = value

    label = _FIELD_LABELS
    if "entry_date" in updates:
        _require_date(updates["entry_date"], label["entry_date"], scope)
    if updates.get("expire_date") is not None:
        _require_date(updates["expire_date"], label["expire_date"], scope)
    if "quantity_added" in updates:
        _require_int(updates["quantity_added"], label["quantity_added"], scope)
        if updates["quantity_added"] <= 0:
            raise StockValidationError(
                "Quantity must be greater than 0", field="quantity", **scope,
            )
    for attr in ("used_stock", "damage_stock"):
        if attr in updates:
            _require_non_negative(updates[attr], label[attr], scope)
    return updates
