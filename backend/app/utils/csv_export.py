"""CSV rendering for the monthly stock report."""

import csv
import io
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from app.services.aggregation import MonthlyPeriodSummary
from app.services.expiry import available_quantity, is_expired


@dataclass
class ColumnDef:
    """One CSV column: header text and how to read it off an entry."""
    header: str
    value: Callable[[Any], Any]


def _fmt(value) -> str:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def entry_columns(as_of) -> list[ColumnDef]:
    return [
        ColumnDef("entry_id", lambda e: e.id),
        ColumnDef("date", lambda e: e.entry_date),
        ColumnDef("batch_number", lambda e: e.batch_number),
        ColumnDef("quantity_added", lambda e: e.quantity_added),
        ColumnDef("used_stock", lambda e: e.used_stock),
        ColumnDef("damage_stock", lambda e: e.damage_stock),
        ColumnDef("expire_date", lambda e: e.expire_date),
        ColumnDef("expired", lambda e: "yes" if is_expired(e, as_of) else "no"),
        ColumnDef("available", lambda e: available_quantity(e, as_of)),
        ColumnDef("notes", lambda e: e.notes),
    ]


SUMMARY_FIELDS = [
    ("opening_balance", "Opening balance"),
    ("total_added", "Added"),
    ("total_used", "Used"),
    ("total_damaged", "Damaged"),
    ("total_expired", "Expired"),
    ("expired_carryover", "Expired carryover"),
    ("closing_balance", "Closing balance"),
]


def render_monthly_csv(
    entries: Iterable[Any],
    summary: MonthlyPeriodSummary,
    as_of,
    *,
    theater_id: str,
    product_id: str,
) -> str:
    """Entries table followed by a blank line and the period summary."""
    buf = io.StringIO()
    writer = csv.writer(buf)

    columns = entry_columns(as_of)
    writer.writerow([c.header for c in columns])
    for entry in entries:
        writer.writerow([_fmt(c.value(entry)) for c in columns])

    writer.writerow([])
    writer.writerow(["theater_id", theater_id])
    writer.writerow(["product_id", product_id])
    writer.writerow(["period", f"{summary.year:04d}-{summary.month:02d}"])
    writer.writerow(["as_of", _fmt(as_of)])
    for attr, label in SUMMARY_FIELDS:
        writer.writerow([label, getattr(summary, attr)])

    return buf.getvalue()


def export_filename(theater_id: str, product_id: str, year: int, month: int) -> str:
    return f"stock_{theater_id}_{product_id}_{year:04d}-{month:02d}.csv"


# ── Theater-wide monthly report ─────────────────────────────

def product_columns() -> list[ColumnDef]:
    """One row per product ledger; reads a ProductMonthReport."""
    columns = [ColumnDef("product_id", lambda r: r.product_id)]
    columns += [
        ColumnDef(attr, lambda r, attr=attr: getattr(r.summary, attr))
        for attr, _label in SUMMARY_FIELDS
    ]
    columns += [
        ColumnDef("entry_count", lambda r: r.summary.entry_count),
        ColumnDef("current_stock", lambda r: r.current_stock),
        ColumnDef("min_stock_level", lambda r: r.min_stock_level),
        ColumnDef("low_stock", lambda r: "yes" if r.is_low else "no"),
    ]
    return columns


def render_theater_monthly_csv(
    reports: Iterable[Any],
    as_of,
    *,
    theater_id: str,
    year: int,
    month: int,
) -> str:
    """Per-product summary table followed by a blank line and totals."""
    reports = list(reports)
    buf = io.StringIO()
    writer = csv.writer(buf)

    columns = product_columns()
    writer.writerow([c.header for c in columns])
    for report in reports:
        writer.writerow([_fmt(c.value(report)) for c in columns])

    writer.writerow([])
    writer.writerow(["theater_id", theater_id])
    writer.writerow(["period", f"{year:04d}-{month:02d}"])
    writer.writerow(["as_of", _fmt(as_of)])
    writer.writerow(["Products", len(reports)])
    for attr, label in SUMMARY_FIELDS:
        writer.writerow([label, sum(getattr(r.summary, attr) for r in reports)])

    return buf.getvalue()


def theater_export_filename(theater_id: str, year: int, month: int) -> str:
    return f"stock_{theater_id}_all_{year:04d}-{month:02d}.csv"
