"""Stock alerts — out of stock, low stock, and expiry warnings.

Alerts are evaluated on read from the same entry set and query time as
the balance, so they can never disagree with the current stock figure.

Severity levels: low | medium | high | critical
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Iterable

from app.services.aggregation import PeriodAggregator
from app.services.expiry import EntryLike, available_quantity, days_until_expiry, expiry_cutoff

OUT_OF_STOCK = "out_of_stock"
LOW_STOCK = "low_stock"
EXPIRY_WARNING = "expiry_warning"


@dataclass(frozen=True)
class StockAlert:
    alert_type: str
    severity: str
    message: str
    current_value: int
    threshold: int | None = None
    entry_id: str | None = None
    expire_date: date | None = None
    expires_at: datetime | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _low_stock_severity(current: int, minimum: int) -> str:
    if current * 2 <= minimum:
        return "high"
    return "medium"


def evaluate_alerts(
    entries: Iterable[EntryLike],
    *,
    min_stock_level: int,
    as_of: datetime,
    warning_days: int,
) -> list[StockAlert]:
    """Return the alerts that hold for this ledger at `as_of`."""
    aggregator = PeriodAggregator(entries, as_of)
    as_of = aggregator.as_of
    current = aggregator.current_balance()
    alerts: list[StockAlert] = []

    if current == 0:
        alerts.append(StockAlert(
            alert_type=OUT_OF_STOCK,
            severity="critical",
            message="Product is out of stock",
            current_value=0,
            threshold=min_stock_level,
        ))
    elif current <= min_stock_level:
        alerts.append(StockAlert(
            alert_type=LOW_STOCK,
            severity=_low_stock_severity(current, min_stock_level),
            message=f"Only {current} left (minimum {min_stock_level})",
            current_value=current,
            threshold=min_stock_level,
        ))

    today = as_of.date()
    for entry in aggregator.entries:
        if entry.entry_date > today:
            continue
        left = available_quantity(entry, as_of)
        days = days_until_expiry(entry, as_of)
        if not left or days is None or days > warning_days:
            continue
        label = f" (batch {entry.batch_number})" if entry.batch_number else ""
        if days <= 0:
            when = "today"
        elif days == 1:
            when = "tomorrow"
        else:
            when = f"in {days} days"
        alerts.append(StockAlert(
            alert_type=EXPIRY_WARNING,
            severity="high" if days <= 0 else "medium",
            message=f"{left} units{label} expire {when} ({entry.expire_date.isoformat()})",
            current_value=days,
            threshold=warning_days,
            entry_id=entry.id,
            expire_date=entry.expire_date,
            expires_at=expiry_cutoff(entry.expire_date),
        ))

    return alerts
