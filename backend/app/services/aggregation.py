"""Monthly period aggregation — carry-forward balance reconstruction.

Summaries are never stored.  Each request builds a PeriodAggregator over
the ledger's full entry set and replays it month by month, ascending by
(entry_date, id), memoising closing balances for the lifetime of that one
aggregator only.

Attribution rules:
  - An entry belongs to the calendar month of its `entry_date`.  Its
    quantity, used and damaged counters are summed into that month only;
    later months see it through the carried-forward opening balance.
  - Expiry is evaluated with the query time (`as_of`) and attributed to
    the entry's own month, so a month's closing balance drops once stock
    dated in it has been written off.
  - `expired_carryover` of month M is the quantity from entries dated
    before M whose write-off moment falls inside M (and has passed).  It
    is already inside an earlier month's `total_expired`, and therefore
    already inside M's opening balance; it is reported, not subtracted.

Closing balance (the single canonical formula):

    closing = max(0, opening + added - used - damaged - expired)

and opening(M) = closing(M - 1), 0 before the first entry.
"""

from __future__ import annotations

from bisect import bisect_left
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Iterable

from app.middleware.exceptions import CorruptLedgerError
from app.services.expiry import (
    EntryLike,
    available_quantity,
    expiry_cutoff,
    remaining_expired,
)
from app.utils.clock import to_local


# Last calendar day a Period can hold; stock dates beyond it are rejected
LAST_LEDGER_DATE = date(9998, 12, 31)


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month, January 1 to December 9998.

    `end` stays defined for December 9998; `next()` past it raises ValueError.
    """
    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1-12, got {self.month}")
        if not 1 <= self.year <= 9998:
            raise ValueError(f"year out of range: {self.year}")

    @classmethod
    def of(cls, day: date) -> "Period":
        return cls(day.year, day.month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        """First day of the following month (exclusive bound)."""
        if self.month == 12:
            return date(self.year + 1, 1, 1)
        return date(self.year, self.month + 1, 1)

    def next(self) -> "Period":
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    def previous(self) -> "Period":
        if self.month == 1:
            return Period(self.year - 1, 12)
        return Period(self.year, self.month - 1)

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def contains_instant(self, moment: datetime) -> bool:
        return self.contains(moment.date())

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class MonthlyPeriodSummary:
    year: int
    month: int
    opening_balance: int
    total_added: int
    total_used: int
    total_damaged: int
    total_expired: int
    expired_carryover: int
    closing_balance: int
    entry_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ── Entry validation ─────────────────────────────────────────


def _check_entry(entry, theater_id: str | None, product_id: str | None) -> None:
    """Fail loudly on a malformed entry instead of misstating a balance."""
    entry_id = getattr(entry, "id", None)

    def corrupt(field: str, problem: str) -> CorruptLedgerError:
        return CorruptLedgerError(
            entry_id, field, problem, theater_id=theater_id, product_id=product_id,
        )

    if not isinstance(getattr(entry, "entry_date", None), date):
        raise corrupt("entryDate", "missing or invalid entry date")

    for attr, field in (
        ("quantity_added", "quantityAdded"),
        ("used_stock", "usedStock"),
        ("damage_stock", "damageStock"),
    ):
        value = getattr(entry, attr, None)
        if not isinstance(value, int) or isinstance(value, bool):
            raise corrupt(field, f"{field} is not an integer ({value!r})")
        if value < 0:
            raise corrupt(field, f"{field} is negative ({value})")

    if entry.used_stock + entry.damage_stock > entry.quantity_added:
        raise corrupt(
            "usedStock",
            f"used ({entry.used_stock}) + damaged ({entry.damage_stock}) "
            f"exceeds quantity added ({entry.quantity_added})",
        )

    expire_date = getattr(entry, "expire_date", None)
    if expire_date is not None and not isinstance(expire_date, date):
        raise corrupt("expireDate", f"invalid expiry date ({expire_date!r})")


def _sort_key(entry) -> tuple:
    return (entry.entry_date, entry.id or "")


# ── Aggregator ──────────────────────────────────────────────


class PeriodAggregator:
    """Replays one ledger's entries to answer period and balance queries.

    Build one per request: the closing-balance memo is only valid for the
    entry set and `as_of` it was built with.
    """

    def __init__(
        self,
        entries: Iterable[EntryLike],
        as_of: datetime,
        *,
        theater_id: str | None = None,
        product_id: str | None = None,
    ):
        self.as_of = to_local(as_of)
        self.theater_id = theater_id
        self.product_id = product_id

        entries = list(entries)
        for entry in entries:
            _check_entry(entry, theater_id, product_id)
        self._entries = sorted(entries, key=_sort_key)

        self._by_period: dict[Period, list] = defaultdict(list)
        for entry in self._entries:
            self._by_period[Period.of(entry.entry_date)].append(entry)
        self._periods: list[Period] = sorted(self._by_period)

        self._summaries: dict[Period, MonthlyPeriodSummary] = {}

    # ── Queries ──────────────────────────────────────────────

    @property
    def entries(self) -> list:
        return list(self._entries)

    def entries_in(self, period: Period) -> list:
        return list(self._by_period.get(period, ()))

    def summarize(self, year: int, month: int) -> MonthlyPeriodSummary:
        period = Period(year, month)
        if period in self._summaries:
            return self._summaries[period]

        # Replay every active month before this one, oldest first, so the
        # opening balance is always read from a memoised closing balance.
        idx = bisect_left(self._periods, period)
        for earlier in self._periods[:idx]:
            if earlier not in self._summaries:
                self._summaries[earlier] = self._build(earlier)

        summary = self._build(period)
        self._summaries[period] = summary
        return summary

    def opening_balance(self, period: Period) -> int:
        idx = bisect_left(self._periods, period)
        if idx == 0:
            return 0
        last_active = self._periods[idx - 1]
        # Months with no entries carry their opening balance through
        # unchanged, so the last active month's closing is the answer.
        if last_active not in self._summaries:
            self.summarize(last_active.year, last_active.month)
        return self._summaries[last_active].closing_balance

    def closing_balance(self, period: Period) -> int:
        return self.summarize(period.year, period.month).closing_balance

    def current_balance(self) -> int:
        """Stock on hand at `as_of`: entries dated up to today, net of expiry."""
        today = self.as_of.date()
        return max(
            0,
            sum(
                available_quantity(e, self.as_of)
                for e in self._entries
                if e.entry_date <= today
            ),
        )

    def expired_carryover(self, period: Period) -> int:
        total = 0
        for entry in self._entries:
            if entry.entry_date >= period.start:
                break
            if entry.expire_date is None:
                continue
            cutoff = expiry_cutoff(entry.expire_date)
            if period.contains_instant(cutoff) and cutoff <= self.as_of:
                total += remaining_expired(entry, self.as_of)
        return total

    # ── Internal ─────────────────────────────────────────────

    def _build(self, period: Period) -> MonthlyPeriodSummary:
        opening = self.opening_balance(period)
        entries = self._by_period.get(period, ())

        added = sum(e.quantity_added for e in entries)
        used = sum(e.used_stock for e in entries)
        damaged = sum(e.damage_stock for e in entries)
        expired = sum(remaining_expired(e, self.as_of) for e in entries)

        return MonthlyPeriodSummary(
            year=period.year,
            month=period.month,
            opening_balance=opening,
            total_added=added,
            total_used=used,
            total_damaged=damaged,
            total_expired=expired,
            expired_carryover=self.expired_carryover(period),
            closing_balance=max(0, opening + added - used - damaged - expired),
            entry_count=len(entries),
        )


# ── Functional entry points ─────────────────────────────────


def summarize(
    entries: Iterable[EntryLike], year: int, month: int, as_of: datetime,
) -> MonthlyPeriodSummary:
    return PeriodAggregator(entries, as_of).summarize(year, month)


def current_balance(entries: Iterable[EntryLike], as_of: datetime) -> int:
    return PeriodAggregator(entries, as_of).current_balance()
