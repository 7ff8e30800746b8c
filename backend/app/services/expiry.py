"""Expiry evaluation for stock entries.

An entry labelled with expiry date D is still sellable for the whole of D.
It is written off at 00:01 on D + 1:

    expired  ⇔  as_of ≥ datetime(D + 1 day, 00:01)

When it expires, everything still on the shelf expires with it (the whole
remaining quantity, never a prorated share).

These functions are pure.  They must be called with the query time on
every read; the result is never written back to storage.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Protocol

from app.utils.clock import to_local

# Write-off moment on the day after the expiry label
EXPIRY_CUTOFF_TIME = time(0, 1)


class EntryLike(Protocol):
    """The fields of a stock entry the evaluator reads."""
    quantity_added: int
    used_stock: int
    damage_stock: int
    expire_date: date | None


def expiry_cutoff(expire_date: date) -> datetime:
    """The instant at which stock labelled `expire_date` is written off."""
    if expire_date >= date.max:
        return datetime.max
    return datetime.combine(expire_date + timedelta(days=1), EXPIRY_CUTOFF_TIME)


def remaining_quantity(entry: EntryLike) -> int:
    """Quantity neither used nor damaged, floored at 0."""
    return max(0, entry.quantity_added - entry.used_stock - entry.damage_stock)


def is_expired(entry: EntryLike, as_of: datetime) -> bool:
    if entry.expire_date is None:
        return False
    return to_local(as_of) >= expiry_cutoff(entry.expire_date)


def remaining_expired(entry: EntryLike, as_of: datetime) -> int:
    """How much of the entry's remaining quantity has expired at `as_of`."""
    if not is_expired(entry, as_of):
        return 0
    return remaining_quantity(entry)


def available_quantity(entry: EntryLike, as_of: datetime) -> int:
    """Quantity that can still be sold or written off as damaged at `as_of`."""
    if is_expired(entry, as_of):
        return 0
    return remaining_quantity(entry)


def days_until_expiry(entry: EntryLike, as_of: datetime) -> int | None:
    """Whole days left before the write-off, or None without an expiry date.

    0 on the label date itself (written off at the next 00:01), negative
    from the following day on.
    """
    if entry.expire_date is None:
        return None
    return (entry.expire_date - to_local(as_of).date()).days
