"""StockEntry store — persistence for ledger headers and entries.

Thin async SQLAlchemy layer used by the ledger service.  It owns every
query against `stock_ledgers` / `stock_entries` and the database half of
per-ledger locking:

  - lock_ledger()  SELECT ... FOR UPDATE on the header row (PostgreSQL
                   also gets a transaction-local lock_timeout); creates
                   the header on first use
  - touch()        dirties the header so its version counter is bumped
                   and checked on flush

Nothing here validates business rules; that is the ledger service's job.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import delete, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.middleware.exceptions import StockLockTimeoutError
from app.models.stock import StockEntry, StockLedger
from app.services.aggregation import Period

logger = logging.getLogger(__name__)


class StockEntryStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Ledger headers ───────────────────────────────────────

    async def get_ledger(self, theater_id: str, product_id: str) -> StockLedger | None:
        result = await self.db.execute(
            select(StockLedger).where(
                StockLedger.theater_id == theater_id,
                StockLedger.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_ledgers(self, theater_id: str) -> list[StockLedger]:
        result = await self.db.execute(
            select(StockLedger)
            .where(StockLedger.theater_id == theater_id)
            .order_by(StockLedger.product_id)
        )
        return list(result.scalars().all())

    async def lock_ledger(
        self, theater_id: str, product_id: str, timeout: float,
    ) -> StockLedger:
        """Row-lock the ledger header for this transaction, creating it if needed."""
        if self._dialect == "postgresql":
            # SET LOCAL does not take bind parameters
            await self.db.execute(
                text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'")
            )

        try:
            result = await self.db.execute(
                select(StockLedger)
                .where(
                    StockLedger.theater_id == theater_id,
                    StockLedger.product_id == product_id,
                )
                .with_for_update()
            )
        except OperationalError as exc:
            if "lock" in str(exc.orig).lower():
                raise StockLockTimeoutError(theater_id, product_id, timeout) from exc
            raise

        ledger = result.scalar_one_or_none()
        if ledger is not None:
            return ledger

        ledger = StockLedger(
            theater_id=theater_id,
            product_id=product_id,
            min_stock_level=settings.default_min_stock_level,
        )
        self.db.add(ledger)
        try:
            await self.db.flush()
        except IntegrityError:
            # Another transaction created the header first; nothing else has
            # been written yet, so start over and lock theirs.
            await self.db.rollback()
            logger.info(
                "Ledger header for theater=%s product=%s created concurrently",
                theater_id, product_id,
            )
            return await self.lock_ledger(theater_id, product_id, timeout)
        return ledger

    def touch(self, ledger: StockLedger) -> None:
        ledger.updated_at = datetime.utcnow()

    # ── Entries ──────────────────────────────────────────────

    async def list_entries(self, theater_id: str, product_id: str) -> list[StockEntry]:
        """The full ledger, ordered by (entry_date, id)."""
        result = await self.db.execute(
            select(StockEntry)
            .where(
                StockEntry.theater_id == theater_id,
                StockEntry.product_id == product_id,
            )
            .order_by(StockEntry.entry_date, StockEntry.id)
        )
        return list(result.scalars().all())

    async def list_entries_for_theater(self, theater_id: str) -> list[StockEntry]:
        result = await self.db.execute(
            select(StockEntry)
            .where(StockEntry.theater_id == theater_id)
            .order_by(StockEntry.product_id, StockEntry.entry_date, StockEntry.id)
        )
        return list(result.scalars().all())

    async def list_entries_in_period(
        self, theater_id: str, product_id: str, period: Period,
    ) -> list[StockEntry]:
        result = await self.db.execute(
            select(StockEntry)
            .where(
                StockEntry.theater_id == theater_id,
                StockEntry.product_id == product_id,
                StockEntry.entry_date >= period.start,
                StockEntry.entry_date < period.end,
            )
            .order_by(StockEntry.entry_date, StockEntry.id)
        )
        return list(result.scalars().all())

    async def list_entries_up_to(
        self, theater_id: str, product_id: str, on_date: date,
    ) -> list[StockEntry]:
        """Entries dated on or before `on_date`, oldest first (FIFO order)."""
        result = await self.db.execute(
            select(StockEntry)
            .where(
                StockEntry.theater_id == theater_id,
                StockEntry.product_id == product_id,
                StockEntry.entry_date <= on_date,
            )
            .order_by(StockEntry.entry_date, StockEntry.id)
        )
        return list(result.scalars().all())

    async def get_entry(self, entry_id: str) -> StockEntry | None:
        result = await self.db.execute(
            select(StockEntry)
            .where(StockEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add_entry(self, entry: StockEntry) -> StockEntry:
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def delete_entry(self, entry: StockEntry) -> None:
        await self.db.delete(entry)
        await self.db.flush()

    async def delete_period(
        self, theater_id: str, product_id: str, period: Period,
    ) -> int:
        result = await self.db.execute(
            delete(StockEntry).where(
                StockEntry.theater_id == theater_id,
                StockEntry.product_id == product_id,
                StockEntry.entry_date >= period.start,
                StockEntry.entry_date < period.end,
            )
        )
        return result.rowcount or 0

    # ── Transaction ──────────────────────────────────────────

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    @property
    def _dialect(self) -> str:
        bind = self.db.get_bind()
        return bind.dialect.name
