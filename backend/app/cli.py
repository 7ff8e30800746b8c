"""Management CLI for the stock ledger.

Usage:
    python -m app.cli create-tables                                   # Create missing tables
    python -m app.cli ledger-report THEATER PRODUCT YEAR MONTH        # Print a monthly summary
"""

import asyncio
import sys

from app.database import async_session, create_all_tables
from app.middleware.exceptions import CanteenStockException
from app.services.ledger import LedgerService


def create_tables():
    asyncio.run(create_all_tables())
    print("Tables created.")


async def _ledger_report(theater_id: str, product_id: str, year: int, month: int) -> dict:
    async with async_session() as db:
        service = LedgerService(db)
        summary = await service.get_monthly_report(theater_id, product_id, year, month)
        current = await service.get_current_stock(theater_id, product_id)
    return {**summary.to_dict(), "current_stock": current}


def ledger_report(args: list[str]):
    if len(args) != 4:
        print("Usage: python -m app.cli ledger-report THEATER PRODUCT YEAR MONTH")
        sys.exit(2)
    theater_id, product_id, year, month = args
    try:
        report = asyncio.run(_ledger_report(theater_id, product_id, int(year), int(month)))
    except (ValueError, CanteenStockException) as exc:
        print(f"  FAILED: {exc}")
        sys.exit(1)

    print(f"  {theater_id}/{product_id} {int(year):04d}-{int(month):02d}")
    for key, value in report.items():
        if key in ("year", "month"):
            continue
        print(f"  {key:<20} {value}")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "create-tables":
        create_tables()
    elif cmd == "ledger-report":
        ledger_report(sys.argv[2:])
    else:
        print("Usage: python -m app.cli [create-tables|ledger-report]")
