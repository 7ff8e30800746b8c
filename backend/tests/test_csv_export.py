"""Monthly CSV export tests."""

import csv
import io
from datetime import date, datetime

import pytest

from app.services.aggregation import PeriodAggregator
from app.services.ledger import ProductMonthReport
from app.utils.csv_export import (
    export_filename,
    render_monthly_csv,
    render_theater_monthly_csv,
    theater_export_filename,
)


@pytest.mark.unit
class TestMonthlyCsv:

    def _render(self, entries, as_of):
        agg = PeriodAggregator(entries, as_of)
        summary = agg.summarize(2025, 1)
        text = render_monthly_csv(
            agg.entries, summary, as_of, theater_id="theater-1", product_id="popcorn-large",
        )
        return list(csv.reader(io.StringIO(text)))

    def test_entry_rows_then_summary(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 3), 50, used=10, expire_date=date(2025, 1, 10),
                       batch_number="B-1"),
            make_entry(date(2025, 1, 12), 20),
        ]
        rows = self._render(entries, datetime(2025, 1, 20))

        assert rows[0][:4] == ["entry_id", "date", "batch_number", "quantity_added"]
        assert rows[1][1:4] == ["2025-01-03", "B-1", "50"]
        assert rows[1][7:9] == ["yes", "0"]
        assert rows[2][2] == ""
        assert rows[2][7:9] == ["no", "20"]
        assert rows[3] == []

        summary = {row[0]: row[1] for row in rows[4:]}
        assert summary["period"] == "2025-01"
        assert summary["Expired"] == "40"
        assert summary["Closing balance"] == "20"

    def test_empty_month(self):
        rows = self._render([], datetime(2025, 1, 20))
        assert len(rows[0]) == 10
        assert rows[1] == []
        assert {row[0]: row[1] for row in rows[2:]}["Closing balance"] == "0"

    def test_filename(self):
        assert export_filename("t1", "p1", 2025, 3) == "stock_t1_p1_2025-03.csv"


@pytest.mark.unit
class TestTheaterMonthlyCsv:

    def _report(self, product_id, entries, as_of, min_level=5):
        agg = PeriodAggregator(entries, as_of)
        return ProductMonthReport(
            product_id=product_id,
            summary=agg.summarize(2025, 1),
            current_stock=agg.current_balance(),
            min_stock_level=min_level,
        )

    def test_one_row_per_product_then_totals(self, make_entry):
        as_of = datetime(2025, 1, 20)
        reports = [
            self._report("nachos", [make_entry(date(2025, 1, 3), 4)], as_of),
            self._report("popcorn-large", [
                make_entry(date(2024, 12, 28), 30),
                make_entry(date(2025, 1, 5), 50, used=10),
            ], as_of),
        ]
        text = render_theater_monthly_csv(
            reports, as_of, theater_id="theater-1", year=2025, month=1,
        )
        rows = list(csv.reader(io.StringIO(text)))

        header = rows[0]
        assert header[0] == "product_id"
        assert header[-4:] == ["entry_count", "current_stock", "min_stock_level", "low_stock"]

        nachos = dict(zip(header, rows[1]))
        popcorn = dict(zip(header, rows[2]))
        assert nachos["closing_balance"] == "4"
        assert nachos["low_stock"] == "yes"
        assert popcorn["opening_balance"] == "30"
        assert popcorn["total_used"] == "10"
        assert popcorn["closing_balance"] == "70"
        assert popcorn["entry_count"] == "1"
        assert popcorn["low_stock"] == "no"
        assert rows[3] == []

        totals = {row[0]: row[1] for row in rows[4:]}
        assert totals["period"] == "2025-01"
        assert totals["Products"] == "2"
        assert totals["Closing balance"] == "74"

    def test_filename(self):
        assert theater_export_filename("t1", 2025, 3) == "stock_t1_all_2025-03.csv"
