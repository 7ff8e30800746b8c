"""Monthly period aggregation tests."""

from datetime import date, datetime

import pytest

from app.middleware.exceptions import CorruptLedgerError
from app.services.aggregation import Period, PeriodAggregator, current_balance, summarize


@pytest.mark.unit
class TestPeriod:

    def test_bounds(self):
        period = Period(2025, 2)
        assert period.start == date(2025, 2, 1)
        assert period.end == date(2025, 3, 1)

    def test_december_rolls_into_next_year(self):
        assert Period(2024, 12).next() == Period(2025, 1)
        assert Period(2025, 1).previous() == Period(2024, 12)
        assert Period(2024, 12).end == date(2025, 1, 1)

    def test_last_supported_month_has_an_end(self):
        period = Period(9998, 12)
        assert period.end == date(9999, 1, 1)
        assert period.contains(date(9998, 12, 31))
        with pytest.raises(ValueError):
            period.next()

    def test_invalid_month_rejected(self):
        with pytest.raises(ValueError):
            Period(2025, 13)
        with pytest.raises(ValueError):
            Period(2025, 0)

    def test_label(self):
        assert Period(2025, 3).label == "2025-03"


@pytest.mark.unit
class TestSingleMonthExpiry:
    """Jan entry of 100 expiring Jan 31, reported at different times."""

    @pytest.fixture
    def entries(self, make_entry):
        return [make_entry(date(2025, 1, 5), 100, expire_date=date(2025, 1, 31))]

    def test_before_expiry(self, entries):
        summary = summarize(entries, 2025, 1, datetime(2025, 1, 20, 12, 0))
        assert summary.total_added == 100
        assert summary.total_expired == 0
        assert summary.closing_balance == 100

    def test_after_expiry(self, entries):
        summary = summarize(entries, 2025, 1, datetime(2025, 2, 2, 9, 0))
        assert summary.total_expired == 100
        assert summary.closing_balance == 0

    def test_following_month_does_not_subtract_carryover_again(self, entries):
        summary = summarize(entries, 2025, 2, datetime(2025, 2, 2, 9, 0))
        assert summary.opening_balance == 0
        assert summary.expired_carryover == 100
        assert summary.total_expired == 0
        assert summary.closing_balance == 0

    def test_carryover_waits_for_the_cutoff(self, entries):
        summary = summarize(entries, 2025, 2, datetime(2025, 2, 1, 0, 0))
        assert summary.expired_carryover == 0
        assert summary.opening_balance == 100
        assert summary.closing_balance == 100


@pytest.mark.unit
class TestCarryForward:

    def test_closing_equals_next_opening(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 3), 50, used=10),
            make_entry(date(2025, 1, 20), 30, damaged=5),
            make_entry(date(2025, 2, 14), 40, used=25),
            make_entry(date(2025, 4, 1), 10, expire_date=date(2025, 4, 10)),
        ]
        agg = PeriodAggregator(entries, datetime(2025, 6, 1))
        period = Period(2025, 1)
        for _ in range(6):
            following = period.next()
            assert agg.closing_balance(period) == agg.summarize(
                following.year, following.month,
            ).opening_balance
            period = following

    def test_year_rollover(self, make_entry):
        entries = [make_entry(date(2024, 12, 10), 60, used=20)]
        agg = PeriodAggregator(entries, datetime(2025, 1, 15))
        december = agg.summarize(2024, 12)
        january = agg.summarize(2025, 1)
        assert december.closing_balance == 40
        assert january.opening_balance == 40
        assert january.closing_balance == 40

    def test_gap_months_carry_balance_unchanged(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 5), 20),
            make_entry(date(2025, 5, 5), 5),
        ]
        agg = PeriodAggregator(entries, datetime(2025, 6, 1))
        march = agg.summarize(2025, 3)
        assert march.opening_balance == 20
        assert march.closing_balance == 20
        assert march.entry_count == 0
        assert agg.summarize(2025, 5).closing_balance == 25

    def test_later_expiry_reduces_origin_month_and_all_later_months(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 5), 100, used=40, expire_date=date(2025, 2, 10)),
            make_entry(date(2025, 2, 1), 30),
        ]
        agg = PeriodAggregator(entries, datetime(2025, 2, 20))
        january = agg.summarize(2025, 1)
        february = agg.summarize(2025, 2)
        assert january.total_expired == 60
        assert january.closing_balance == 0
        assert february.opening_balance == 0
        assert february.expired_carryover == 60
        assert february.closing_balance == 30


@pytest.mark.unit
class TestEdgeCases:

    def test_empty_ledger(self):
        summary = summarize([], 2025, 1, datetime(2025, 1, 20))
        assert summary.opening_balance == 0
        assert summary.closing_balance == 0
        assert summary.entry_count == 0

    def test_month_before_first_entry(self, make_entry):
        entries = [make_entry(date(2025, 3, 1), 10)]
        summary = summarize(entries, 2025, 1, datetime(2025, 3, 5))
        assert summary.opening_balance == 0
        assert summary.closing_balance == 0

    def test_future_month_projects_carry_forward(self, make_entry):
        entries = [make_entry(date(2025, 1, 3), 12)]
        summary = summarize(entries, 2025, 9, datetime(2025, 1, 20))
        assert summary.opening_balance == 12
        assert summary.closing_balance == 12

    def test_balances_never_negative(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 1), 10, used=10),
            make_entry(date(2025, 1, 2), 5, damaged=5, expire_date=date(2025, 1, 3)),
        ]
        agg = PeriodAggregator(entries, datetime(2025, 3, 1))
        for month in (1, 2, 3):
            summary = agg.summarize(2025, month)
            assert summary.opening_balance >= 0
            assert summary.closing_balance >= 0
        assert agg.current_balance() == 0

    def test_repeated_reports_are_identical(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 5), 100, used=30, expire_date=date(2025, 1, 31)),
            make_entry(date(2025, 2, 2), 20),
        ]
        as_of = datetime(2025, 2, 15)
        first = summarize(entries, 2025, 2, as_of)
        second = summarize(entries, 2025, 2, as_of)
        assert first == second
        # Reading never writes back onto the entries
        assert entries[0].used_stock == 30
        assert entries[0].damage_stock == 0

    def test_entry_order_does_not_matter(self, make_entry):
        entries = [
            make_entry(date(2025, 2, 1), 5),
            make_entry(date(2025, 1, 1), 7, used=2),
        ]
        as_of = datetime(2025, 3, 1)
        assert summarize(entries, 2025, 2, as_of) == summarize(list(reversed(entries)), 2025, 2, as_of)


@pytest.mark.unit
class TestCurrentBalance:

    def test_sums_available_stock(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 1), 50, used=20),
            make_entry(date(2025, 1, 2), 10, expire_date=date(2025, 1, 5)),
            make_entry(date(2025, 1, 10), 15, damaged=3),
        ]
        assert current_balance(entries, datetime(2025, 1, 20)) == 30 + 12

    def test_future_dated_entries_not_yet_on_hand(self, make_entry):
        entries = [
            make_entry(date(2025, 1, 1), 50),
            make_entry(date(2025, 1, 25), 10),
        ]
        assert current_balance(entries, datetime(2025, 1, 20)) == 50


@pytest.mark.unit
class TestCorruptEntries:

    def test_overconsumed_entry_fails_loudly(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 10)
        entry.used_stock = 8
        entry.damage_stock = 5
        with pytest.raises(CorruptLedgerError) as exc_info:
            PeriodAggregator([entry], datetime(2025, 1, 20))
        assert exc_info.value.field == "usedStock"
        assert exc_info.value.entry_id == entry.id

    def test_negative_quantity_fails_loudly(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 10)
        entry.quantity_added = -1
        with pytest.raises(CorruptLedgerError):
            summarize([entry], 2025, 1, datetime(2025, 1, 20))

    def test_missing_date_fails_loudly(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 10)
        entry.entry_date = None
        with pytest.raises(CorruptLedgerError) as exc_info:
            summarize([entry], 2025, 1, datetime(2025, 1, 20))
        assert exc_info.value.field == "entryDate"
