"""Expiry evaluation tests."""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.services.expiry import (
    available_quantity,
    days_until_expiry,
    expiry_cutoff,
    is_expired,
    remaining_expired,
    remaining_quantity,
)


@pytest.mark.unit
class TestExpiryCutoff:

    def test_cutoff_is_one_minute_past_midnight_next_day(self):
        assert expiry_cutoff(date(2025, 1, 31)) == datetime(2025, 2, 1, 0, 1)

    def test_cutoff_rolls_over_year_end(self):
        assert expiry_cutoff(date(2024, 12, 31)) == datetime(2025, 1, 1, 0, 1)

    def test_cutoff_on_leap_day(self):
        assert expiry_cutoff(date(2024, 2, 28)) == datetime(2024, 2, 29, 0, 1)


@pytest.mark.unit
class TestIsExpired:

    def test_not_expired_late_on_label_date(self, make_entry):
        entry = make_entry(date(2025, 1, 10), 10, expire_date=date(2025, 1, 15))
        assert not is_expired(entry, datetime(2025, 1, 15, 23, 59))

    def test_not_expired_at_midnight(self, make_entry):
        entry = make_entry(date(2025, 1, 10), 10, expire_date=date(2025, 1, 15))
        assert not is_expired(entry, datetime(2025, 1, 16, 0, 0))

    def test_expired_at_cutoff(self, make_entry):
        entry = make_entry(date(2025, 1, 10), 10, expire_date=date(2025, 1, 15))
        assert is_expired(entry, datetime(2025, 1, 16, 0, 1))

    def test_no_expiry_date_never_expires(self, make_entry):
        entry = make_entry(date(2025, 1, 10), 10)
        assert not is_expired(entry, datetime(2099, 1, 1))

    def test_aware_instant_is_read_in_business_time(self, make_entry):
        # 18:31 UTC on the 15th is 00:01 on the 16th in Asia/Kolkata
        entry = make_entry(date(2025, 1, 10), 10, expire_date=date(2025, 1, 15))
        assert is_expired(entry, datetime(2025, 1, 15, 18, 31, tzinfo=timezone.utc))
        assert not is_expired(entry, datetime(2025, 1, 15, 18, 29, tzinfo=timezone.utc))


@pytest.mark.unit
class TestQuantities:

    def test_remaining_nets_used_and_damaged(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 100, used=30, damaged=5)
        assert remaining_quantity(entry) == 65

    def test_whole_remainder_expires(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 100, used=30, damaged=5,
                           expire_date=date(2025, 1, 5))
        as_of = datetime(2025, 1, 6, 0, 1)
        assert remaining_expired(entry, as_of) == 65
        assert available_quantity(entry, as_of) == 0

    def test_nothing_expired_before_cutoff(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 100, used=30, expire_date=date(2025, 1, 5))
        as_of = datetime(2025, 1, 5, 12, 0)
        assert remaining_expired(entry, as_of) == 0
        assert available_quantity(entry, as_of) == 70

    def test_fully_consumed_entry_expires_nothing(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 10, used=8, damaged=2,
                           expire_date=date(2025, 1, 5))
        assert remaining_expired(entry, datetime(2025, 2, 1)) == 0

    def test_conservation_holds_across_the_cutoff(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 40, used=15, damaged=5,
                           expire_date=date(2025, 1, 3))
        cutoff = expiry_cutoff(entry.expire_date)
        for as_of in (cutoff - timedelta(minutes=1), cutoff):
            unconsumed = remaining_quantity(entry)
            assert entry.used_stock + entry.damage_stock + unconsumed == entry.quantity_added
            assert available_quantity(entry, as_of) + remaining_expired(entry, as_of) == unconsumed


@pytest.mark.unit
class TestDaysUntilExpiry:

    def test_counts_calendar_days(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 10, expire_date=date(2025, 1, 23))
        assert days_until_expiry(entry, datetime(2025, 1, 20, 22, 0)) == 3

    def test_zero_on_label_date(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 10, expire_date=date(2025, 1, 20))
        assert days_until_expiry(entry, datetime(2025, 1, 20, 8, 0)) == 0

    def test_none_without_expiry(self, make_entry):
        entry = make_entry(date(2025, 1, 1), 10)
        assert days_until_expiry(entry, datetime(2025, 1, 20)) is None
