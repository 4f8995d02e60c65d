from datetime import date

import pytest

from periods import Period, next_period, next_period_name, resolve_period


def test_next_period_spans_one_month():
    current = Period(date(2024, 3, 1), date(2024, 3, 31))
    assert next_period(current) == Period(date(2024, 4, 1), date(2024, 4, 30))


def test_next_period_from_mid_month_window():
    current = Period(date(2024, 1, 15), date(2024, 2, 14))
    assert next_period(current) == Period(date(2024, 2, 15), date(2024, 3, 14))


def test_next_period_name_replaces_previous_suffix():
    assert next_period_name("Household", date(2024, 4, 1)) == "Household - Apr-2024"
    assert (
        next_period_name("Household - Apr-2024", date(2024, 5, 1))
        == "Household - May-2024"
    )


def test_overlap_is_inclusive():
    march = Period(date(2024, 3, 1), date(2024, 3, 31))
    assert march.overlaps(Period(date(2024, 3, 31), date(2024, 4, 30)))
    assert not march.overlaps(Period(date(2024, 4, 1), date(2024, 4, 30)))


def test_resolve_period():
    today = date(2024, 3, 10)
    assert resolve_period(None, None, None, today=today) is None
    assert resolve_period("this_month", None, None, today=today) == Period(
        date(2024, 3, 1), date(2024, 3, 31)
    )
    assert resolve_period("last_month", None, None, today=today) == Period(
        date(2024, 2, 1), date(2024, 2, 29)
    )
    with pytest.raises(ValueError):
        resolve_period("custom", "2024-03-10", "2024-03-01", today=today)
