from datetime import date

import pytest

from config import parse_horizons
from periods import (
    Granularity,
    ParseError,
    add_months,
    covered_months,
    following_keys,
    parse_period_key,
    period_key,
    period_start,
)


def test_period_key_formats() -> None:
    day = date(2025, 8, 14)
    assert period_key(day, Granularity.daily) == "2025-08-14"
    assert period_key(day, Granularity.weekly) == "2025-W33"
    assert period_key(day, Granularity.monthly) == "2025-08"
    assert period_key(day, Granularity.quarterly) == "2025-Q3"
    assert period_key(day, Granularity.semiannual) == "2025-H2"
    assert period_key(day, Granularity.annual) == "2025"


def test_weekly_key_uses_iso_year_at_boundaries() -> None:
    assert period_key(date(2024, 12, 30), Granularity.weekly) == "2025-W01"
    assert period_key(date(2021, 1, 3), Granularity.weekly) == "2020-W53"


def test_parse_period_key_returns_period_start() -> None:
    assert parse_period_key("2025-03", Granularity.monthly) == date(2025, 3, 1)
    assert parse_period_key("2025-Q4", Granularity.quarterly) == date(2025, 10, 1)
    assert parse_period_key("2025-H2", Granularity.semiannual) == date(2025, 7, 1)
    assert parse_period_key("2025", Granularity.annual) == date(2025, 1, 1)
    assert parse_period_key("2025-W01", Granularity.weekly) == date(2024, 12, 30)
    assert parse_period_key("2025-02-28", Granularity.daily) == date(2025, 2, 28)


def test_round_trip_identifies_same_period() -> None:
    samples = [
        date(2024, 2, 29),
        date(2025, 1, 1),
        date(2025, 6, 30),
        date(2025, 12, 31),
    ]
    for granularity in Granularity:
        for day in samples:
            key = period_key(day, granularity)
            start = parse_period_key(key, granularity)
            assert period_key(start, granularity) == key
            assert start == period_start(day, granularity)


@pytest.mark.parametrize(
    "key,granularity",
    [
        ("2025-13", Granularity.monthly),
        ("2025-1", Granularity.monthly),
        ("2025-Q5", Granularity.quarterly),
        ("2025-H3", Granularity.semiannual),
        ("25", Granularity.annual),
        ("2025-W54", Granularity.weekly),
        ("2025-02-30", Granularity.daily),
        ("", Granularity.monthly),
    ],
)
def test_malformed_keys_raise_parse_error(key, granularity) -> None:
    with pytest.raises(ParseError):
        parse_period_key(key, granularity)


def test_following_keys_cross_year() -> None:
    assert following_keys(date(2025, 11, 20), Granularity.monthly, 3) == [
        "2025-12",
        "2026-01",
        "2026-02",
    ]
    assert following_keys(date(2025, 11, 20), Granularity.quarterly, 2) == [
        "2026-Q1",
        "2026-Q2",
    ]
    assert following_keys(date(2025, 12, 29), Granularity.weekly, 1) == ["2026-W02"]
    assert following_keys(date(2025, 1, 1), Granularity.annual, 0) == []


def test_covered_months_do_not_skip_short_months() -> None:
    assert covered_months(date(2025, 1, 31), 3) == ["2025-01", "2025-02", "2025-03"]
    assert covered_months(date(2025, 11, 15), 3) == ["2025-11", "2025-12", "2026-01"]


def test_add_months_clamps_day() -> None:
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 12, 15), 2) == date(2026, 2, 15)


def test_parse_horizons() -> None:
    assert parse_horizons("monthly=12, quarterly=4,annual=5") == {
        "monthly": 12,
        "quarterly": 4,
        "annual": 5,
    }
    assert parse_horizons("") == {}
    with pytest.raises(ValueError):
        parse_horizons("monthly")
    with pytest.raises(ValueError):
        parse_horizons("monthly=-1")
