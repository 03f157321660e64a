from datetime import date, timedelta

import pytest

from errors import LunarOutOfRangeError, LunarSolarRoundTripError
from lunar import (
    LunarDate,
    _month_sequence,
    add_lunar_period,
    lunar_label,
    lunar_leap_month_index,
    lunar_leap_month_length,
    lunar_month_length,
    lunar_of,
    lunar_to_full_label,
    lunar_to_solar,
    lunar_to_solar_strict,
    lunar_year_length,
    solar_to_lunar,
)


def test_lunar_new_year_2024():
    lunar = solar_to_lunar(2024, 2, 10)
    assert lunar == LunarDate(2024, 1, 1, False)

    label = lunar_label(lunar)
    assert label.year_str == "甲辰"
    assert label.month_str == "正月"
    assert label.day_str == "初一"
    assert label.zodiac == "龙"
    assert lunar_to_full_label(lunar) == "甲辰年正月初一"


def test_epoch_is_first_lunar_day():
    assert solar_to_lunar(1900, 1, 31) == LunarDate(1900, 1, 1)


@pytest.mark.parametrize("year,month,day", [(1900, 1, 30), (1899, 12, 31), (2101, 1, 1)])
def test_out_of_range_solar_dates(year, month, day):
    with pytest.raises(LunarOutOfRangeError):
        solar_to_lunar(year, month, day)


def test_table_lookups_2023_leap_second_month():
    assert lunar_leap_month_index(2023) == 2
    assert lunar_leap_month_length(2023) == 29
    assert lunar_month_length(2023, 1) == 29
    assert lunar_month_length(2023, 2) == 30
    assert lunar_leap_month_index(2024) == 0
    assert lunar_leap_month_length(2024) == 0
    assert lunar_year_length(2023) == 384


def test_leap_month_first_pass_is_regular_repeat_is_leap():
    assert solar_to_lunar(2023, 2, 20) == LunarDate(2023, 2, 1, False)
    assert solar_to_lunar(2023, 3, 22) == LunarDate(2023, 2, 1, True)
    assert solar_to_lunar(2023, 4, 20) == LunarDate(2023, 3, 1, False)
    assert lunar_label(LunarDate(2023, 2, 1, True)).month_str == "闰二月"


def test_lunar_date_validation():
    with pytest.raises(ValueError):
        LunarDate(2024, 2, 1, True)  # 2024 has no leap month
    with pytest.raises(ValueError):
        LunarDate(2023, 1, 30)  # 29-day month
    with pytest.raises(LunarOutOfRangeError):
        LunarDate(2101, 1, 1)


def test_round_trip_every_solar_day():
    day = date(1900, 1, 31)
    end = date(2100, 12, 31)
    while day <= end:
        assert lunar_to_solar(lunar_of(day)) == day, day
        day += timedelta(days=1)


def test_round_trip_every_lunar_day():
    for year in range(1900, 2100):
        for month, is_leap, length in _month_sequence(year):
            for day in (1, length):
                lunar = LunarDate(year, month, day, is_leap)
                assert lunar_of(lunar_to_solar(lunar)) == lunar


def test_lunar_dates_past_2100_have_no_solar_equivalent():
    late = LunarDate(2100, 12, 29)
    assert lunar_to_solar(late) is None
    with pytest.raises(LunarOutOfRangeError):
        lunar_to_solar_strict(late)


def test_strict_conversion_reports_inconsistent_dates():
    # bypass validation to simulate a corrupted value
    bogus = object.__new__(LunarDate)
    object.__setattr__(bogus, "year", 2024)
    object.__setattr__(bogus, "month", 1)
    object.__setattr__(bogus, "day", 1)
    object.__setattr__(bogus, "is_leap_month", True)
    with pytest.raises(LunarSolarRoundTripError):
        lunar_to_solar_strict(bogus)
    assert lunar_to_solar(bogus) is None


def test_twelve_month_steps_match_one_twelve_month_step():
    start = LunarDate(2022, 3, 15)
    stepped = start
    for _ in range(12):
        stepped = add_lunar_period(stepped, 1, "month")
    jumped = add_lunar_period(start, 12, "month")
    assert stepped == jumped == LunarDate(2023, 3, 15)
    assert lunar_to_solar(stepped) == lunar_to_solar(jumped)


def test_add_year_drops_leap_flag_when_next_year_has_no_such_leap_month():
    assert add_lunar_period(LunarDate(2023, 2, 10, True), 1, "year") == LunarDate(2024, 2, 10, False)


def test_add_month_clamps_day_to_shorter_month():
    # 2023 month 2 has 30 days, month 3 has 29; the leap month is skipped
    assert add_lunar_period(LunarDate(2023, 2, 30), 1, "month") == LunarDate(2023, 3, 29)


def test_add_days_is_solar_day_arithmetic():
    result = add_lunar_period(LunarDate(2024, 1, 1), 30, "day")
    assert lunar_to_solar(result) == date(2024, 3, 11)


def test_add_period_outside_table_raises():
    with pytest.raises(LunarOutOfRangeError):
        add_lunar_period(LunarDate(2100, 6, 1), 1, "year")


def test_add_period_rejects_unknown_unit():
    with pytest.raises(ValueError):
        add_lunar_period(LunarDate(2024, 1, 1), 1, "week")
