from datetime import date, datetime

import pytest

from cycles import CycleAdvancer, add_months, add_period, add_solar_period


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)


def test_add_solar_period_units():
    assert add_solar_period(date(2024, 2, 29), 1, "year") == date(2025, 2, 28)
    assert add_solar_period(date(2024, 12, 25), 10, "day") == date(2025, 1, 4)
    assert add_solar_period(date(2024, 1, 15), 2, "month") == date(2024, 3, 15)


def test_add_period_keeps_time_of_day():
    assert add_period(datetime(2024, 1, 15, 18, 30), 1, "month") == datetime(2024, 2, 15, 18, 30)


def test_add_period_lunar_year():
    # lunar new year 2024 -> lunar new year 2025
    assert add_period(datetime(2024, 2, 10), 1, "year", use_lunar=True) == datetime(2025, 1, 29)


@pytest.mark.parametrize("value,unit", [(0, "month"), (-1, "day"), (1, "week"), (None, "month"), (True, "day")])
def test_add_period_rejects_bad_periods(value, unit):
    with pytest.raises(ValueError):
        add_period(datetime(2024, 1, 1), value, unit)


def test_advance_applies_each_step_to_previous_result():
    advance = CycleAdvancer(1, "month").advance(datetime(2024, 1, 31), 3)
    assert advance.date == datetime(2024, 4, 29)
    assert advance.previous == datetime(2024, 3, 29)
    assert advance.periods == 3


def test_advance_until_catches_up_in_one_call():
    advance = CycleAdvancer(1, "month").advance_until(
        datetime(2024, 1, 15), lambda d: d >= datetime(2024, 6, 1)
    )
    assert advance.date == datetime(2024, 6, 15)
    assert advance.previous == datetime(2024, 5, 15)
    assert advance.periods == 5


def test_advance_until_adds_at_least_one_period():
    advance = CycleAdvancer(7, "day").advance_until(datetime(2024, 1, 1), lambda d: True)
    assert advance.date == datetime(2024, 1, 8)
    assert advance.periods == 1


def test_lunar_advancer_falls_back_to_solar_past_2100():
    advancer = CycleAdvancer(1, "year", use_lunar=True)
    advance = advancer.advance(datetime(2100, 3, 1), 2)
    assert advance.date == datetime(2102, 3, 1)
    assert advance.fell_back_to_solar
    assert not advance.use_lunar
    assert not advancer.use_lunar
