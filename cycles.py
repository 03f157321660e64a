"""
cycles.py
Billing-cycle date arithmetic: add N days/months/years on the solar or the
lunar calendar, and advance a date cycle by cycle until a condition holds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable

from errors import LunarOutOfRangeError
from log import get_logger
from lunar import add_lunar_period, lunar_of, lunar_to_solar_strict
from models import PERIOD_UNITS

logger = get_logger(__name__)


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return date(y, m, day)


def add_solar_period(start: date, value: int, unit: str) -> date:
    if unit == "day":
        return start + timedelta(days=value)
    if unit == "month":
        return add_months(start, value)
    if unit == "year":
        return add_months(start, 12 * value)
    raise ValueError(f"invalid period unit: {unit!r}")


def _check_period(value: int, unit: str) -> None:
    if unit not in PERIOD_UNITS:
        raise ValueError(f"invalid period unit: {unit!r}")
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"period value must be a positive integer, got {value!r}")


def add_period(base: datetime, value: int, unit: str, use_lunar: bool = False) -> datetime:
    """Return ``base`` moved forward by one period, keeping its time of day.

    With ``use_lunar`` the date is converted to the lunar calendar, the
    period is added there and the result converted back. Raises
    LunarOutOfRangeError when the lunar table does not cover the dates.
    """
    _check_period(value, unit)
    if use_lunar:
        next_lunar = add_lunar_period(lunar_of(base.date()), value, unit)
        new_date = lunar_to_solar_strict(next_lunar)
    else:
        new_date = add_solar_period(base.date(), value, unit)
    return datetime.combine(new_date, base.time())


@dataclass(frozen=True)
class Advance:
    date: datetime
    # Base the last period was added to.
    previous: datetime
    periods: int
    use_lunar: bool
    fell_back_to_solar: bool = False


class CycleAdvancer:
    """
    Adds one period at a time. Once a lunar step leaves the 1900-2100 table
    the advancer switches to solar arithmetic for the rest of its life.
    """

    def __init__(self, value: int, unit: str, use_lunar: bool = False):
        _check_period(value, unit)
        self.value = value
        self.unit = unit
        self.use_lunar = use_lunar
        self.fell_back_to_solar = False

    def step(self, base: datetime) -> datetime:
        if self.use_lunar:
            try:
                return add_period(base, self.value, self.unit, use_lunar=True)
            except LunarOutOfRangeError as exc:
                logger.warning(
                    "lunar_cycle_out_of_range_fallback_solar",
                    base=base.isoformat(),
                    error=exc.message,
                )
                self.use_lunar = False
                self.fell_back_to_solar = True
        return add_period(base, self.value, self.unit)

    def _result(self, current: datetime, previous: datetime, periods: int) -> Advance:
        return Advance(
            date=current,
            previous=previous,
            periods=periods,
            use_lunar=self.use_lunar,
            fell_back_to_solar=self.fell_back_to_solar,
        )

    def advance(self, base: datetime, times: int = 1) -> Advance:
        """Apply the period exactly ``times`` times."""
        if times < 1:
            raise ValueError("times must be >= 1")
        previous = current = base
        for _ in range(times):
            previous, current = current, self.step(current)
        return self._result(current, previous, times)

    def advance_until(self, base: datetime, is_done: Callable[[datetime], bool]) -> Advance:
        """Apply the period at least once, then until ``is_done(date)`` holds.

        Terminates because every step moves the date strictly forward.
        """
        previous, current = base, self.step(base)
        periods = 1
        while not is_done(current):
            previous, current = current, self.step(current)
            periods += 1
        return self._result(current, previous, periods)
