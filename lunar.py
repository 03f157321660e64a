"""
lunar.py
Lunisolar (Chinese) calendar for 1900-2100: solar <-> lunar conversion,
month/year lengths, lunar period arithmetic and display labels.

Everything is driven by LUNAR_INFO, one 20-bit descriptor per lunar year:
  bits 0-3   leap month number (0 = no leap month)
  bits 4-15  months 1..12, most significant bit first (1 = 30 days, 0 = 29)
  bit 16     leap month has 30 days
Lunar 1900-01-01 falls on solar 1900-01-31.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator

from errors import LunarOutOfRangeError, LunarSolarRoundTripError

MIN_YEAR = 1900
MAX_YEAR = 2100
EPOCH = date(1900, 1, 31)

LUNAR_INFO = (
    0x04bd8, 0x04ae0, 0x0a570, 0x054d5, 0x0d260, 0x0d950, 0x16554, 0x056a0, 0x09ad0, 0x055d2,
    0x04ae0, 0x0a5b6, 0x0a4d0, 0x0d250, 0x1d255, 0x0b540, 0x0d6a0, 0x0ada2, 0x095b0, 0x14977,
    0x04970, 0x0a4b0, 0x0b4b5, 0x06a50, 0x06d40, 0x1ab54, 0x02b60, 0x09570, 0x052f2, 0x04970,
    0x06566, 0x0d4a0, 0x0ea50, 0x06e95, 0x05ad0, 0x02b60, 0x186e3, 0x092e0, 0x1c8d7, 0x0c950,
    0x0d4a0, 0x1d8a6, 0x0b550, 0x056a0, 0x1a5b4, 0x025d0, 0x092d0, 0x0d2b2, 0x0a950, 0x0b557,
    0x06ca0, 0x0b550, 0x15355, 0x04da0, 0x0a5d0, 0x14573, 0x052d0, 0x0a9a8, 0x0e950, 0x06aa0,
    0x0aea6, 0x0ab50, 0x04b60, 0x0aae4, 0x0a570, 0x05260, 0x0f263, 0x0d950, 0x05b57, 0x056a0,
    0x096d0, 0x04dd5, 0x04ad0, 0x0a4d0, 0x0d4d4, 0x0d250, 0x0d558, 0x0b540, 0x0b6a0, 0x195a6,
    0x095b0, 0x049b0, 0x0a974, 0x0a4b0, 0x0b27a, 0x06a50, 0x06d40, 0x0af46, 0x0ab60, 0x09570,
    0x04af5, 0x04970, 0x064b0, 0x074a3, 0x0ea50, 0x06b58, 0x055c0, 0x0ab60, 0x096d5, 0x092e0,
    0x0c960, 0x0d954, 0x0d4a0, 0x0da50, 0x07552, 0x056a0, 0x0abb7, 0x025d0, 0x092d0, 0x0cab5,
    0x0a950, 0x0b4a0, 0x0baa4, 0x0ad50, 0x055d9, 0x04ba0, 0x0a5b0, 0x15176, 0x052b0, 0x0a930,
    0x07954, 0x06aa0, 0x0ad50, 0x05b52, 0x04b60, 0x0a6e6, 0x0a4e0, 0x0d260, 0x0ea65, 0x0d530,
    0x05aa0, 0x076a3, 0x096d0, 0x04bd7, 0x04ad0, 0x0a4d0, 0x1d0b6, 0x0d250, 0x0d520, 0x0dd45,
    0x0b5a0, 0x056d0, 0x055b2, 0x049b0, 0x0a577, 0x0a4b0, 0x0aa50, 0x1b255, 0x06d20, 0x0ada0,
    0x14b63, 0x09370, 0x049f8, 0x04970, 0x064b0, 0x168a6, 0x0ea50, 0x06b20, 0x1a6c4, 0x0aae0,
    0x0a2e0, 0x0d2e3, 0x0c960, 0x0d557, 0x0d4a0, 0x0da50, 0x05d55, 0x056a0, 0x0a6d0, 0x055d4,
    0x052d0, 0x0a9b8, 0x0a950, 0x0b4a0, 0x0b6a6, 0x0ad50, 0x055a0, 0x0aba4, 0x0a5b0, 0x052b0,
    0x0b273, 0x06930, 0x07337, 0x06aa0, 0x0ad50, 0x14b55, 0x04b60, 0x0a570, 0x054e4, 0x0d160,
    0x0e968, 0x0d520, 0x0daa0, 0x16aa6, 0x056d0, 0x04ae0, 0x0a9d4, 0x0a2d0, 0x0d150, 0x0f252,
    0x0d520,
)

HEAVENLY_STEMS = ("甲", "乙", "丙", "丁", "戊", "己", "庚", "辛", "壬", "癸")
EARTHLY_BRANCHES = ("子", "丑", "寅", "卯", "辰", "巳", "午", "未", "申", "酉", "戌", "亥")
ZODIAC_ANIMALS = ("鼠", "牛", "虎", "兔", "龙", "蛇", "马", "羊", "猴", "鸡", "狗", "猪")
MONTH_NAMES = ("正", "二", "三", "四", "五", "六", "七", "八", "九", "十", "冬", "腊")
DAY_NAMES = (
    "初一", "初二", "初三", "初四", "初五", "初六", "初七", "初八", "初九", "初十",
    "十一", "十二", "十三", "十四", "十五", "十六", "十七", "十八", "十九", "二十",
    "廿一", "廿二", "廿三", "廿四", "廿五", "廿六", "廿七", "廿八", "廿九", "三十",
)


def _info(year: int) -> int:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise LunarOutOfRangeError(f"Lunar year {year} is outside {MIN_YEAR}-{MAX_YEAR}", year)
    return LUNAR_INFO[year - MIN_YEAR]


def lunar_leap_month_index(year: int) -> int:
    """Return the leap month of ``year`` (1-12), or 0 when the year has none."""
    return _info(year) & 0xF


def lunar_leap_month_length(year: int) -> int:
    """Return 29 or 30 for the leap month of ``year``, 0 when there is none."""
    if not lunar_leap_month_index(year):
        return 0
    return 30 if _info(year) & 0x10000 else 29


def lunar_month_length(year: int, month: int) -> int:
    """Return the length (29 or 30) of regular month ``month`` of ``year``."""
    if not 1 <= month <= 12:
        raise ValueError(f"invalid lunar month: {month}")
    return 30 if _info(year) & (0x10000 >> month) else 29


def lunar_year_length(year: int) -> int:
    info = _info(year)
    long_months = bin(info & 0xFFF0).count("1")
    return 348 + long_months + lunar_leap_month_length(year)


def _month_sequence(year: int) -> Iterator[tuple[int, bool, int]]:
    """Yield (month, is_leap, length) in calendar order.

    A leap month follows the regular month sharing its number.
    """
    leap = lunar_leap_month_index(year)
    for month in range(1, 13):
        yield month, False, lunar_month_length(year, month)
        if month == leap:
            yield month, True, lunar_leap_month_length(year)


def _build_year_starts() -> tuple[int, ...]:
    starts = []
    offset = 0
    for year in range(MIN_YEAR, MAX_YEAR + 1):
        starts.append(offset)
        offset += lunar_year_length(year)
    return tuple(starts)


# Day offset from EPOCH of lunar new year, per lunar year.
_YEAR_STARTS = _build_year_starts()
_TABLE_END = _YEAR_STARTS[-1] + lunar_year_length(MAX_YEAR)


@dataclass(frozen=True)
class LunarDate:
    year: int
    month: int
    day: int
    is_leap_month: bool = False

    def __post_init__(self):
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise LunarOutOfRangeError(
                f"Lunar year {self.year} is outside {MIN_YEAR}-{MAX_YEAR}", self.year
            )
        if not 1 <= self.month <= 12:
            raise ValueError(f"invalid lunar month: {self.month}")
        if self.is_leap_month:
            if lunar_leap_month_index(self.year) != self.month:
                raise ValueError(f"lunar year {self.year} has no leap month {self.month}")
            length = lunar_leap_month_length(self.year)
        else:
            length = lunar_month_length(self.year, self.month)
        if not 1 <= self.day <= length:
            raise ValueError(f"invalid day {self.day} for lunar month of {length} days")

    def __str__(self) -> str:
        leap = "L" if self.is_leap_month else ""
        return f"{self.year:04d}-{leap}{self.month:02d}-{self.day:02d}"


@dataclass(frozen=True)
class LunarLabel:
    year_str: str
    month_str: str
    day_str: str
    zodiac: str

    @property
    def full(self) -> str:
        return f"{self.year_str}年{self.month_str}{self.day_str}"


def solar_to_lunar(year: int, month: int, day: int) -> LunarDate:
    """Convert a Gregorian date to its lunar date.

    Raises LunarOutOfRangeError for dates the table does not cover
    (before 1900-01-31 or after 2100-12-31).
    """
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise LunarOutOfRangeError(f"Solar year {year} is outside {MIN_YEAR}-{MAX_YEAR}", year)
    offset = (date(year, month, day) - EPOCH).days
    if offset < 0 or offset >= _TABLE_END:
        raise LunarOutOfRangeError(f"{year:04d}-{month:02d}-{day:02d} precedes the lunar table", year)

    index = bisect_right(_YEAR_STARTS, offset) - 1
    lunar_year = MIN_YEAR + index
    offset -= _YEAR_STARTS[index]

    for lunar_month, is_leap, length in _month_sequence(lunar_year):
        if offset < length:
            return LunarDate(lunar_year, lunar_month, offset + 1, is_leap)
        offset -= length
    raise LunarSolarRoundTripError(  # pragma: no cover
        f"offset overflowed lunar year {lunar_year}"
    )


def lunar_of(d: date) -> LunarDate:
    return solar_to_lunar(d.year, d.month, d.day)


def lunar_to_solar_strict(lunar: LunarDate) -> date:
    """Inverse of solar_to_lunar.

    Walks the same month order as solar_to_lunar, so the result always
    converts back to ``lunar``. Raises LunarOutOfRangeError when the solar
    date falls after 2100 and LunarSolarRoundTripError when no solar date
    matches.
    """
    offset = _YEAR_STARTS[lunar.year - MIN_YEAR]
    for lunar_month, is_leap, length in _month_sequence(lunar.year):
        if lunar_month == lunar.month and is_leap == lunar.is_leap_month:
            if lunar.day > length:
                raise LunarSolarRoundTripError(f"day {lunar.day} exceeds month length {length}", lunar)
            offset += lunar.day - 1
            break
        offset += length
    else:
        raise LunarSolarRoundTripError("no solar date matches lunar date", lunar)

    result = EPOCH + timedelta(days=offset)
    if result.year > MAX_YEAR:
        raise LunarOutOfRangeError(f"Lunar {lunar} falls after {MAX_YEAR}-12-31", result.year)
    return result


def lunar_to_solar(lunar: LunarDate) -> date | None:
    """Return the solar date for ``lunar``, or None if there is none."""
    try:
        return lunar_to_solar_strict(lunar)
    except (LunarOutOfRangeError, LunarSolarRoundTripError):
        return None


def add_lunar_period(lunar: LunarDate, value: int, unit: str) -> LunarDate:
    """Add ``value`` days, months or years to a lunar date.

    Days are solar days. Months and years keep the month number; the leap
    flag survives only when the target year has a leap month with that
    number. The day is clamped to the target month's length.
    """
    if unit == "day":
        shifted = lunar_to_solar_strict(lunar) + timedelta(days=value)
        return solar_to_lunar(shifted.year, shifted.month, shifted.day)

    if unit == "year":
        year, month = lunar.year + value, lunar.month
    elif unit == "month":
        index = (lunar.year - MIN_YEAR) * 12 + (lunar.month - 1) + value
        year, month = MIN_YEAR + index // 12, index % 12 + 1
    else:
        raise ValueError(f"invalid period unit: {unit!r}")

    if not MIN_YEAR <= year <= MAX_YEAR:
        raise LunarOutOfRangeError(f"Lunar year {year} is outside {MIN_YEAR}-{MAX_YEAR}", year)

    is_leap = lunar.is_leap_month and lunar_leap_month_index(year) == month
    length = lunar_leap_month_length(year) if is_leap else lunar_month_length(year, month)
    day = min(lunar.day, length)
    candidate = LunarDate(year, month, day, is_leap)
    while day > 1 and lunar_to_solar(candidate) is None:
        day -= 1
        candidate = LunarDate(year, month, day, is_leap)
    return candidate


def lunar_label(lunar: LunarDate) -> LunarLabel:
    stem = HEAVENLY_STEMS[(lunar.year - 4) % 10]
    branch = EARTHLY_BRANCHES[(lunar.year - 4) % 12]
    month = MONTH_NAMES[lunar.month - 1] + "月"
    if lunar.is_leap_month:
        month = "闰" + month
    return LunarLabel(
        year_str=stem + branch,
        month_str=month,
        day_str=DAY_NAMES[lunar.day - 1],
        zodiac=ZODIAC_ANIMALS[(lunar.year - 4) % 12],
    )


def lunar_to_full_label(lunar: LunarDate) -> str:
    """e.g. 甲辰年正月初一"""
    return lunar_label(lunar).full
