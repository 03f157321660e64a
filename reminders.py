"""
reminders.py
Reminder thresholds: normalize a subscription's reminder fields, measure how
far away the expiry is, decide whether a reminder is due and word it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

import clock
from errors import LunarOutOfRangeError
from lunar import lunar_of, lunar_to_full_label
from models import AppConfig, ReminderSetting, Subscription

DEFAULT_REMINDER_DAYS = 7
DEFAULT_REMINDER_HOURS = 0


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def resolve_reminder_setting(
    reminder_unit: Any = None,
    reminder_value: Any = None,
    reminder_days: Any = None,
    reminder_hours: Any = None,
) -> ReminderSetting:
    """
    Collapse current and legacy reminder fields into one setting.

    - unit is 'hour' only when explicitly requested, otherwise 'day'
    - an explicit non-negative reminder_value wins
    - otherwise the legacy field for the unit (reminder_hours defaults to 0,
      reminder_days to 7)
    - anything negative or non-numeric ends up as 0
    """
    unit = "hour" if reminder_unit == "hour" else "day"

    value = _as_number(reminder_value)
    if value is None or value < 0:
        if unit == "hour":
            legacy, default = reminder_hours, DEFAULT_REMINDER_HOURS
        else:
            legacy, default = reminder_days, DEFAULT_REMINDER_DAYS
        value = float(default) if legacy in (None, "") else _as_number(legacy)

    if value is None or value < 0:
        value = 0.0
    return ReminderSetting(unit=unit, value=value)


def reminder_setting_for(sub: Subscription) -> ReminderSetting:
    return resolve_reminder_setting(
        sub.reminder_unit, sub.reminder_value, sub.reminder_days, sub.reminder_hours
    )


def should_trigger_reminder(setting: ReminderSetting, days_diff: int, hours_diff: float) -> bool:
    # hour/0 only covers the coming hour, while day/0 covers the whole
    # expiry day. Both behaviours are relied on; do not unify them.
    if setting.unit == "hour":
        if setting.value == 0:
            return 0 <= hours_diff < 1
        return 0 <= hours_diff <= setting.value
    if setting.value == 0:
        return days_diff == 0
    return 0 <= days_diff <= setting.value


def days_diff(expiry: datetime, now: datetime, tz_name: str | None) -> int:
    """Calendar days between the local days of ``now`` and ``expiry``.

    ``expiry`` is a naive wall-clock datetime in ``tz_name``.
    """
    expiry_midnight = clock.midnight_timestamp(clock.from_local(expiry, tz_name), tz_name)
    now_midnight = clock.midnight_timestamp(now, tz_name)
    # DST days are 23 or 25 hours long
    return round((expiry_midnight - now_midnight).total_seconds() / 86400)


def hours_diff(expiry: datetime, now: datetime, tz_name: str | None) -> float:
    """Real elapsed hours from ``now`` until ``expiry``."""
    return (clock.from_local(expiry, tz_name) - clock.as_instant(now)).total_seconds() / 3600


@dataclass(frozen=True)
class ReminderDue:
    subscription: Subscription
    days_remaining: int
    hours_remaining: float
    setting: ReminderSetting


def check_reminder(
    sub: Subscription,
    now: datetime,
    tz_name: str | None,
    expiry: datetime | None = None,
    days: int | None = None,
) -> ReminderDue | None:
    """Return a ReminderDue when ``sub`` should be reminded about right now.

    ``days`` lets the caller pass an already computed (e.g. lunar-aware)
    day difference.
    """
    expiry = expiry or sub.expiry_date
    setting = reminder_setting_for(sub)
    d = days_diff(expiry, now, tz_name) if days is None else days
    h = hours_diff(expiry, now, tz_name)
    if should_trigger_reminder(setting, d, h):
        return ReminderDue(subscription=sub, days_remaining=d, hours_remaining=h, setting=setting)
    return None


def describe_remaining(days: int, hours: float, unit: str = "day") -> str:
    if unit == "hour" and 0 <= hours < 24:
        return f"expires in {hours:.1f} hours"
    if days > 0:
        return f"expires in {days} day{'s' if days != 1 else ''}"
    if days == 0:
        return "expires today"
    return f"expired {-days} day{'s' if days != -1 else ''} ago"


def lunar_text(expiry: datetime) -> str | None:
    try:
        return lunar_to_full_label(lunar_of(expiry.date()))
    except LunarOutOfRangeError:
        return None


def build_reminder_message(
    due: Iterable[ReminderDue], config: AppConfig, now: datetime
) -> tuple[str, str, list[str]]:
    """Return (title, body, tags) for one notification covering ``due``."""
    due = sorted(due, key=lambda r: (r.days_remaining, r.hours_remaining))
    title = f"Subscription reminder: {len(due)} due" if len(due) != 1 else (
        f"Subscription reminder: {due[0].subscription.name}"
    )

    lines = []
    for item in due:
        sub = item.subscription
        expiry_text = sub.expiry_date.strftime("%Y-%m-%d %H:%M") if item.setting.unit == "hour" \
            else sub.expiry_date.strftime("%Y-%m-%d")
        line = f"- {sub.name}"
        if sub.custom_type:
            line += f" [{sub.custom_type}]"
        line += f": {describe_remaining(item.days_remaining, item.hours_remaining, item.setting.unit)}"
        line += f" ({expiry_text}"
        if sub.use_lunar_cycle or config.show_lunar:
            label = lunar_text(sub.expiry_date)
            if label:
                line += f", lunar {label}"
        line += ")"
        if sub.amount:
            line += f", {sub.amount:.2f} {sub.currency}"
        if sub.auto_renew:
            line += ", auto-renew on"
        if sub.notes:
            line += f"\n  {sub.notes}"
        lines.append(line)

    local_now = clock.to_local(now, config.timezone)
    lines.append("")
    lines.append(f"Sent at {local_now:%Y-%m-%d %H:%M} ({config.timezone})")
    tags = sorted({r.subscription.custom_type for r in due if r.subscription.custom_type})
    return title, "\n".join(lines), ["subscription", *tags]
