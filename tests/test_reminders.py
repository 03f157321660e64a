from datetime import datetime, timezone

import pytest

from models import AppConfig, ReminderSetting
from reminders import (
    ReminderDue,
    build_reminder_message,
    check_reminder,
    days_diff,
    describe_remaining,
    hours_diff,
    reminder_setting_for,
    resolve_reminder_setting,
    should_trigger_reminder,
)


@pytest.mark.parametrize(
    "days,expected",
    [(7, True), (8, False), (0, True), (-1, False)],
)
def test_day_threshold(days, expected):
    assert should_trigger_reminder(ReminderSetting("day", 7), days, days * 24.0) is expected


def test_day_zero_means_expiry_day_only():
    setting = ReminderSetting("day", 0)
    assert should_trigger_reminder(setting, 0, 15.0)
    assert not should_trigger_reminder(setting, 1, 20.0)


def test_hour_zero_means_within_the_hour():
    setting = ReminderSetting("hour", 0)
    assert should_trigger_reminder(setting, 0, 0.5)
    assert not should_trigger_reminder(setting, 0, 1.0)
    assert not should_trigger_reminder(setting, 0, -0.1)


def test_hour_threshold_is_inclusive():
    setting = ReminderSetting("hour", 12)
    assert should_trigger_reminder(setting, 0, 12.0)
    assert not should_trigger_reminder(setting, 1, 12.5)


def test_hour_zero_and_day_zero_differ_on_the_same_input():
    # 5 hours left, still the expiry day
    assert should_trigger_reminder(ReminderSetting("day", 0), 0, 5.0)
    assert not should_trigger_reminder(ReminderSetting("hour", 0), 0, 5.0)


def test_resolve_defaults_to_seven_days():
    assert resolve_reminder_setting() == ReminderSetting("day", 7.0)


def test_resolve_hour_defaults_to_zero():
    assert resolve_reminder_setting("hour") == ReminderSetting("hour", 0.0)


def test_resolve_explicit_value_wins_over_legacy():
    assert resolve_reminder_setting("day", 3, reminder_days=10) == ReminderSetting("day", 3.0)
    assert resolve_reminder_setting("hour", "6", reminder_hours=2) == ReminderSetting("hour", 6.0)


def test_resolve_uses_legacy_field_for_unit():
    assert resolve_reminder_setting(None, None, reminder_days=3) == ReminderSetting("day", 3.0)
    assert resolve_reminder_setting("hour", -1, reminder_hours=4) == ReminderSetting("hour", 4.0)


def test_resolve_unknown_unit_is_day():
    assert resolve_reminder_setting("week", 2).unit == "day"


def test_resolve_garbage_becomes_zero():
    assert resolve_reminder_setting("day", None, reminder_days="soon") == ReminderSetting("day", 0.0)
    assert resolve_reminder_setting("day", None, reminder_days=-3) == ReminderSetting("day", 0.0)


def test_reminder_setting_for_subscription(make_sub):
    sub = make_sub(reminder_unit="hour", reminder_value=12)
    assert reminder_setting_for(sub) == ReminderSetting("hour", 12.0)


def test_days_diff_uses_local_calendar_days():
    now = datetime(2024, 7, 15, 9, 0, tzinfo=timezone.utc)  # 17:00 in Shanghai
    assert days_diff(datetime(2024, 7, 16, 0, 30), now, "Asia/Shanghai") == 1
    late = datetime(2024, 7, 15, 17, 0, tzinfo=timezone.utc)  # 01:00 on the 16th in Shanghai
    assert days_diff(datetime(2024, 7, 16, 23, 0), late, "Asia/Shanghai") == 0
    assert days_diff(datetime(2024, 7, 14, 23, 0), late, "Asia/Shanghai") == -2


def test_days_diff_across_dst_change():
    now = datetime(2024, 3, 9, 17, 0, tzinfo=timezone.utc)  # noon EST, DST starts Mar 10
    assert days_diff(datetime(2024, 3, 11), now, "America/New_York") == 2


def test_hours_diff(now):
    assert hours_diff(datetime(2024, 7, 15, 21, 0), now, "UTC") == pytest.approx(12.0)
    assert hours_diff(datetime(2024, 7, 15, 21, 0), now, "Asia/Shanghai") == pytest.approx(4.0)


def test_check_reminder(make_sub, now):
    due = check_reminder(make_sub(expiry_date=datetime(2024, 7, 20)), now, "UTC")
    assert due is not None
    assert due.days_remaining == 5
    assert check_reminder(make_sub(expiry_date=datetime(2024, 7, 30)), now, "UTC") is None


def test_describe_remaining():
    assert describe_remaining(3, 70.0) == "expires in 3 days"
    assert describe_remaining(1, 20.0) == "expires in 1 day"
    assert describe_remaining(0, 5.0) == "expires today"
    assert describe_remaining(-2, -40.0) == "expired 2 days ago"
    assert describe_remaining(0, 5.3, "hour") == "expires in 5.3 hours"


def test_build_reminder_message_single(make_sub, now):
    sub = make_sub(expiry_date=datetime(2024, 7, 20), notes="shared account")
    due = ReminderDue(sub, 5, 111.0, ReminderSetting("day", 7))
    title, body, tags = build_reminder_message([due], AppConfig(), now)
    assert title == "Subscription reminder: Netflix"
    assert "- Netflix [Video]: expires in 5 days (2024-07-20)" in body
    assert "15.00 USD" in body
    assert "auto-renew on" in body
    assert "shared account" in body
    assert "Sent at 2024-07-15 09:00 (UTC)" in body
    assert tags == ["subscription", "Video"]


def test_build_reminder_message_orders_by_urgency_and_shows_lunar(make_sub, now):
    later = ReminderDue(make_sub(name="Later", expiry_date=datetime(2024, 7, 21)), 6, 135.0,
                        ReminderSetting("day", 7))
    sooner = ReminderDue(
        make_sub(id="sub-2", name="Sooner", custom_type="Cloud", expiry_date=datetime(2024, 2, 10)),
        1, 20.0, ReminderSetting("day", 7),
    )
    title, body, tags = build_reminder_message([later, sooner], AppConfig(show_lunar=True), now)
    assert title == "Subscription reminder: 2 due"
    assert body.index("Sooner") < body.index("Later")
    assert "lunar 甲辰年正月初一" in body
    assert tags == ["subscription", "Cloud", "Video"]
