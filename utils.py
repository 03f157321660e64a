"""
utils.py
Validation, list helpers, exports, cost summaries, sample data.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pandas as pd

import db
from clock import to_local
from errors import SubscriptionNotFoundError, ValidationError
from models import PERIOD_UNITS, Subscription, new_id
from rates import convert
from reminders import days_diff, hours_diff, lunar_text, reminder_setting_for
from renewal import create_subscription

SUBSCRIPTION_COLUMNS = [
    "id", "name", "custom_type", "amount", "currency", "period", "mode",
    "start_date", "expiry_date", "days_left", "lunar", "auto_renew", "is_active",
]


def validate_subscription_inputs(
    name: str,
    amount,
    period_value,
    period_unit: str,
    start_date: datetime | None,
    expiry_date: datetime | None,
    reminder_value=0,
) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Name is required.")
    try:
        if float(amount) < 0:
            errors.append("Amount cannot be negative.")
    except (TypeError, ValueError):
        errors.append("Amount must be numeric.")
    try:
        if int(period_value) <= 0:
            errors.append("Cycle length must be a positive whole number.")
    except (TypeError, ValueError):
        errors.append("Cycle length must be a positive whole number.")
    if period_unit not in PERIOD_UNITS:
        errors.append(f"Cycle unit must be one of {', '.join(PERIOD_UNITS)}.")
    if expiry_date is None:
        errors.append("Expiry date is required.")
    elif start_date is not None and expiry_date <= start_date:
        errors.append("Expiry date must be after start date.")
    try:
        if float(reminder_value) < 0:
            errors.append("Reminder value cannot be negative.")
    except (TypeError, ValueError):
        errors.append("Reminder value must be numeric.")
    return errors


def parse_amount(text) -> float:
    try:
        amount = float(text)
    except (TypeError, ValueError):
        raise ValidationError(["Amount must be numeric."]) from None
    if amount < 0:
        raise ValidationError(["Amount cannot be negative."])
    return amount


def find_subscription(subs: list[Subscription], subscription_id: str) -> Subscription:
    for sub in subs:
        if sub.id == subscription_id:
            return sub
    raise SubscriptionNotFoundError(subscription_id)


def replace_subscription(subs: list[Subscription], updated: Subscription) -> list[Subscription]:
    find_subscription(subs, updated.id)
    return [updated if s.id == updated.id else s for s in subs]


def remove_subscription(subs: list[Subscription], subscription_id: str) -> list[Subscription]:
    find_subscription(subs, subscription_id)
    return [s for s in subs if s.id != subscription_id]


def period_label(sub: Subscription) -> str:
    if not sub.has_period:
        return "-"
    label = f"{sub.period_value} {sub.period_unit}{'s' if sub.period_value != 1 else ''}"
    return label + " (lunar)" if sub.use_lunar_cycle else label


def subscriptions_frame(subs: list[Subscription], now: datetime, tz_name: str | None) -> pd.DataFrame:
    rows = []
    for sub in subs:
        rows.append({
            "id": sub.id,
            "name": sub.name,
            "custom_type": sub.custom_type,
            "amount": sub.amount,
            "currency": sub.currency,
            "period": period_label(sub),
            "mode": sub.subscription_mode,
            "start_date": sub.start_date.strftime("%Y-%m-%d") if sub.start_date else "",
            "expiry_date": sub.expiry_date.strftime("%Y-%m-%d %H:%M"),
            "days_left": days_diff(sub.expiry_date, now, tz_name),
            "lunar": lunar_text(sub.expiry_date) or "",
            "auto_renew": sub.auto_renew,
            "is_active": sub.is_active,
        })
    if not rows:
        return pd.DataFrame(columns=SUBSCRIPTION_COLUMNS)
    return pd.DataFrame(rows, columns=SUBSCRIPTION_COLUMNS).sort_values("days_left")


def reminder_preview_frame(subs: list[Subscription], now: datetime, tz_name: str | None) -> pd.DataFrame:
    """Every active subscription with its remaining time and reminder threshold."""
    rows = []
    for sub in subs:
        if not sub.is_active:
            continue
        setting = reminder_setting_for(sub)
        rows.append({
            "name": sub.name,
            "expiry_date": sub.expiry_date.strftime("%Y-%m-%d %H:%M"),
            "days_left": days_diff(sub.expiry_date, now, tz_name),
            "hours_left": round(hours_diff(sub.expiry_date, now, tz_name), 1),
            "remind": f"{setting.value:g} {setting.unit}(s) before",
        })
    return pd.DataFrame(rows, columns=["name", "expiry_date", "days_left", "hours_left", "remind"])


def payments_frame(subs: list[Subscription]) -> pd.DataFrame:
    rows = []
    for sub in subs:
        for p in sub.payment_history:
            rows.append({
                "subscription_id": sub.id,
                "subscription": sub.name,
                "payment_id": p.id,
                "date": p.date,
                "amount": p.amount,
                "currency": sub.currency,
                "type": p.type,
                "period_start": p.period_start,
                "period_end": p.period_end,
                "note": p.note,
            })
    columns = ["subscription_id", "subscription", "payment_id", "date", "amount", "currency",
               "type", "period_start", "period_end", "note"]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows, columns=columns).sort_values("date", ascending=False)


def subscriptions_to_csv_bytes(subs: list[Subscription]) -> bytes:
    df = pd.DataFrame([s.to_dict() for s in subs]).drop(columns=["payment_history"], errors="ignore")
    return df.to_csv(index=False).encode("utf-8")


def payments_to_csv_bytes(subs: list[Subscription]) -> bytes:
    return payments_frame(subs).to_csv(index=False).encode("utf-8")


def monthly_cost(sub: Subscription) -> float:
    """Cost of one cycle spread over a 30-day month."""
    if not sub.has_period:
        return 0.0
    if sub.period_unit == "day":
        return sub.amount * 30 / sub.period_value
    if sub.period_unit == "month":
        return sub.amount / sub.period_value
    return sub.amount / (12 * sub.period_value)


def cost_summary(subs: list[Subscription], rates: dict[str, float], base: str) -> pd.DataFrame:
    """Monthly and yearly spend per category for active subscriptions, in ``base``."""
    rows = [
        {
            "category": sub.custom_type or "(none)",
            "monthly": convert(monthly_cost(sub), sub.currency, rates, base),
        }
        for sub in subs
        if sub.is_active
    ]
    if not rows:
        return pd.DataFrame(columns=["category", "monthly", "yearly"])
    df = pd.DataFrame(rows).groupby("category", as_index=False)["monthly"].sum()
    df["yearly"] = df["monthly"] * 12
    return df.sort_values("monthly", ascending=False).round(2)


def spend_by_month(subs: list[Subscription]) -> pd.DataFrame:
    df = payments_frame(subs)
    if df.empty:
        return pd.DataFrame(columns=["month", "currency", "amount"])
    df["month"] = pd.to_datetime(df["date"]).dt.strftime("%Y-%m")
    out = df.groupby(["month", "currency"], as_index=False)["amount"].sum()
    return out.sort_values("month", ascending=False)


def insert_sample_data(now: datetime, tz_name: str | None) -> list[Subscription]:
    """
    Append 3 sample subscriptions (safe to run multiple times: adds new ones each time).
    """
    today = to_local(now, tz_name).replace(hour=0, minute=0, second=0, microsecond=0)
    drafts = [
        # expires in ~5 days
        Subscription(id=new_id(), name="Music Streaming", custom_type="Entertainment",
                     amount=15.0, currency="CNY", start_date=today - timedelta(days=25),
                     expiry_date=today + timedelta(days=5), reminder_unit="day", reminder_value=7),
        # yearly, lunar cycle
        Subscription(id=new_id(), name="Family Gift Budget", custom_type="Family",
                     amount=1000.0, currency="CNY", period_value=1, period_unit="year",
                     use_lunar_cycle=True, auto_renew=False,
                     expiry_date=today + timedelta(days=120)),
        # already expired: create_subscription moves it to the current cycle
        Subscription(id=new_id(), name="VPS", custom_type="Infrastructure",
                     amount=5.0, currency="USD", start_date=today - timedelta(days=32),
                     expiry_date=today - timedelta(days=2), reminder_unit="hour", reminder_value=12),
    ]
    created = [create_subscription(d, now, tz_name) for d in drafts]
    subs = db.load_subscriptions()
    db.save_subscriptions(subs + created)
    return created
