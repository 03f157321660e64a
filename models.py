"""
models.py
Domain dataclasses (subscriptions, payment records, settings) and their
JSON-friendly dict conversion.

Stored dates are naive datetimes holding wall-clock time in the configured
timezone; clock.from_local() turns them into instants.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any

PERIOD_UNITS = ("day", "month", "year")
SUBSCRIPTION_MODES = ("cycle", "reset")
REMINDER_UNITS = ("day", "hour")
PAYMENT_TYPES = ("initial", "manual", "auto")
CURRENCIES = ("CNY", "USD", "EUR", "GBP", "JPY", "HKD", "TWD", "KRW", "SGD", "AUD", "CAD", "RUB")

# Quick picks for the subscription form: label -> (period_value, period_unit)
PERIOD_PRESETS = {
    "Monthly": (1, "month"),
    "Quarterly": (3, "month"),
    "Half-yearly": (6, "month"),
    "Yearly": (1, "year"),
    "Weekly": (7, "day"),
}

DEFAULT_RATE_URL = "https://open.er-api.com/v6/latest/{base}"


def new_id() -> str:
    return uuid.uuid4().hex


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO date/datetime string (or pass through date objects).

    An offset is dropped and the wall-clock fields are kept, so the value
    reads as local time in the configured timezone.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None)
    return parsed


def format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")


def _period_value(value: Any) -> int | None:
    # unusable values (e.g. "1 month") leave the subscription without a period
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _normalize_keys(data: dict) -> dict:
    return {_snake(k): v for k, v in data.items()}


@dataclass(frozen=True)
class ReminderSetting:
    unit: str  # 'day' or 'hour'
    value: float


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    date: datetime
    amount: float
    type: str  # initial / manual / auto
    note: str = ""
    period_start: datetime | None = None
    period_end: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": format_datetime(self.date),
            "amount": self.amount,
            "type": self.type,
            "note": self.note,
            "period_start": format_datetime(self.period_start),
            "period_end": format_datetime(self.period_end),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentRecord":
        d = _normalize_keys(data)
        return cls(
            id=str(d.get("id") or new_id()),
            date=parse_datetime(d.get("date")),
            amount=float(d.get("amount") or 0),
            type=d.get("type") if d.get("type") in PAYMENT_TYPES else "manual",
            note=d.get("note") or "",
            period_start=parse_datetime(d.get("period_start")),
            period_end=parse_datetime(d.get("period_end")),
        )


@dataclass(frozen=True)
class Subscription:
    id: str
    name: str
    expiry_date: datetime
    start_date: datetime | None = None
    custom_type: str = ""
    notes: str = ""
    period_value: int | None = 1
    period_unit: str | None = "month"
    use_lunar_cycle: bool = False
    subscription_mode: str = "cycle"
    auto_renew: bool = True
    is_active: bool = True
    # Reminder fields are kept raw; reminders.reminder_setting_for() normalizes them.
    reminder_unit: str | None = None
    reminder_value: Any = None
    reminder_days: Any = None
    reminder_hours: Any = None
    amount: float = 0.0
    currency: str = "CNY"
    payment_history: tuple[PaymentRecord, ...] = ()
    last_payment_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_period(self) -> bool:
        return bool(self.period_value) and self.period_unit in PERIOD_UNITS

    def find_payment(self, payment_id: str) -> PaymentRecord | None:
        return next((p for p in self.payment_history if p.id == payment_id), None)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = format_datetime(value)
            elif f.name == "payment_history":
                value = [p.to_dict() for p in value]
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Subscription":
        d = _normalize_keys(data)
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in d.items() if k in known}

        for key in ("expiry_date", "start_date", "last_payment_date", "created_at", "updated_at"):
            if key in kwargs:
                kwargs[key] = parse_datetime(kwargs[key])
        kwargs["period_value"] = _period_value(kwargs.get("period_value"))
        if "amount" in kwargs:
            kwargs["amount"] = float(kwargs["amount"] or 0)
        kwargs["payment_history"] = tuple(
            PaymentRecord.from_dict(p) for p in (d.get("payment_history") or [])
        )
        kwargs["id"] = str(kwargs.get("id") or new_id())
        return cls(**kwargs)


@dataclass(frozen=True)
class AppConfig:
    timezone: str = "UTC"
    # Local hours (0-23) in which reminders may be sent; empty means any hour.
    notification_hours: tuple[int, ...] = ()
    enabled_notifiers: tuple[str, ...] = ()
    # channel name -> settings dict (tokens, urls, ...)
    channels: dict = field(default_factory=dict)
    admin_username: str = "admin"
    admin_password_hash: str = ""
    force_password_change: bool = True
    default_reminder_unit: str = "day"
    default_reminder_value: int = 7
    base_currency: str = "CNY"
    exchange_rate_url: str = DEFAULT_RATE_URL
    show_lunar: bool = False

    def channel(self, name: str) -> dict:
        return dict(self.channels.get(name) or {})

    def to_dict(self) -> dict:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["notification_hours"] = list(self.notification_hours)
        out["enabled_notifiers"] = list(self.enabled_notifiers)
        return out

    @classmethod
    def from_dict(cls, data: dict | None) -> "AppConfig":
        d = _normalize_keys(data or {})
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in d.items() if k in known}
        if "notification_hours" in kwargs:
            kwargs["notification_hours"] = tuple(int(h) for h in kwargs["notification_hours"] or ())
        if "enabled_notifiers" in kwargs:
            kwargs["enabled_notifiers"] = tuple(kwargs["enabled_notifiers"] or ())
        return cls(**kwargs)
