"""
renewal.py
Subscription lifecycle: the scheduled auto-renewal decision, manual renewal,
creation-time fast-forward and payment-record edits.

All functions are pure: they take a Subscription and return a new one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

import clock
from cycles import Advance, CycleAdvancer
from errors import (
    LunarOutOfRangeError,
    LunarSolarRoundTripError,
    MalformedSubscriptionError,
    PaymentNotFoundError,
)
from log import get_logger
from lunar import lunar_of, lunar_to_solar_strict
from models import PaymentRecord, Subscription, new_id
from reminders import ReminderDue, check_reminder, days_diff

logger = get_logger(__name__)


@dataclass(frozen=True)
class Evaluation:
    subscription: Subscription
    renewed: bool = False
    periods_added: int = 0
    payment: PaymentRecord | None = None
    reminder: ReminderDue | None = None
    # why no renewal happened: inactive / malformed / round_trip
    skipped_reason: str | None = None


def logical_expiry(sub: Subscription) -> datetime:
    """Expiry as seen by the subscription's own calendar.

    Lunar subscriptions pass the stored solar date through the lunar
    calendar; dates outside the table fall back to the stored value.
    """
    if not sub.use_lunar_cycle:
        return sub.expiry_date
    try:
        solar = lunar_to_solar_strict(lunar_of(sub.expiry_date.date()))
    except LunarOutOfRangeError:
        return sub.expiry_date
    return datetime.combine(solar, sub.expiry_date.time())


def _renewal_base(sub: Subscription, local_now: datetime) -> datetime:
    return local_now if sub.subscription_mode == "reset" else sub.expiry_date


def _require_period(sub: Subscription) -> None:
    if not sub.has_period:
        raise MalformedSubscriptionError(
            f"Subscription {sub.name!r} has no renewal period", subscription_id=sub.id
        )


def _apply_advance(advance: Advance) -> dict:
    changes = {}
    if advance.fell_back_to_solar:
        # Stays solar from now on; the lunar table cannot cover it again.
        changes["use_lunar_cycle"] = False
    return changes


def auto_renew(sub: Subscription, now: datetime, tz_name: str | None) -> tuple[Subscription, PaymentRecord, Advance]:
    """Advance an expired subscription until its expiry is today or later."""
    _require_period(sub)
    local_now = clock.to_local(now, tz_name)
    advancer = CycleAdvancer(sub.period_value, sub.period_unit, sub.use_lunar_cycle)
    advance = advancer.advance_until(
        _renewal_base(sub, local_now), lambda candidate: days_diff(candidate, now, tz_name) >= 0
    )
    payment = PaymentRecord(
        id=new_id(),
        date=local_now,
        amount=sub.amount,
        type="auto",
        note=f"Auto renewal, {advance.periods} period(s) of {sub.period_value} {sub.period_unit}",
        period_start=advance.previous,
        period_end=advance.date,
    )
    renewed = replace(
        sub,
        start_date=advance.previous,
        expiry_date=advance.date,
        last_payment_date=local_now,
        payment_history=sub.payment_history + (payment,),
        updated_at=local_now,
        **_apply_advance(advance),
    )
    return renewed, payment, advance


def evaluate_subscription(sub: Subscription, now: datetime, tz_name: str | None) -> Evaluation:
    """Run one scheduled evaluation of ``sub`` against ``now``.

    Not expired, or expired without auto renewal: only the reminder is
    checked. Expired with auto renewal: renew (catching up every missed
    cycle), then check the reminder against the new expiry.
    """
    if not sub.is_active:
        return Evaluation(sub, skipped_reason="inactive")

    try:
        expiry = logical_expiry(sub)
    except LunarSolarRoundTripError as exc:
        logger.error("lunar_round_trip_failed", subscription_id=sub.id, **exc.context)
        return Evaluation(sub, reminder=check_reminder(sub, now, tz_name), skipped_reason="round_trip")

    remaining = days_diff(expiry, now, tz_name)
    if remaining >= 0 or not sub.auto_renew:
        return Evaluation(sub, reminder=check_reminder(sub, now, tz_name, expiry, remaining))

    try:
        renewed, payment, advance = auto_renew(sub, now, tz_name)
    except MalformedSubscriptionError as exc:
        logger.warning("auto_renew_skipped_malformed", error=exc.message, **exc.context)
        return Evaluation(
            sub, reminder=check_reminder(sub, now, tz_name, expiry, remaining), skipped_reason="malformed"
        )
    except LunarSolarRoundTripError as exc:
        logger.error("lunar_round_trip_failed", subscription_id=sub.id, **exc.context)
        return Evaluation(
            sub, reminder=check_reminder(sub, now, tz_name, expiry, remaining), skipped_reason="round_trip"
        )

    logger.info(
        "subscription_auto_renewed",
        subscription_id=sub.id,
        name=sub.name,
        periods=advance.periods,
        old_expiry=sub.expiry_date.isoformat(),
        new_expiry=renewed.expiry_date.isoformat(),
    )
    return Evaluation(
        renewed,
        renewed=True,
        periods_added=advance.periods,
        payment=payment,
        reminder=check_reminder(renewed, now, tz_name),
    )


def manual_renew(
    sub: Subscription,
    now: datetime,
    tz_name: str | None,
    payment_date: datetime | None = None,
    amount: float | None = None,
    period_multiplier: int = 1,
    note: str = "",
) -> Subscription:
    """Renew ``period_multiplier`` periods right away, without an expiry check."""
    _require_period(sub)
    local_now = clock.to_local(now, tz_name)
    base = _renewal_base(sub, local_now)
    advance = CycleAdvancer(sub.period_value, sub.period_unit, sub.use_lunar_cycle).advance(
        base, period_multiplier
    )
    paid_at = payment_date or local_now
    payment = PaymentRecord(
        id=new_id(),
        date=paid_at,
        amount=sub.amount * period_multiplier if amount is None else amount,
        type="manual",
        note=note or f"Manual renewal, {period_multiplier} period(s)",
        period_start=base,
        period_end=advance.date,
    )
    logger.info(
        "subscription_manually_renewed",
        subscription_id=sub.id,
        periods=period_multiplier,
        new_expiry=advance.date.isoformat(),
    )
    return replace(
        sub,
        start_date=base,
        expiry_date=advance.date,
        last_payment_date=paid_at,
        payment_history=sub.payment_history + (payment,),
        updated_at=local_now,
        **_apply_advance(advance),
    )


def create_subscription(draft: Subscription, now: datetime, tz_name: str | None) -> Subscription:
    """Stamp a new subscription and record its initial payment.

    A draft whose expiry already passed is moved forward cycle by cycle
    until it is current.
    """
    local_now = clock.to_local(now, tz_name)
    start, expiry = draft.start_date, draft.expiry_date
    changes = {}
    if draft.has_period and days_diff(expiry, now, tz_name) < 0:
        advance = CycleAdvancer(draft.period_value, draft.period_unit, draft.use_lunar_cycle).advance_until(
            expiry, lambda candidate: days_diff(candidate, now, tz_name) >= 0
        )
        start, expiry = advance.previous, advance.date
        changes = _apply_advance(advance)
        logger.info("new_subscription_fast_forwarded", name=draft.name, periods=advance.periods)

    initial = PaymentRecord(
        id=new_id(),
        date=local_now,
        amount=draft.amount,
        type="initial",
        note="Initial subscription",
        period_start=start or local_now,
        period_end=expiry,
    )
    return replace(
        draft,
        id=draft.id or new_id(),
        start_date=start,
        expiry_date=expiry,
        payment_history=(initial,),
        last_payment_date=local_now,
        created_at=local_now,
        updated_at=local_now,
        **changes,
    )


def _latest_payment_date(records, fallback: datetime | None) -> datetime | None:
    dated = [p.date for p in records if p.date is not None]
    return max(dated) if dated else fallback


def delete_payment(sub: Subscription, payment_id: str) -> Subscription:
    """Remove a payment record and re-derive expiry and last payment date."""
    record = sub.find_payment(payment_id)
    if record is None:
        raise PaymentNotFoundError(payment_id, sub.id)

    remaining = tuple(p for p in sub.payment_history if p.id != payment_id)
    period_ends = [p.period_end for p in remaining if p.period_end is not None]
    if period_ends:
        expiry = max(period_ends)
    else:
        expiry = record.period_start or sub.expiry_date

    return replace(
        sub,
        payment_history=remaining,
        expiry_date=expiry,
        last_payment_date=_latest_payment_date(remaining, sub.created_at or sub.start_date),
    )


def edit_payment(
    sub: Subscription,
    payment_id: str,
    *,
    date: datetime | None = None,
    amount: float | None = None,
    note: str | None = None,
) -> Subscription:
    record = sub.find_payment(payment_id)
    if record is None:
        raise PaymentNotFoundError(payment_id, sub.id)

    changes = {}
    if date is not None:
        changes["date"] = date
    if amount is not None:
        changes["amount"] = float(amount)
    if note is not None:
        changes["note"] = note
    updated = replace(record, **changes)
    history = tuple(updated if p.id == payment_id else p for p in sub.payment_history)
    return replace(
        sub,
        payment_history=history,
        last_payment_date=_latest_payment_date(history, sub.last_payment_date),
    )


def toggle_active(sub: Subscription, now: datetime, tz_name: str | None) -> Subscription:
    return replace(sub, is_active=not sub.is_active, updated_at=clock.to_local(now, tz_name))
