"""
scheduler.py
Scheduled evaluation pass (auto renewals + reminders) and the command line
used to trigger it from cron.
Run: subtracker run-pass   (or: python scheduler.py run-pass)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import click
import httpx

import auth
import clock
import db
from errors import LunarOutOfRangeError
from log import get_logger
from lunar import lunar_label, solar_to_lunar
from models import AppConfig, Subscription
from notify import CHANNELS, dispatch, send
from reminders import ReminderDue, build_reminder_message
from renewal import evaluate_subscription

logger = get_logger(__name__)

DEFAULT_ADMIN_PASSWORD = "admin123"


@dataclass
class PassResult:
    subscriptions: list[Subscription]
    renewed: list[Subscription] = field(default_factory=list)
    reminders: list[ReminderDue] = field(default_factory=list)
    # ids of subscriptions whose evaluation raised
    errors: list[str] = field(default_factory=list)
    sent: dict[str, bool] = field(default_factory=dict)


def evaluate_pass(subs: list[Subscription], config: AppConfig, now: datetime) -> PassResult:
    """Evaluate every subscription; a failure only affects its own subscription."""
    result = PassResult(subscriptions=[])
    for sub in subs:
        try:
            evaluation = evaluate_subscription(sub, now, config.timezone)
        except Exception:
            logger.exception("subscription_evaluation_failed", subscription_id=sub.id, name=sub.name)
            result.subscriptions.append(sub)
            result.errors.append(sub.id)
            continue
        result.subscriptions.append(evaluation.subscription)
        if evaluation.renewed:
            result.renewed.append(evaluation.subscription)
        if evaluation.reminder:
            result.reminders.append(evaluation.reminder)
    return result


def should_notify_now(config: AppConfig, now: datetime) -> bool:
    if not config.notification_hours:
        return True
    return clock.date_parts(now, config.timezone).hour in config.notification_hours


def run_evaluation_pass(now: datetime | None = None, client: httpx.Client | None = None) -> PassResult:
    """Load, evaluate, persist renewals, send one combined reminder."""
    now = now or clock.now()
    config = db.load_config()
    result = evaluate_pass(db.load_subscriptions(), config, now)

    if result.renewed:
        db.save_subscriptions(result.subscriptions)

    if result.reminders and should_notify_now(config, now):
        title, body, tags = build_reminder_message(result.reminders, config, now)
        result.sent = dispatch(config, title, body, tags, client=client)

    logger.info(
        "evaluation_pass_finished",
        subscriptions=len(result.subscriptions),
        renewed=len(result.renewed),
        reminders=len(result.reminders),
        errors=len(result.errors),
        sent=result.sent,
    )
    return result


# --------- CLI ---------

def _init() -> AppConfig:
    db.init_db(auth.hash_password(DEFAULT_ADMIN_PASSWORD))
    return db.load_config()


@click.group()
def cli() -> None:
    """SubTracker command line."""


@cli.command("run-pass")
@click.option("--now", "now_text", default=None, help="Evaluate as of this ISO datetime (naive = configured timezone).")
def run_pass(now_text: str | None) -> None:
    """Run one renewal/reminder pass."""
    config = _init()
    now = None
    if now_text:
        try:
            now = clock.from_local(datetime.fromisoformat(now_text), config.timezone)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--now") from exc
    result = run_evaluation_pass(now)
    click.echo(
        f"{len(result.renewed)} renewed, {len(result.reminders)} reminder(s), "
        f"{len(result.errors)} error(s)"
    )
    for channel, ok in result.sent.items():
        click.echo(f"  {channel}: {'sent' if ok else 'FAILED'}")


@cli.command("test-notify")
@click.argument("channel", type=click.Choice(CHANNELS))
def test_notify(channel: str) -> None:
    """Send a test message through CHANNEL."""
    config = _init()
    local_now = clock.to_local(clock.now(), config.timezone)
    ok = send(channel, "SubTracker test", f"Test notification sent at {local_now:%Y-%m-%d %H:%M}",
              ["test"], config=config)
    if not ok:
        raise click.ClickException(f"{channel} notification failed")
    click.echo(f"{channel}: sent")


@cli.command("lunar")
@click.argument("day", type=click.DateTime(formats=["%Y-%m-%d"]))
def lunar_cmd(day: datetime) -> None:
    """Show the lunar date for DAY (YYYY-MM-DD)."""
    try:
        lunar = solar_to_lunar(day.year, day.month, day.day)
    except LunarOutOfRangeError as exc:
        raise click.ClickException(exc.message) from exc
    label = lunar_label(lunar)
    click.echo(f"{lunar}  {label.full} ({label.zodiac})")


if __name__ == "__main__":
    cli()
