import json
from datetime import datetime

import httpx
import pytest
from click.testing import CliRunner
from freezegun import freeze_time

import db
import scheduler
from models import AppConfig
from scheduler import cli, evaluate_pass, run_evaluation_pass, should_notify_now

WEBHOOK = {"webhook": {"url": "https://hooks.example.com/renewals"}}


@pytest.fixture
def posted():
    return []


@pytest.fixture
def client(posted):
    def handler(request):
        posted.append(json.loads(request.content))
        return httpx.Response(200)

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def stored(make_sub):
    db.save_config(AppConfig(enabled_notifiers=("webhook",), channels=WEBHOOK))
    subs = [
        make_sub(id="expired", name="VPS", custom_type="Cloud", expiry_date=datetime(2024, 7, 1)),
        make_sub(id="soon", name="Music", expiry_date=datetime(2024, 7, 20)),
        make_sub(id="later", name="Domain", expiry_date=datetime(2024, 12, 1)),
    ]
    db.save_subscriptions(subs)
    return subs


def test_failing_subscription_does_not_stop_the_pass(make_sub, now, monkeypatch):
    real = scheduler.evaluate_subscription

    def flaky(sub, *args):
        if sub.id == "bad":
            raise RuntimeError("boom")
        return real(sub, *args)

    monkeypatch.setattr(scheduler, "evaluate_subscription", flaky)
    subs = [make_sub(id="bad"), make_sub(id="good", expiry_date=datetime(2024, 7, 1))]
    result = evaluate_pass(subs, AppConfig(), now)
    assert result.errors == ["bad"]
    assert [s.id for s in result.subscriptions] == ["bad", "good"]
    assert result.subscriptions[0] is subs[0]
    assert [s.id for s in result.renewed] == ["good"]


def test_pass_persists_renewals_and_sends_one_message(stored, now, client, posted):
    result = run_evaluation_pass(now, client=client)

    assert [s.id for s in result.renewed] == ["expired"]
    assert [r.subscription.id for r in result.reminders] == ["soon"]
    assert result.sent == {"webhook": True}
    assert len(posted) == 1
    assert posted[0]["title"] == "Subscription reminder: Music"

    reloaded = {s.id: s for s in db.load_subscriptions()}
    assert reloaded["expired"].expiry_date == datetime(2024, 8, 1)
    assert reloaded["expired"].payment_history[0].type == "auto"
    assert reloaded["later"].expiry_date == datetime(2024, 12, 1)


def test_second_pass_does_not_renew_again(stored, now, client):
    run_evaluation_pass(now, client=client)
    result = run_evaluation_pass(now, client=client)
    assert result.renewed == []
    assert len({s.id: s for s in db.load_subscriptions()}["expired"].payment_history) == 1


def test_notifications_wait_for_configured_hours(stored, now, client, posted):
    db.save_config(AppConfig(enabled_notifiers=("webhook",), channels=WEBHOOK, notification_hours=(8,)))
    result = run_evaluation_pass(now, client=client)
    assert result.reminders
    assert result.sent == {}
    assert posted == []


def test_should_notify_now_uses_local_hour(now):
    assert should_notify_now(AppConfig(), now)
    assert should_notify_now(AppConfig(timezone="Asia/Shanghai", notification_hours=(17,)), now)
    assert not should_notify_now(AppConfig(timezone="UTC", notification_hours=(17,)), now)


@freeze_time("2024-07-15 09:00:00")
def test_pass_defaults_to_current_time(stored, client):
    result = run_evaluation_pass(client=client)
    assert [s.id for s in result.renewed] == ["expired"]


def test_cli_lunar():
    result = CliRunner().invoke(cli, ["lunar", "2024-02-10"])
    assert result.exit_code == 0
    assert "甲辰年正月初一" in result.output
    assert "(龙)" in result.output


def test_cli_lunar_out_of_range():
    result = CliRunner().invoke(cli, ["lunar", "1800-01-01"])
    assert result.exit_code != 0
    assert "1900-2100" in result.output


def test_cli_run_pass(make_sub):
    db.save_subscriptions([make_sub(expiry_date=datetime(2024, 7, 1))])
    result = CliRunner().invoke(cli, ["run-pass", "--now", "2024-07-15T09:00"])
    assert result.exit_code == 0
    assert "1 renewed, 0 reminder(s), 0 error(s)" in result.output
    assert db.load_config().force_password_change


def test_cli_run_pass_rejects_bad_time():
    result = CliRunner().invoke(cli, ["run-pass", "--now", "yesterday"])
    assert result.exit_code == 2


def test_unreadable_record_does_not_stop_the_pass(make_sub, now):
    good = make_sub(expiry_date=datetime(2024, 7, 1)).to_dict()
    bad_date = dict(good, id="bad-date", expiry_date="not-a-date")
    bad_period = dict(good, id="bad-period", period_value="1 month", expiry_date="2024-07-18T00:00:00")
    db.put_blob(db.SUBSCRIPTIONS_KEY, [good, bad_date, bad_period])

    result = run_evaluation_pass(now)

    assert [s.id for s in result.renewed] == ["sub-1"]
    # no usable period: not renewable, still reminded
    assert [r.subscription.id for r in result.reminders] == ["bad-period"]
    stored = db.get_blob(db.SUBSCRIPTIONS_KEY)
    assert [item["id"] for item in stored] == ["sub-1", "bad-period", "bad-date"]
    assert stored[-1] == bad_date
