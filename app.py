"""
app.py
Streamlit subscription tracker (single admin).
Run: streamlit run app.py
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, time

import pandas as pd
import streamlit as st

import auth
import clock
import db
import rates
import utils
from cycles import CycleAdvancer, add_period
from errors import InvalidTimezoneError, LunarOutOfRangeError, SubTrackerError
from lunar import lunar_label, lunar_of
from models import CURRENCIES, PERIOD_PRESETS, PERIOD_UNITS, REMINDER_UNITS, SUBSCRIPTION_MODES, Subscription, new_id
from notify import CHANNELS, REQUIRED_SETTINGS, send
from reminders import reminder_setting_for
from renewal import create_subscription, delete_payment, edit_payment, manual_renew, toggle_active
from scheduler import DEFAULT_ADMIN_PASSWORD, run_evaluation_pass

st.set_page_config(page_title="Subscription Tracker", layout="wide")

# Optional per-channel settings shown in the Settings page besides the required ones.
OPTIONAL_SETTINGS = {
    "webhook": ("method", "template"),
    "wechatbot": ("at_mobiles",),
    "bark": ("server",),
}


def init_once():
    # Initialize DB + default admin if needed
    if "db_ready" not in st.session_state:
        db.init_db(auth.hash_password(DEFAULT_ADMIN_PASSWORD))
        st.session_state.db_ready = True


def require_login():
    if "logged_in" not in st.session_state:
        st.session_state.logged_in = False
    if "username" not in st.session_state:
        st.session_state.username = None


def logout():
    st.session_state.logged_in = False
    st.session_state.username = None
    st.success("Logged out.")


def login_screen():
    st.title("🔐 Subscription Tracker Login")

    col1, col2 = st.columns([1, 1])
    with col1:
        username = st.text_input("Username", value="admin")
        password = st.text_input("Password", type="password")
        if st.button("Login", type="primary"):
            if auth.login(username.strip(), password):
                st.session_state.logged_in = True
                st.session_state.username = username.strip()
                st.rerun()
            else:
                st.error("Invalid username or password.")

    with col2:
        st.info(
            "First run creates a default admin:\n\n"
            "- username: **admin**\n"
            f"- password: **{DEFAULT_ADMIN_PASSWORD}**\n\n"
            "You will be forced to change it on first login."
        )


def password_form(key: str) -> None:
    new1 = st.text_input("New password", type="password", key=f"{key}_pw1")
    new2 = st.text_input("Confirm new password", type="password", key=f"{key}_pw2")
    if st.button("Update password", type="primary", key=f"{key}_submit"):
        errors = auth.password_errors(new1, new2)
        for e in errors:
            st.error(e)
        if not errors:
            auth.change_password(new1)
            st.success("Password updated.")
            st.rerun()


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")
    st.warning("You must change the default password before using the app.")
    password_form("forced")


# ---------- Shared helpers ----------

def context():
    """Config, subscriptions, current instant and local wall-clock time."""
    config = db.load_config()
    now = clock.now()
    return config, db.load_subscriptions(), now, clock.to_local(now, config.timezone)


def save_and_rerun(subs: list[Subscription], message: str) -> None:
    db.save_subscriptions(subs)
    st.success(message)
    st.rerun()


def pick_subscription(subs: list[Subscription], label: str = "Subscription", key: str | None = None):
    options = {f"{s.name} ({s.custom_type or 'no category'}) - {s.id[:8]}": s.id for s in subs}
    labels = list(options.keys())
    preferred = st.session_state.get("selected_subscription_id")
    index = list(options.values()).index(preferred) if preferred in options.values() else 0
    chosen = st.selectbox(label, labels, index=index, key=key)
    st.session_state.selected_subscription_id = options[chosen]
    return utils.find_subscription(subs, options[chosen])


def lunar_caption(value: datetime) -> str:
    try:
        label = lunar_label(lunar_of(value.date()))
    except LunarOutOfRangeError:
        return "No lunar date (outside 1900-2100)."
    return f"Lunar: {label.full} ({label.zodiac})"


def show_error(exc: SubTrackerError) -> None:
    for message in getattr(exc, "messages", None) or [exc.message]:
        st.error(message)


# ---------- Pages ----------

def dashboard_page():
    st.header("📊 Dashboard")

    config, subs, now, local_now = context()
    active = [s for s in subs if s.is_active]
    frame = utils.subscriptions_frame(active, now, config.timezone)
    expiring = frame[(frame["days_left"] >= 0) & (frame["days_left"] <= 7)] if not frame.empty else frame

    table = rates.get_rates(config, local_now.date())
    summary = utils.cost_summary(subs, table, config.base_currency)
    monthly = float(summary["monthly"].sum()) if not summary.empty else 0.0

    c1, c2, c3 = st.columns(3)
    c1.metric("Active subscriptions", len(active))
    c2.metric("Expiring in next 7 days", len(expiring))
    c3.metric(f"Monthly spend ({config.base_currency})", f"{monthly:.2f}")

    st.caption(f"Now: {local_now:%Y-%m-%d %H:%M} ({config.timezone}) | {lunar_caption(local_now)}")
    st.divider()

    st.subheader("Expiring soon (next 7 days)")
    if not expiring.empty:
        st.dataframe(expiring, use_container_width=True, hide_index=True)
    else:
        st.caption("Nothing expires in the next 7 days.")


def subscription_form(config, subs, now, local_now, existing: Subscription | None = None):
    if existing:
        st.subheader(f"✏️ Edit Subscription ({existing.name})")
    else:
        st.subheader("➕ Add Subscription")

    col1, col2, col3 = st.columns(3)
    with col1:
        name = st.text_input("Name", value=existing.name if existing else "")
        custom_type = st.text_input("Category", value=existing.custom_type if existing else "")
        amount = st.text_input("Amount", value=str(existing.amount) if existing else "0")
        currency = st.selectbox(
            "Currency", CURRENCIES,
            index=CURRENCIES.index(existing.currency) if existing and existing.currency in CURRENCIES
            else CURRENCIES.index(config.base_currency) if config.base_currency in CURRENCIES else 0,
        )

    with col2:
        preset = st.selectbox("Cycle preset", ["(custom)"] + list(PERIOD_PRESETS.keys()))
        default_value, default_unit = PERIOD_PRESETS.get(
            preset, (existing.period_value or 1, existing.period_unit or "month") if existing else (1, "month")
        )
        period_value = st.number_input("Cycle length", min_value=1, step=1, value=int(default_value))
        period_unit = st.selectbox(
            "Cycle unit", PERIOD_UNITS,
            index=PERIOD_UNITS.index(default_unit) if default_unit in PERIOD_UNITS else 1,
        )
        use_lunar = st.checkbox("Lunar calendar cycle", value=existing.use_lunar_cycle if existing else False)
        mode = st.selectbox(
            "Renewal mode", SUBSCRIPTION_MODES,
            index=SUBSCRIPTION_MODES.index(existing.subscription_mode) if existing else 0,
            help="cycle: renew from the old expiry; reset: renew from the moment of renewal",
        )
        auto_renew = st.checkbox("Auto renew", value=existing.auto_renew if existing else True)

    with col3:
        start_default = (existing.start_date if existing and existing.start_date else local_now).date()
        start_date = datetime.combine(st.date_input("Start date", value=start_default), time(0, 0))
        try:
            auto_expiry = add_period(start_date, int(period_value), period_unit, use_lunar)
        except (LunarOutOfRangeError, ValueError):
            auto_expiry = add_period(start_date, int(period_value), period_unit)
        expiry_default = existing.expiry_date if existing else auto_expiry
        expiry_day = st.date_input("Expiry date (auto-calculated, editable)", value=expiry_default.date())
        expiry_time = st.time_input("Expiry time", value=expiry_default.time())
        expiry_date = datetime.combine(expiry_day, expiry_time)
        if use_lunar or config.show_lunar:
            st.caption(lunar_caption(expiry_date))

        if existing:
            setting = reminder_setting_for(existing)
            unit_default, value_default = setting.unit, int(setting.value)
        else:
            unit_default, value_default = config.default_reminder_unit, int(config.default_reminder_value)
        reminder_unit = st.selectbox("Remind in", REMINDER_UNITS, index=REMINDER_UNITS.index(unit_default))
        reminder_value = st.number_input(
            "Remind this many units before expiry", min_value=0, step=1, value=value_default
        )

    notes = st.text_area("Notes", value=existing.notes if existing else "")

    errors = utils.validate_subscription_inputs(
        name, amount, period_value, period_unit, start_date, expiry_date, reminder_value
    )
    for e in errors:
        st.error(e)

    if not st.button("Save", type="primary", disabled=bool(errors)):
        return

    fields = dict(
        name=name.strip(), custom_type=custom_type.strip(), amount=float(amount), currency=currency,
        period_value=int(period_value), period_unit=period_unit, use_lunar_cycle=use_lunar,
        subscription_mode=mode, auto_renew=auto_renew, start_date=start_date, expiry_date=expiry_date,
        reminder_unit=reminder_unit, reminder_value=int(reminder_value), notes=notes.strip(),
    )
    if existing:
        updated = replace(existing, updated_at=local_now, **fields)
        st.session_state.edit_subscription_id = None
        save_and_rerun(utils.replace_subscription(subs, updated), "Subscription updated.")
    else:
        created = create_subscription(Subscription(id=new_id(), **fields), now, config.timezone)
        if created.expiry_date != expiry_date:
            st.info(f"Expiry was in the past; moved to {created.expiry_date:%Y-%m-%d}.")
        save_and_rerun(subs + [created], "Subscription added.")


def subscriptions_page():
    st.header("📋 Subscriptions")

    config, subs, now, local_now = context()

    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name/category)")
        status_filter = st.selectbox("Status", ["All", "active", "inactive"])

    shown = [
        s for s in subs
        if (not search.strip() or search.strip().lower() in f"{s.name} {s.custom_type}".lower())
        and (status_filter == "All" or s.is_active == (status_filter == "active"))
    ]
    st.dataframe(utils.subscriptions_frame(shown, now, config.timezone), use_container_width=True, hide_index=True)

    st.divider()

    if shown:
        colA, colB = st.columns([1, 2])
        with colA:
            st.subheader("Select subscription")
            sub = pick_subscription(shown)
        with colB:
            st.subheader("Actions")
            c1, c2, c3, c4 = st.columns(4)
            with c1:
                if st.button("Edit"):
                    st.session_state.edit_subscription_id = sub.id
                    st.rerun()
            with c2:
                if st.button("Deactivate" if sub.is_active else "Activate"):
                    save_and_rerun(
                        utils.replace_subscription(subs, toggle_active(sub, now, config.timezone)),
                        "Status changed.",
                    )
            with c3:
                if st.button("View payments"):
                    st.session_state.page = "Payments"
                    st.rerun()
            with c4:
                delete_confirm = st.checkbox("Confirm delete", value=False, key="del_confirm")
                if st.button("Delete", type="secondary", disabled=not delete_confirm):
                    save_and_rerun(utils.remove_subscription(subs, sub.id), "Subscription deleted.")

    st.divider()

    edit_id = st.session_state.get("edit_subscription_id")
    if edit_id and any(s.id == edit_id for s in subs):
        subscription_form(config, subs, now, local_now, existing=utils.find_subscription(subs, edit_id))
        if st.button("Cancel edit"):
            st.session_state.edit_subscription_id = None
            st.rerun()
    else:
        subscription_form(config, subs, now, local_now)


def payments_page():
    st.header("💳 Payments")

    config, subs, now, local_now = context()
    if not subs:
        st.info("No subscriptions yet. Add one first.")
        return

    sub = pick_subscription(subs)
    st.write(
        f"Expiry: **{sub.expiry_date:%Y-%m-%d %H:%M}** | Last payment: "
        f"**{sub.last_payment_date:%Y-%m-%d}**" if sub.last_payment_date else
        f"Expiry: **{sub.expiry_date:%Y-%m-%d %H:%M}**"
    )

    history = utils.payments_frame([sub])
    if history.empty:
        st.caption("No payment records for this subscription.")
        return
    st.dataframe(history.drop(columns=["subscription_id", "subscription"]), use_container_width=True, hide_index=True)

    st.divider()
    st.subheader("Edit or delete a record")
    records = {f"{p.date:%Y-%m-%d} {p.type} {p.amount:.2f} - {p.id[:8]}": p for p in sub.payment_history}
    record = records[st.selectbox("Record", list(records.keys()))]

    c1, c2, c3 = st.columns([1, 1, 2])
    with c1:
        amount = st.text_input("Amount", value=f"{record.amount:.2f}")
    with c2:
        paid_on = st.date_input("Date", value=record.date.date())
    with c3:
        note = st.text_input("Note", value=record.note)

    c4, c5 = st.columns(2)
    with c4:
        if st.button("Save record", type="primary"):
            updated = edit_payment(
                sub, record.id, date=datetime.combine(paid_on, record.date.time()),
                amount=utils.parse_amount(amount), note=note.strip(),
            )
            save_and_rerun(utils.replace_subscription(subs, updated), "Payment record updated.")
    with c5:
        confirm = st.checkbox("Confirm delete", value=False, key="del_payment_confirm")
        if st.button("Delete record", disabled=not confirm):
            updated = delete_payment(sub, record.id)
            save_and_rerun(
                utils.replace_subscription(subs, updated),
                f"Payment record deleted; expiry is now {updated.expiry_date:%Y-%m-%d}.",
            )


def renewals_page():
    st.header("🔁 Renewals (Manual)")

    config, subs, now, local_now = context()
    renewable = [s for s in subs if s.has_period]
    if not renewable:
        st.info("No subscriptions with a renewal cycle yet.")
        return

    sub = pick_subscription(renewable)
    st.write(
        f"Cycle: **{utils.period_label(sub)}** | Mode: **{sub.subscription_mode}** | "
        f"Amount: **{sub.amount:.2f} {sub.currency}** | Expiry: **{sub.expiry_date:%Y-%m-%d %H:%M}**"
    )

    col1, col2, col3 = st.columns(3)
    with col1:
        multiplier = st.number_input("Periods to renew", min_value=1, step=1, value=1)
    with col2:
        amount = st.text_input("Amount paid", value=f"{sub.amount * multiplier:.2f}")
    with col3:
        paid_on = st.date_input("Payment date", value=local_now.date())
    note = st.text_input("Note", value="")

    base = local_now if sub.subscription_mode == "reset" else sub.expiry_date
    preview = CycleAdvancer(sub.period_value, sub.period_unit, sub.use_lunar_cycle).advance(base, int(multiplier))
    st.info(f"New expiry: **{preview.date:%Y-%m-%d %H:%M}**")

    if st.button("Renew", type="primary"):
        updated = manual_renew(
            sub, now, config.timezone,
            payment_date=datetime.combine(paid_on, local_now.time()),
            amount=utils.parse_amount(amount), period_multiplier=int(multiplier), note=note.strip(),
        )
        save_and_rerun(utils.replace_subscription(subs, updated), "Renewal completed.")


def reports_page():
    st.header("🧾 Reports")

    config, subs, now, local_now = context()

    st.subheader("Export")
    if subs:
        c1, c2 = st.columns(2)
        c1.download_button(
            "Download subscriptions.csv",
            data=utils.subscriptions_to_csv_bytes(subs),
            file_name="subscriptions.csv",
            mime="text/csv",
        )
        c2.download_button(
            "Download payments.csv",
            data=utils.payments_to_csv_bytes(subs),
            file_name="payments.csv",
            mime="text/csv",
        )
    else:
        st.caption("Nothing to export.")

    st.divider()

    st.subheader(f"Spend by category ({config.base_currency})")
    table = rates.get_rates(config, local_now.date())
    st.dataframe(utils.cost_summary(subs, table, config.base_currency), use_container_width=True, hide_index=True)

    st.subheader("Payments by month")
    st.dataframe(utils.spend_by_month(subs), use_container_width=True, hide_index=True)


def reminders_page():
    st.header("⏰ Reminders")

    config, subs, now, local_now = context()
    st.caption(
        f"Notification hours: {', '.join(map(str, config.notification_hours)) or 'any'} | "
        f"Channels: {', '.join(config.enabled_notifiers) or 'none'}"
    )

    preview = utils.reminder_preview_frame(subs, now, config.timezone)
    if not preview.empty:
        st.dataframe(preview.sort_values("hours_left"), use_container_width=True, hide_index=True)
    else:
        st.caption("No active subscriptions.")

    if st.button("Run renewal & reminder pass now", type="primary"):
        result = run_evaluation_pass(now)
        st.success(f"{len(result.renewed)} renewed, {len(result.reminders)} reminder(s) due.")
        if result.errors:
            st.error(f"{len(result.errors)} subscription(s) failed; see the log.")
        if result.sent:
            st.dataframe(pd.DataFrame([{"channel": k, "sent": v} for k, v in result.sent.items()]),
                         hide_index=True)


def settings_page():
    st.header("⚙️ Settings")

    config = db.load_config()

    st.subheader("General")
    c1, c2 = st.columns(2)
    with c1:
        tz_name = st.text_input("Timezone (IANA name)", value=config.timezone)
        base_currency = st.selectbox(
            "Base currency", CURRENCIES,
            index=CURRENCIES.index(config.base_currency) if config.base_currency in CURRENCIES else 0,
        )
        show_lunar = st.checkbox("Show lunar dates everywhere", value=config.show_lunar)
    with c2:
        hours = st.multiselect(
            "Notification hours (empty = every hour)", list(range(24)), default=list(config.notification_hours)
        )
        default_unit = st.selectbox(
            "Default reminder unit", REMINDER_UNITS, index=REMINDER_UNITS.index(config.default_reminder_unit)
        )
        default_value = st.number_input(
            "Default reminder value", min_value=0, step=1, value=int(config.default_reminder_value)
        )

    st.subheader("Notification channels")
    enabled = st.multiselect("Enabled channels", CHANNELS, default=list(config.enabled_notifiers))
    channels = {}
    for channel in CHANNELS:
        current = config.channel(channel)
        with st.expander(channel, expanded=channel in enabled):
            settings = {}
            for key in REQUIRED_SETTINGS[channel] + OPTIONAL_SETTINGS.get(channel, ()):
                value = current.get(key, "")
                if isinstance(value, list):
                    value = ",".join(value)
                secret = key in ("bot_token", "api_key", "device_key")
                settings[key] = st.text_input(key, value=str(value), type="password" if secret else "default",
                                              key=f"{channel}_{key}")
            if settings.get("at_mobiles"):
                settings["at_mobiles"] = [m.strip() for m in settings["at_mobiles"].split(",") if m.strip()]
            # keys without a form field (webhook headers, bark is_archive...) are kept as stored
            channels[channel] = {k: v for k, v in {**current, **settings}.items() if v}
            if st.button("Send test", key=f"test_{channel}"):
                trial = replace(config, channels={**config.channels, channel: channels[channel]})
                if send(channel, "SubTracker test", "Test notification", ["test"], config=trial):
                    st.success("Sent.")
                else:
                    st.error("Sending failed; see the log.")

    if st.button("Save settings", type="primary"):
        try:
            clock.validate_timezone(tz_name.strip())
        except InvalidTimezoneError as exc:
            show_error(exc)
        else:
            db.save_config(replace(
                config,
                timezone=tz_name.strip(),
                base_currency=base_currency,
                show_lunar=show_lunar,
                notification_hours=tuple(sorted(hours)),
                default_reminder_unit=default_unit,
                default_reminder_value=int(default_value),
                enabled_notifiers=tuple(enabled),
                channels=channels,
            ))
            st.success("Settings saved.")
            st.rerun()

    st.divider()

    st.subheader("Change password")
    password_form("settings")

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 3 sample subscriptions for testing (adds new ones each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(clock.now(), config.timezone)
        st.success("Sample data inserted.")
        st.rerun()


def main_app():
    st.sidebar.title("🗓️ Subscriptions")
    st.sidebar.caption(f"Logged in as: {st.session_state.username}")

    pages = ["Dashboard", "Subscriptions", "Payments", "Renewals", "Reports", "Reminders", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    page = {
        "Dashboard": dashboard_page,
        "Subscriptions": subscriptions_page,
        "Payments": payments_page,
        "Renewals": renewals_page,
        "Reports": reports_page,
        "Reminders": reminders_page,
        "Settings": settings_page,
    }[st.session_state.page]
    try:
        page()
    except SubTrackerError as exc:
        show_error(exc)


# --------- App entry ---------

def run():
    init_once()
    require_login()

    if not st.session_state.logged_in:
        login_screen()
        return

    # Force password change on first login after DB creation
    if auth.is_force_password_change():
        force_change_password_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
