"""
db.py
SQLite-backed key/value store. Subscriptions and config are each kept as one
JSON blob and rewritten whole on every save (last write wins).
"""

from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from log import get_logger
from models import AppConfig, Subscription

logger = get_logger(__name__)

DB_FILE = Path(os.environ.get("SUBTRACKER_DB") or Path(__file__).with_name("subtracker.db"))

SUBSCRIPTIONS_KEY = "subscriptions"
CONFIG_KEY = "config"


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def _create_tables() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )


def get_blob(key: str, default: Any = None) -> Any:
    with get_conn() as conn:
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    return json.loads(row["value"])


def put_blob(key: str, value: Any) -> None:
    now = datetime.now(timezone.utc).isoformat(timespec="seconds")
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO kv_store(key, value, updated_at) VALUES(?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=False), now),
        )


def _read_records() -> tuple[list[Subscription], list[dict]]:
    """Parse stored records one by one; returns (subscriptions, unreadable raw records)."""
    subscriptions, unreadable = [], []
    for item in get_blob(SUBSCRIPTIONS_KEY, []):
        try:
            subscriptions.append(Subscription.from_dict(item))
        except (TypeError, ValueError, AttributeError):
            logger.exception(
                "subscription_load_failed",
                subscription_id=item.get("id") if isinstance(item, dict) else None,
            )
            unreadable.append(item)
    return subscriptions, unreadable


def load_subscriptions() -> list[Subscription]:
    return _read_records()[0]


def save_subscriptions(subscriptions: list[Subscription]) -> None:
    # records that failed to load are written back untouched
    saved_ids = {s.id for s in subscriptions}
    kept = [
        item for item in _read_records()[1]
        if not (isinstance(item, dict) and item.get("id") in saved_ids)
    ]
    put_blob(SUBSCRIPTIONS_KEY, [s.to_dict() for s in subscriptions] + kept)
    logger.debug("subscriptions_saved", count=len(subscriptions))


def load_config() -> AppConfig:
    return AppConfig.from_dict(get_blob(CONFIG_KEY))


def save_config(config: AppConfig) -> None:
    put_blob(CONFIG_KEY, config.to_dict())


def init_db(default_admin_hash: str) -> None:
    """
    Initialize the database.
    - Create the kv_store table
    - Write a default config (admin/admin123) if none exists yet
    - Force password change on first login
    """
    _create_tables()

    if get_blob(CONFIG_KEY) is None:
        save_config(AppConfig(admin_password_hash=default_admin_hash, force_password_change=True))
        logger.info("default_config_created", db_file=str(DB_FILE))
