"""
auth.py
Admin authentication: bcrypt hashing and the credentials stored in the
config blob.
"""

from __future__ import annotations

from dataclasses import replace

import bcrypt

import db
from log import get_logger

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


def _to_bcrypt_secret(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(_to_bcrypt_secret(password), bcrypt.gensalt(rounds=12))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("invalid_password_hash_in_config")
        return False


def login(username: str, password: str) -> bool:
    config = db.load_config()
    if username != config.admin_username:
        return False
    return verify_password(password, config.admin_password_hash)


def password_errors(new_password: str, confirm: str) -> list[str]:
    errors = []
    if len(new_password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if new_password != confirm:
        errors.append("Passwords do not match.")
    return errors


def change_password(new_password: str, username: str | None = None) -> None:
    config = db.load_config()
    config = replace(
        config,
        admin_password_hash=hash_password(new_password),
        admin_username=username or config.admin_username,
        force_password_change=False,
    )
    db.save_config(config)
    logger.info("admin_password_changed", username=config.admin_username)


def is_force_password_change() -> bool:
    return db.load_config().force_password_change
