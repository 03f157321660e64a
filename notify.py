"""
notify.py
Notification channels. Each sender takes a title, a body and tags and
returns whether the service accepted the message. Transport failures are
logged and reported as False, never raised.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Callable, Iterable

import httpx

from log import get_logger
from models import AppConfig

logger = get_logger(__name__)

TIMEOUT = 10.0

CHANNELS = ("telegram", "notifyx", "webhook", "wechatbot", "email", "bark")

# Settings each channel needs before it can send.
REQUIRED_SETTINGS = {
    "telegram": ("bot_token", "chat_id"),
    "notifyx": ("api_key",),
    "webhook": ("url",),
    "wechatbot": ("webhook",),
    "email": ("api_key", "from", "to"),
    "bark": ("device_key",),
}


def _send_telegram(client: httpx.Client, settings: dict, title: str, body: str, tags: list[str]) -> bool:
    resp = client.post(
        f"https://api.telegram.org/bot{settings['bot_token']}/sendMessage",
        json={"chat_id": settings["chat_id"], "text": f"{title}\n\n{body}"},
    )
    resp.raise_for_status()
    return bool(resp.json().get("ok"))


def _send_notifyx(client: httpx.Client, settings: dict, title: str, body: str, tags: list[str]) -> bool:
    resp = client.post(
        f"https://www.notifyx.cn/api/v1/send/{settings['api_key']}",
        json={"title": title, "content": body, "description": " ".join(tags)},
    )
    resp.raise_for_status()
    return resp.json().get("status") == "queued"


def _render_template(template: str, title: str, body: str, tags: list[str]) -> str:
    def escape(text: str) -> str:
        return json.dumps(text, ensure_ascii=False)[1:-1]

    return (
        template.replace("{{title}}", escape(title))
        .replace("{{content}}", escape(body))
        .replace("{{tags}}", escape(",".join(tags)))
        .replace("{{timestamp}}", datetime.now(timezone.utc).isoformat(timespec="seconds"))
    )


def _send_webhook(client: httpx.Client, settings: dict, title: str, body: str, tags: list[str]) -> bool:
    method = (settings.get("method") or "POST").upper()
    headers = dict(settings.get("headers") or {})
    template = settings.get("template")
    if template:
        rendered = _render_template(template, title, body, tags)
        try:
            kwargs = {"json": json.loads(rendered)}
        except json.JSONDecodeError:
            kwargs = {"content": rendered.encode("utf-8")}
    else:
        kwargs = {
            "json": {
                "title": title,
                "content": body,
                "tags": tags,
                "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            }
        }
    resp = client.request(method, settings["url"], headers=headers, **kwargs)
    resp.raise_for_status()
    return True


def _send_wechatbot(client: httpx.Client, settings: dict, title: str, body: str, tags: list[str]) -> bool:
    text = {"content": f"{title}\n\n{body}"}
    if settings.get("at_all"):
        text["mentioned_mobile_list"] = ["@all"]
    elif settings.get("at_mobiles"):
        text["mentioned_mobile_list"] = list(settings["at_mobiles"])
    resp = client.post(settings["webhook"], json={"msgtype": "text", "text": text})
    resp.raise_for_status()
    return resp.json().get("errcode", 0) == 0


def _send_email(client: httpx.Client, settings: dict, title: str, body: str, tags: list[str]) -> bool:
    # Resend HTTP API
    to = settings["to"]
    resp = client.post(
        "https://api.resend.com/emails",
        headers={"Authorization": f"Bearer {settings['api_key']}"},
        json={
            "from": settings["from"],
            "to": [to] if isinstance(to, str) else list(to),
            "subject": title,
            "text": body,
        },
    )
    resp.raise_for_status()
    return "id" in resp.json()


def _send_bark(client: httpx.Client, settings: dict, title: str, body: str, tags: list[str]) -> bool:
    server = (settings.get("server") or "https://api.day.app").rstrip("/")
    payload = {
        "device_key": settings["device_key"],
        "title": title,
        "body": body,
        "group": "subscription",
    }
    if settings.get("is_archive"):
        payload["isArchive"] = 1
    resp = client.post(f"{server}/push", json=payload)
    resp.raise_for_status()
    return resp.json().get("code") == 200


SENDERS: dict[str, Callable[..., bool]] = {
    "telegram": _send_telegram,
    "notifyx": _send_notifyx,
    "webhook": _send_webhook,
    "wechatbot": _send_wechatbot,
    "email": _send_email,
    "bark": _send_bark,
}


def missing_settings(channel: str, settings: dict) -> list[str]:
    return [key for key in REQUIRED_SETTINGS.get(channel, ()) if not settings.get(key)]


def send(
    channel: str,
    title: str,
    body: str,
    tags: Iterable[str] = (),
    config: AppConfig | None = None,
    client: httpx.Client | None = None,
) -> bool:
    """Send one message through ``channel`` using its settings from ``config``."""
    sender = SENDERS.get(channel)
    if sender is None:
        logger.warning("unknown_notification_channel", channel=channel)
        return False

    settings = (config or AppConfig()).channel(channel)
    missing = missing_settings(channel, settings)
    if missing:
        logger.warning("notification_channel_not_configured", channel=channel, missing=missing)
        return False

    own_client = client is None
    client = client or httpx.Client(timeout=TIMEOUT)
    try:
        ok = sender(client, settings, title, body, list(tags))
    except (httpx.HTTPError, ValueError) as exc:
        # ValueError covers unparseable JSON responses
        logger.warning("notification_failed", channel=channel, error=str(exc))
        return False
    finally:
        if own_client:
            client.close()

    if ok:
        logger.info("notification_sent", channel=channel, title=title)
    else:
        logger.warning("notification_rejected", channel=channel, title=title)
    return ok


def dispatch(
    config: AppConfig,
    title: str,
    body: str,
    tags: Iterable[str] = (),
    client: httpx.Client | None = None,
) -> dict[str, bool]:
    """Send to every enabled channel; returns channel -> success."""
    tags = list(tags)
    return {
        channel: send(channel, title, body, tags, config=config, client=client)
        for channel in config.enabled_notifiers
    }
