import json

import httpx
import pytest

from models import AppConfig
from notify import dispatch, missing_settings, send

CHANNEL_SETTINGS = {
    "telegram": {"bot_token": "123:abc", "chat_id": "42"},
    "notifyx": {"api_key": "nx-key"},
    "webhook": {"url": "https://hooks.example.com/renewals"},
    "wechatbot": {"webhook": "https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=k", "at_all": True},
    "email": {"api_key": "re_key", "from": "bot@example.com", "to": "me@example.com"},
    "bark": {"device_key": "dev", "server": "https://bark.example.com/"},
}

REPLIES = {
    "api.telegram.org": {"ok": True},
    "www.notifyx.cn": {"status": "queued"},
    "hooks.example.com": {},
    "qyapi.weixin.qq.com": {"errcode": 0, "errmsg": "ok"},
    "api.resend.com": {"id": "email-1"},
    "bark.example.com": {"code": 200},
}


@pytest.fixture
def sent():
    return []


@pytest.fixture
def client(sent):
    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(200, json=REPLIES[request.url.host])

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def config():
    return AppConfig(enabled_notifiers=tuple(CHANNEL_SETTINGS), channels=CHANNEL_SETTINGS)


@pytest.mark.parametrize("channel", sorted(CHANNEL_SETTINGS))
def test_every_channel_sends(channel, config, client, sent):
    assert send(channel, "Title", "Body", ["Video"], config=config, client=client)
    assert len(sent) == 1


def test_telegram_payload(config, client, sent):
    send("telegram", "Title", "Body", config=config, client=client)
    request = sent[0]
    assert request.url.path == "/bot123:abc/sendMessage"
    assert json.loads(request.content) == {"chat_id": "42", "text": "Title\n\nBody"}


def test_webhook_default_payload(config, client, sent):
    send("webhook", "Title", "Body", ["a", "b"], config=config, client=client)
    payload = json.loads(sent[0].content)
    assert sent[0].method == "POST"
    assert payload["title"] == "Title"
    assert payload["content"] == "Body"
    assert payload["tags"] == ["a", "b"]
    assert "timestamp" in payload


def test_webhook_template(client, sent):
    config = AppConfig(channels={"webhook": {
        "url": "https://hooks.example.com/renewals",
        "method": "put",
        "headers": {"X-Token": "t"},
        "template": '{"text": "{{title}}: {{content}}", "labels": "{{tags}}"}',
    }})
    assert send("webhook", "Renew", 'line "one"\nline two', ["x", "y"], config=config, client=client)
    request = sent[0]
    assert request.method == "PUT"
    assert request.headers["X-Token"] == "t"
    assert json.loads(request.content) == {"text": 'Renew: line "one"\nline two', "labels": "x,y"}


def test_wechatbot_mentions_everyone(config, client, sent):
    send("wechatbot", "Title", "Body", config=config, client=client)
    payload = json.loads(sent[0].content)
    assert payload["msgtype"] == "text"
    assert payload["text"]["mentioned_mobile_list"] == ["@all"]


def test_email_uses_bearer_token(config, client, sent):
    send("email", "Title", "Body", config=config, client=client)
    request = sent[0]
    assert request.headers["Authorization"] == "Bearer re_key"
    assert json.loads(request.content)["to"] == ["me@example.com"]


def test_bark_strips_trailing_slash(config, client, sent):
    send("bark", "Title", "Body", config=config, client=client)
    assert str(sent[0].url) == "https://bark.example.com/push"


def test_unconfigured_channel_is_not_sent(client, sent):
    config = AppConfig(channels={"telegram": {"bot_token": "123:abc"}})
    assert missing_settings("telegram", config.channel("telegram")) == ["chat_id"]
    assert not send("telegram", "Title", "Body", config=config, client=client)
    assert sent == []


def test_unknown_channel(config, client):
    assert not send("pigeon", "Title", "Body", config=config, client=client)


def test_server_error_is_reported_as_failure(config):
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    assert not send("webhook", "Title", "Body", config=config, client=client)


def test_rejected_message(config):
    client = httpx.Client(transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"ok": False})
    ))
    assert not send("telegram", "Title", "Body", config=config, client=client)


def test_connection_error_is_reported_as_failure(config):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    assert not send("bark", "Title", "Body", config=config, client=client)


def test_dispatch_only_uses_enabled_channels(client, sent):
    config = AppConfig(enabled_notifiers=("telegram", "bark"), channels=CHANNEL_SETTINGS)
    assert dispatch(config, "Title", "Body", ["Video"], client=client) == {"telegram": True, "bark": True}
    assert len(sent) == 2
