import pytest
import requests

from candidates.models import Channel
from notifications.client import HttpNotificationClient, NotificationGatewayError
from notifications.models import Recipient, TemplateKind


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"{}" if payload is not None else b""

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.response


RECIPIENT = Recipient(candidate_id=1, name="Ada Player", email="ada@example.org", phone="+46701234567",
                      channel=Channel.SMS)


def test_posts_to_channel_endpoint_with_bearer_key():
    session = FakeSession(FakeResponse(payload={"status": "queued"}))
    client = HttpNotificationClient(base_url="https://notify.test/", api_key="k", session=session)

    assert client.send(RECIPIENT, Channel.SMS, TemplateKind.REQUEST, {"token": "abc"})

    url, kwargs = session.calls[0]
    assert url == "https://notify.test/messages/sms"
    assert kwargs["headers"] == {"Authorization": "Bearer k"}
    assert kwargs["json"] == {
        "to": "+46701234567",
        "name": "Ada Player",
        "template": "request",
        "variables": {"token": "abc"},
    }


def test_http_error_is_a_failed_send():
    client = HttpNotificationClient(base_url="https://notify.test", session=FakeSession(FakeResponse(503)))

    assert client.send(RECIPIENT, Channel.SMS, TemplateKind.REMINDER, {}) is False


def test_gateway_error_status_raises():
    session = FakeSession(FakeResponse(payload={"status": "error", "message": "bad number"}))
    client = HttpNotificationClient(base_url="https://notify.test", session=session)

    with pytest.raises(NotificationGatewayError, match="bad number"):
        client.send(RECIPIENT, Channel.SMS, TemplateKind.REQUEST, {})


def test_missing_base_url_is_rejected(monkeypatch):
    monkeypatch.setattr("notifications.client.BASE_URL", None)

    with pytest.raises(ValueError):
        HttpNotificationClient()
