from types import SimpleNamespace

import pytest
import requests

from settings import Settings


class StubResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class StubHttp:
    """Records outbound calls and replays queued responses for requests.get/post."""

    def __init__(self):
        self.calls = []
        self.get_responses = []
        self.post_responses = []

    def get(self, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": "GET", "url": url, "headers": headers, "timeout": timeout})
        return self._next(self.get_responses)

    def post(self, url, json=None, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": "POST", "url": url, "json": json, "headers": headers, "timeout": timeout})
        return self._next(self.post_responses)

    @staticmethod
    def _next(queue):
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class StubVerifications:
    def __init__(self, sid="VEXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX", error=None):
        self.sid = sid
        self.error = error
        self.sent = []

    def create(self, to, channel):
        self.sent.append({"to": to, "channel": channel})
        if self.error:
            raise self.error
        return SimpleNamespace(sid=self.sid, status="pending")


class StubVerificationChecks:
    def __init__(self, status="approved", error=None):
        self.status = status
        self.error = error
        self.checked = []

    def create(self, to, code):
        self.checked.append({"to": to, "code": code})
        if self.error:
            raise self.error
        return SimpleNamespace(status=self.status)


class StubTwilioClient:
    def __init__(self, verifications=None, verification_checks=None):
        self.verifications = verifications or StubVerifications()
        self.verification_checks = verification_checks or StubVerificationChecks()
        self.service_sids = []
        self.verify = SimpleNamespace(v2=SimpleNamespace(services=self._services))

    def _services(self, sid):
        self.service_sids.append(sid)
        return SimpleNamespace(
            verifications=self.verifications,
            verification_checks=self.verification_checks,
        )


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        consumer_key="key",
        consumer_secret="secret",
        business_short_code="174379",
        passkey="passkey",
        sandbox_phone="254708374149",
        mpesa_callback_url="https://example.com/callback",
        twilio_account_sid="ACxxx",
        twilio_auth_token="tok",
        twilio_verify_service_sid="VAxxx",
    )


@pytest.fixture
def http(monkeypatch):
    stub = StubHttp()
    monkeypatch.setattr("daraja.requests.get", stub.get)
    monkeypatch.setattr("daraja.requests.post", stub.post)
    return stub
