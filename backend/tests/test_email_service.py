"""Email provider access and webhook signatures."""

import base64
import io
import json
import time
import urllib.error

import pytest

from rfpdesk.services import email_service
from rfpdesk.services.email_service import EmailDeliveryError, WebhookVerificationError

SECRET = "whsec_" + base64.b64encode(b"test-webhook-secret").decode("ascii")


class FakeResponse:
    def __init__(self, payload):
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def resend_configured(monkeypatch):
    monkeypatch.setenv("RESEND_API_KEY", "re_test_key")
    monkeypatch.setenv("RESEND_API_URL", "https://resend.test")
    monkeypatch.setenv("EMAIL_FROM", "RFPs <rfp@example.com>")


class TestSendEmail:

    def test_logged_without_api_key(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "")
        assert email_service.email_provider() == "log"
        assert email_service.send_email("a@b.example", "Hi", "Body") == {"status": "logged", "id": None}

    def test_sent_via_provider(self, monkeypatch, resend_configured):
        seen = {}

        def fake_urlopen(req, timeout=None):
            seen["url"] = req.full_url
            seen["method"] = req.get_method()
            seen["auth"] = req.get_header("Authorization")
            seen["body"] = json.loads(req.data.decode("utf-8"))
            return FakeResponse({"id": "msg_123"})

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
        out = email_service.send_email("sales@acme.example", "RFP", "Please quote")
        assert out == {"status": "sent", "id": "msg_123"}
        assert seen["url"] == "https://resend.test/emails"
        assert seen["method"] == "POST"
        assert seen["auth"] == "Bearer re_test_key"
        assert seen["body"] == {
            "from": "RFPs <rfp@example.com>",
            "to": ["sales@acme.example"],
            "subject": "RFP",
            "text": "Please quote",
        }

    def test_http_error_raises(self, monkeypatch, resend_configured):
        def fake_urlopen(req, timeout=None):
            raise urllib.error.HTTPError(req.full_url, 422, "Unprocessable", {}, io.BytesIO(b'{"message": "bad to"}'))

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
        with pytest.raises(EmailDeliveryError, match="HTTP 422"):
            email_service.send_email("x@y.example", "s", "b")

    def test_unreachable_raises(self, monkeypatch, resend_configured):
        def fake_urlopen(req, timeout=None):
            raise urllib.error.URLError("name resolution failed")

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
        with pytest.raises(EmailDeliveryError):
            email_service.send_email("x@y.example", "s", "b")


class TestFetchReceivedEmail:

    def test_none_without_api_key(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "")
        assert email_service.fetch_received_email("abc") is None

    def test_unwraps_data(self, monkeypatch, resend_configured):
        seen = {}

        def fake_urlopen(req, timeout=None):
            seen["url"] = req.full_url
            seen["method"] = req.get_method()
            return FakeResponse({"data": {"text": "Total: $10", "subject": "Re: RFP"}})

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
        assert email_service.fetch_received_email("em_1") == {"text": "Total: $10", "subject": "Re: RFP"}
        assert seen == {"url": "https://resend.test/emails/receiving/em_1", "method": "GET"}

    def test_plain_message(self, monkeypatch, resend_configured):
        monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout=None: FakeResponse({"html": "<p>x</p>"}))
        assert email_service.fetch_received_email("em_2") == {"html": "<p>x</p>"}

    def test_http_error_returns_none(self, monkeypatch, resend_configured):
        def fake_urlopen(req, timeout=None):
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
        assert email_service.fetch_received_email("missing") is None


class TestWebhookSignature:

    def _headers(self, payload, ts=None):
        ts = str(int(time.time()) if ts is None else ts)
        sig = email_service.sign_webhook(SECRET, "msg_1", ts, payload)
        return "msg_1", ts, f"v1,{sig}"

    def test_valid(self):
        payload = b'{"type": "email.received"}'
        msg_id, ts, header = self._headers(payload)
        email_service.verify_webhook_signature(SECRET, payload, msg_id, ts, header)

    def test_any_of_multiple_signatures(self):
        payload = b"{}"
        msg_id, ts, header = self._headers(payload)
        email_service.verify_webhook_signature(SECRET, payload, msg_id, ts, f"v1,bm90LWl0 {header}")

    def test_tampered_body(self):
        msg_id, ts, header = self._headers(b'{"a": 1}')
        with pytest.raises(WebhookVerificationError):
            email_service.verify_webhook_signature(SECRET, b'{"a": 2}', msg_id, ts, header)

    def test_stale_timestamp(self):
        payload = b"{}"
        msg_id, ts, header = self._headers(payload, ts=int(time.time()) - 3600)
        with pytest.raises(WebhookVerificationError, match="tolerance"):
            email_service.verify_webhook_signature(SECRET, payload, msg_id, ts, header)

    def test_missing_headers(self):
        with pytest.raises(WebhookVerificationError):
            email_service.verify_webhook_signature(SECRET, b"{}", None, None, None)

    def test_non_numeric_timestamp(self):
        with pytest.raises(WebhookVerificationError):
            email_service.verify_webhook_signature(SECRET, b"{}", "msg_1", "yesterday", "v1,abc")
