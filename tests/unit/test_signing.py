"""Tests for HMAC signing and delivery outcome classification."""

import hashlib
import hmac

import httpx
import pytest

from sbtcpay_webhooks import sign_payload, signature_header, verify_signature
from sbtcpay_webhooks.common.exceptions import TransientDeliveryError
from sbtcpay_webhooks.deliveries.classifier import (
    AnyResponseClassifier,
    OutcomeKind,
    StatusCodeClassifier,
    get_classifier,
)

SECRET = "a" * 64


class TestSignPayload:
    def test_matches_manual_hmac(self):
        body = b'{"id":"e1","type":"payment.succeeded"}'
        expected = hmac.new(SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()
        assert sign_payload(body, SECRET) == expected

    def test_str_and_bytes_agree(self):
        assert sign_payload('{"a":1}', SECRET) == sign_payload(b'{"a":1}', SECRET)

    def test_different_secrets_different_sigs(self):
        assert sign_payload(b"{}", "secret-one") != sign_payload(b"{}", "secret-two")

    def test_header_format(self):
        header = signature_header(b"{}", SECRET)
        assert header.startswith("sha256=")
        assert len(header) == len("sha256=") + 64


class TestVerifySignature:
    def test_valid(self):
        body = b'{"a":1}'
        assert verify_signature(body, signature_header(body, SECRET), SECRET) is True

    def test_tampered_body(self):
        header = signature_header(b'{"a":1}', SECRET)
        assert verify_signature(b'{"a":2}', header, SECRET) is False

    def test_wrong_secret(self):
        header = signature_header(b'{"a":1}', SECRET)
        assert verify_signature(b'{"a":1}', header, "b" * 64) is False

    @pytest.mark.parametrize("header", ["", "md5=abc", sign_payload(b"{}", SECRET)])
    def test_malformed_header(self, header):
        assert verify_signature(b"{}", header, SECRET) is False


class TestStatusCodeClassifier:
    classifier = StatusCodeClassifier()

    @pytest.mark.parametrize("code", [200, 201, 204, 299])
    def test_2xx_success(self, code):
        outcome = self.classifier.classify(response=httpx.Response(code))
        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.status_code == code
        assert outcome.error is None

    @pytest.mark.parametrize("code", [301, 400, 404, 429, 500, 503])
    def test_other_codes_transient(self, code):
        outcome = self.classifier.classify(response=httpx.Response(code, text="nope"))
        assert outcome.kind is OutcomeKind.TRANSIENT
        assert outcome.error == f"HTTP {code}"
        assert outcome.body == "nope"

    def test_gone_terminal(self):
        assert self.classifier.classify(response=httpx.Response(410)).kind is OutcomeKind.TERMINAL

    def test_error_transient(self):
        outcome = self.classifier.classify(error=TransientDeliveryError("Connection refused"))
        assert outcome.kind is OutcomeKind.TRANSIENT
        assert outcome.status_code is None
        assert outcome.error == "Connection refused"


class TestAnyResponseClassifier:
    def test_any_status_is_success(self):
        outcome = AnyResponseClassifier().classify(response=httpx.Response(500))
        assert outcome.succeeded

    def test_error_still_transient(self):
        outcome = AnyResponseClassifier().classify(error=TransientDeliveryError("timeout"))
        assert outcome.kind is OutcomeKind.TRANSIENT


def test_get_classifier():
    assert isinstance(get_classifier("2xx"), StatusCodeClassifier)
    assert isinstance(get_classifier("any_response"), AnyResponseClassifier)
    with pytest.raises(ValueError):
        get_classifier("maybe")
