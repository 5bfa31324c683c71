"""
Paynow client: request payloads, response parsing and hash verification,
with the HTTP session mocked out.
"""
from decimal import Decimal
from unittest.mock import MagicMock
from urllib.parse import urlencode

import pytest
import requests

from cemetery.config import Settings
from cemetery.exceptions import GatewayConfigurationError, GatewayError
from cemetery.services.paynow_client import WEBHOOK_HASH_FIELDS, PaynowClient
from cemetery.utils.hashing import paynow_hash

KEY = "test-integration-key"


def _settings(**overrides):
    values = dict(
        PAYNOW_INTEGRATION_ID="1234",
        PAYNOW_INTEGRATION_KEY=KEY,
        PAYNOW_RETURN_URL="https://cemetery.test/return",
        PAYNOW_RESULT_URL="https://cemetery.test/result",
    )
    values.update(overrides)
    return Settings(**values)


def _response(**fields):
    response = MagicMock()
    response.text = urlencode(fields)
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session, headers={})


class TestInitiateRedirect:

    def test_success_returns_urls(self, http):
        http.post.return_value = _response(
            status="Ok", browserurl="https://paynow.test/pay/1", pollurl="https://paynow.test/poll/1",
        )
        client = PaynowClient(_settings(), session=http)

        result = client.initiate_redirect("GW-1", Decimal("25"))

        assert result.redirect_url == "https://paynow.test/pay/1"
        assert result.poll_url == "https://paynow.test/poll/1"
        sent = http.post.call_args.kwargs["data"]
        assert sent["amount"] == "25.00"
        assert sent["reference"] == "GW-1"
        assert sent["hash"] == paynow_hash(sent, ("id", "reference", "amount", "additionalinfo",
                                                  "returnurl", "resulturl", "status"), KEY)

    def test_error_status_raises(self, http):
        http.post.return_value = _response(status="Error", error="Invalid id")
        client = PaynowClient(_settings(), session=http)

        with pytest.raises(GatewayError, match="Invalid id"):
            client.initiate_redirect("GW-1", Decimal("25"))

    def test_missing_credentials(self, http):
        client = PaynowClient(_settings(PAYNOW_INTEGRATION_KEY=""), session=http)

        with pytest.raises(GatewayConfigurationError, match="PAYNOW_INTEGRATION_KEY"):
            client.initiate_redirect("GW-1", Decimal("25"))
        http.post.assert_not_called()


class TestInitiatePush:

    def test_phone_normalized_for_paynow(self, http):
        http.post.return_value = _response(status="Ok", pollurl="https://paynow.test/poll/2")
        client = PaynowClient(_settings(), session=http)

        result = client.initiate_push("GW-2", Decimal("10.50"), "0771234567")

        assert result.poll_url == "https://paynow.test/poll/2"
        sent = http.post.call_args.kwargs["data"]
        assert sent["phone"] == "263771234567"
        assert sent["method"] == "ecocash"

    def test_network_failure_is_gateway_error(self, http):
        http.post.side_effect = requests.Timeout("timed out")
        client = PaynowClient(_settings(), session=http)

        with pytest.raises(GatewayError, match="timed out"):
            client.initiate_push("GW-2", Decimal("10"), "0771234567")


class TestPoll:

    @pytest.mark.parametrize("raw, mapped", [
        ("Paid", "PAID"),
        ("Awaiting Delivery", "PAID"),
        ("Cancelled", "FAILED"),
        ("Expired", "FAILED"),
        ("Sent", "PENDING"),
    ])
    def test_status_mapping(self, http, raw, mapped):
        http.post.return_value = _response(status=raw, reference="GW-3", amount="10.00")
        result = PaynowClient(_settings(), session=http).poll("https://paynow.test/poll/3")

        assert result.status == mapped
        assert result.gateway_status == raw
        assert result.amount == Decimal("10.00")

    def test_malformed_amount_ignored(self, http):
        http.post.return_value = _response(status="Paid", amount="ten")
        result = PaynowClient(_settings(), session=http).poll("https://paynow.test/poll/3")

        assert result.status == "PAID"
        assert result.amount is None


class TestWebhookSignature:

    def _payload(self):
        payload = {
            "reference": "GW-4",
            "paynowreference": "998877",
            "amount": "50.00",
            "status": "Paid",
            "pollurl": "https://paynow.test/poll/4",
        }
        payload["hash"] = paynow_hash(payload, WEBHOOK_HASH_FIELDS, KEY)
        return payload

    def test_valid_hash(self, http):
        assert PaynowClient(_settings(), session=http).verify_webhook_signature(self._payload())

    def test_lowercase_hash_accepted(self, http):
        payload = self._payload()
        payload["hash"] = payload["hash"].lower()
        assert PaynowClient(_settings(), session=http).verify_webhook_signature(payload)

    def test_tampered_amount_rejected(self, http):
        payload = self._payload()
        payload["amount"] = "5000.00"
        assert not PaynowClient(_settings(), session=http).verify_webhook_signature(payload)

    def test_missing_hash_rejected(self, http):
        payload = self._payload()
        del payload["hash"]
        assert not PaynowClient(_settings(), session=http).verify_webhook_signature(payload)
