"""Tests for PaymentWebhookNotifier delivery and retries."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import ADDRESS_0, mock_http_client, run
from errors import WebhookDeliveryError
from services.webhook import PaymentWebhookNotifier, build_webhook_payload

URL = "https://example.supabase.co/functions/v1/qr-payment-webhook"
TX = "0x" + "d" * 64


def notifier_with(responses, requests=None, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    return PaymentWebhookNotifier(URL, api_key="anon-key",
                                  client=mock_http_client(responses, requests), **kwargs)


def test_payload_shape():
    payload = build_webhook_payload("brewfi_1_abc", TX, ADDRESS_0, "USDC", "5000000")
    assert payload == {
        "type": "payment_received",
        "data": {
            "sessionId": "brewfi_1_abc",
            "txHash": TX,
            "buyerAddress": ADDRESS_0,
            "paymentMethod": "USDC",
            "amount": "5000000",
        },
    }
    assert "amount" not in build_webhook_payload("s", TX, ADDRESS_0, "AVAX")["data"]


def test_payload_rejects_unknown_method():
    with pytest.raises(ValueError):
        build_webhook_payload("s", TX, ADDRESS_0, "BTC")


def test_successful_delivery_sends_bearer_token():
    requests = []
    notifier = notifier_with([200], requests)

    run(notifier.notify("brewfi_1_abc", TX, ADDRESS_0, "USDT", "1"))

    assert len(requests) == 1
    request = requests[0]
    assert request.headers["Authorization"] == "Bearer anon-key"
    assert json.loads(request.content)["data"]["paymentMethod"] == "USDT"


def test_retries_server_errors_then_succeeds():
    requests = []
    notifier = notifier_with([503, httpx.ConnectError("refused"), 200], requests)

    run(notifier.notify("s", TX, ADDRESS_0, "USDC"))

    assert len(requests) == 3


def test_gives_up_after_max_attempts():
    requests = []
    notifier = notifier_with([500], requests, max_attempts=3)

    with pytest.raises(WebhookDeliveryError) as exc:
        run(notifier.notify("s", TX, ADDRESS_0, "USDC"))

    assert exc.value.status_code == 500
    assert exc.value.retryable
    assert len(requests) == 3


def test_client_errors_are_not_retried():
    requests = []
    notifier = notifier_with([401], requests)

    with pytest.raises(WebhookDeliveryError) as exc:
        run(notifier.notify("s", TX, ADDRESS_0, "USDC"))

    assert exc.value.status_code == 401
    assert "status 401" in str(exc.value)
    assert len(requests) == 1


def test_notify_safely_returns_error(caplog):
    notifier = notifier_with([httpx.ConnectError("network down")], max_attempts=2)

    error = run(notifier.notify_safely("s", TX, ADDRESS_0, "USDC"))

    assert isinstance(error, WebhookDeliveryError)
    assert "network down" in str(error)
    assert "not delivered" in caplog.text
    assert run(notifier_with([200]).notify_safely("s", TX, ADDRESS_0, "USDC")) is None


def test_requires_url():
    with pytest.raises(ValueError):
        PaymentWebhookNotifier("")
