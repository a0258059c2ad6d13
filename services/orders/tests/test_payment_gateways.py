import base64
import hashlib
import hmac
import json

import httpx
import pytest

from app.core_settings import Settings
from app.domain.errors import GatewayError, ValidationError
from app.infrastructure.payments import (
    CashfreeGateway,
    CustomerContact,
    GatewayCheck,
    RazorpayGateway,
    WebhookEventKind,
    build_payment_gateway,
)
from app.infrastructure.payments.razorpay import from_subunits, to_subunits

CUSTOMER = CustomerContact(user_id="user-1", name="Asha", email="asha@example.com", phone="9000000001")


def razorpay(handler=None, **overrides) -> RazorpayGateway:
    options = {"key_id": "rzp_test", "key_secret": "key-secret", "webhook_secret": "hook-secret"}
    options.update(overrides)
    transport = httpx.MockTransport(handler) if handler else None
    return RazorpayGateway(transport=transport, **options)


def cashfree(handler=None, **overrides) -> CashfreeGateway:
    options = {"app_id": "cf_app", "secret_key": "cf-secret", "callback_base_url": "https://api.example.com/"}
    options.update(overrides)
    transport = httpx.MockTransport(handler) if handler else None
    return CashfreeGateway(transport=transport, **options)


def test_subunit_conversion():
    assert to_subunits(240) == 24000
    assert to_subunits(19.99) == 1999
    assert from_subunits(1999) == 19.99


def test_razorpay_session_sends_paise_and_basic_auth():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_1", "amount": 24050, "currency": "INR"})

    result = razorpay(handler).create_session(7, 240.5, CUSTOMER)
    assert result.success
    assert result.provider_order_id == "order_1"
    assert result.amount == 240.5
    assert seen["path"] == "/v1/orders"
    assert seen["auth"] == "Basic " + base64.b64encode(b"rzp_test:key-secret").decode()
    assert seen["body"]["amount"] == 24050
    assert seen["body"]["receipt"] == "receipt_7"


def test_razorpay_session_failures_are_results_not_exceptions():
    def timeout(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    result = razorpay(timeout).create_session(1, 100, CUSTOMER)
    assert not result.success
    assert "timed out" in result.message

    def rejected(request):
        return httpx.Response(400, json={"error": {"description": "amount too small"}})

    result = razorpay(rejected).create_session(1, 100, CUSTOMER)
    assert not result.success
    assert "amount too small" in result.message

    result = razorpay(key_id=None).create_session(1, 100, CUSTOMER)
    assert not result.success


def test_razorpay_verify_status():
    def handler(request):
        return httpx.Response(200, json={"items": [{"status": "failed"}, {"status": "captured"}]})

    assert razorpay(handler).verify_status("order_1") == GatewayCheck.SUCCESS
    assert razorpay(lambda r: httpx.Response(200, json={"items": [{"status": "failed"}]})).verify_status("o") == GatewayCheck.FAILED
    assert razorpay(lambda r: httpx.Response(200, json={"items": []})).verify_status("o") == GatewayCheck.PENDING
    with pytest.raises(GatewayError):
        razorpay(lambda r: httpx.Response(502, text="bad gateway")).verify_status("o")


def test_razorpay_webhook_signature():
    body = b'{"event":"payment.captured"}'
    signature = hmac.new(b"hook-secret", body, hashlib.sha256).hexdigest()
    gateway = razorpay()
    assert gateway.verify_webhook_signature(body, signature)
    assert not gateway.verify_webhook_signature(body + b" ", signature)
    assert not gateway.verify_webhook_signature(body, None)
    assert not razorpay(webhook_secret=None).verify_webhook_signature(body, signature)


def test_razorpay_parse_webhook():
    gateway = razorpay()
    event = gateway.parse_webhook({
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"id": "pay_9", "order_id": "order_9"}}},
    })
    assert event.kind == WebhookEventKind.FAILED
    assert event.provider_order_id == "order_9"
    paid = gateway.parse_webhook({"event": "order.paid", "payload": {"order": {"entity": {"id": "order_9"}}}})
    assert paid.kind == WebhookEventKind.CAPTURED
    assert paid.provider_order_id == "order_9"
    assert gateway.parse_webhook({"event": "refund.created"}).kind == WebhookEventKind.IGNORED


@pytest.mark.parametrize("payload", [
    {"event": "payment.captured", "payload": "oops"},
    {"event": "payment.captured", "payload": {"payment": ["pay_9"]}},
    {"event": "payment.captured", "payload": {"payment": {"entity": 42}}},
])
def test_razorpay_rejects_non_object_sections(payload):
    with pytest.raises(ValidationError) as excinfo:
        razorpay().parse_webhook(payload)
    assert excinfo.value.errors == ["Malformed webhook payload"]


def test_razorpay_ignores_non_text_identifiers():
    event = razorpay().parse_webhook({
        "event": ["payment.captured"],
        "payload": {"payment": {"entity": {"id": {"nested": 1}, "order_id": ["order_9"]}}},
    })
    assert event.kind == WebhookEventKind.IGNORED
    assert event.event_type is None
    assert event.provider_order_id is None
    assert event.provider_payment_id is None


def test_razorpay_redirect_checks_payment_signature():
    gateway = razorpay()
    signature = hmac.new(b"key-secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    ok = gateway.verify_redirect(
        {"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_1", "razorpay_signature": signature}
    )
    assert ok.status == GatewayCheck.SUCCESS
    forged = gateway.verify_redirect(
        {"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_2", "razorpay_signature": signature}
    )
    assert forged.status == GatewayCheck.FAILED
    assert forged.provider_order_id == "order_1"
    missing = gateway.verify_redirect({"razorpay_order_id": "order_1"})
    assert missing.message == "Payment verification parameters missing"


def test_cashfree_session_payload():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"cf_order_id": 12, "payment_session_id": "session_abc", "order_amount": 240.0}
        )

    result = cashfree(handler).create_session(42, 240, CUSTOMER)
    assert result.success
    assert result.provider_session_id == "session_abc"
    assert result.provider_order_id.startswith("ORDER_42_")
    assert seen["body"]["order_id"] == result.provider_order_id
    assert seen["body"]["order_amount"] == 240
    assert seen["body"]["order_meta"]["return_url"] == "https://api.example.com/payments/verify?order_id={order_id}"
    assert seen["body"]["order_meta"]["notify_url"] == "https://api.example.com/payments/webhook"
    assert seen["headers"]["x-client-id"] == "cf_app"
    assert seen["headers"]["x-api-version"] == "2022-09-01"


def test_cashfree_session_without_session_id_fails():
    result = cashfree(lambda r: httpx.Response(200, json={"message": "order exists"})).create_session(1, 10, CUSTOMER)
    assert not result.success
    assert "order exists" in result.message


def test_cashfree_webhook_signature_covers_timestamp_and_body():
    body = b'{"type":"PAYMENT_SUCCESS_WEBHOOK"}'
    timestamp = "1700000000"
    digest = hmac.new(b"cf-secret", timestamp.encode() + body, hashlib.sha256).digest()
    signature = base64.b64encode(digest).decode()
    gateway = cashfree()
    assert gateway.verify_webhook_signature(body, signature, timestamp)
    assert not gateway.verify_webhook_signature(body, signature, "1700000001")
    assert not gateway.verify_webhook_signature(body, signature, None)


def test_cashfree_parse_webhook():
    event = cashfree().parse_webhook({
        "type": "PAYMENT_USER_DROPPED_WEBHOOK",
        "data": {"order": {"order_id": "ORDER_1_1"}, "payment": {"cf_payment_id": 555}},
    })
    assert event.kind == WebhookEventKind.FAILED
    assert event.provider_order_id == "ORDER_1_1"
    assert event.provider_payment_id == "555"


@pytest.mark.parametrize("payload", [
    {"type": "PAYMENT_SUCCESS_WEBHOOK", "data": [1, 2]},
    {"type": "PAYMENT_SUCCESS_WEBHOOK", "data": {"order": "ORDER_1_1"}},
    {"type": "PAYMENT_SUCCESS_WEBHOOK", "data": {"order": {"order_id": "ORDER_1_1"}, "payment": 7}},
])
def test_cashfree_rejects_non_object_sections(payload):
    with pytest.raises(ValidationError):
        cashfree().parse_webhook(payload)


def test_cashfree_redirect_polls_status():
    success = cashfree(lambda r: httpx.Response(200, json=[{"payment_status": "SUCCESS"}]))
    assert success.verify_redirect({"order_id": "ORDER_1_1"}).status == GatewayCheck.SUCCESS
    dropped = cashfree(lambda r: httpx.Response(200, json=[{"payment_status": "USER_DROPPED"}]))
    assert dropped.verify_redirect({"order_id": "ORDER_1_1"}).status == GatewayCheck.FAILED

    def unreachable(request):
        raise httpx.ConnectError("refused", request=request)

    pending = cashfree(unreachable).verify_redirect({"order_id": "ORDER_1_1"})
    assert pending.status == GatewayCheck.PENDING
    assert pending.provider_order_id == "ORDER_1_1"


def test_build_payment_gateway_selects_provider():
    assert isinstance(build_payment_gateway(Settings(PAYMENT_PROVIDER="razorpay")), RazorpayGateway)
    assert isinstance(build_payment_gateway(Settings(PAYMENT_PROVIDER="Cashfree")), CashfreeGateway)
    with pytest.raises(ValueError):
        build_payment_gateway(Settings(PAYMENT_PROVIDER="paypal"))
