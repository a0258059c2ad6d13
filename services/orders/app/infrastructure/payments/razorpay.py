import hashlib
import hmac
from typing import Any, Mapping, Optional

import httpx

from app.domain.errors import GatewayError
from .base import (
    CustomerContact,
    GatewayCheck,
    PaymentGateway,
    RedirectResult,
    SessionResult,
    WebhookEvent,
    WebhookEventKind,
    logger,
    webhook_section,
    webhook_text,
)

CAPTURED_EVENTS = {"payment.captured", "order.paid"}
FAILED_EVENTS = {"payment.failed"}


def to_subunits(amount: float) -> int:
    """Rupees to paise."""
    return int(round(amount * 100))


def from_subunits(amount: int) -> float:
    return round(amount / 100, 2)


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayGateway(PaymentGateway):
    """Razorpay Orders API. Payment is confirmed by signature, both on redirect and on webhook."""

    name = "razorpay"
    signature_header = "X-Razorpay-Signature"

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        webhook_secret: Optional[str],
        base_url: str = "https://api.razorpay.com/v1",
        **kwargs,
    ):
        super().__init__(base_url, **kwargs)
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        if not key_id or not key_secret:
            logger.error("Razorpay API keys are missing; payment session creation will fail")

    def _auth(self) -> Optional[httpx.Auth]:
        if self.key_id and self.key_secret:
            return httpx.BasicAuth(self.key_id, self.key_secret)
        return None

    def create_session(self, internal_order_id: int, amount: float, customer: CustomerContact) -> SessionResult:
        if not self.key_id or not self.key_secret:
            return SessionResult.failure("Payment gateway error: Razorpay API keys are not configured")
        payload = {
            "amount": to_subunits(amount),
            "currency": self.currency,
            "receipt": f"receipt_{internal_order_id}",
            "notes": {"user_id": customer.user_id, "order_id": str(internal_order_id)},
        }
        try:
            body = self._request("POST", "/orders", json=payload)
        except GatewayError as e:
            logger.error(
                "Razorpay order creation failed",
                extra={'extra_fields': {'order_id': internal_order_id, 'error': e.message}}
            )
            return SessionResult.failure(f"Payment gateway error: {e.message}")

        if not isinstance(body, dict) or not body.get("id"):
            return SessionResult.failure("Payment gateway error: Razorpay returned no order id")
        logger.info(
            "Razorpay order created",
            extra={'extra_fields': {'order_id': internal_order_id, 'provider_order_id': body["id"]}}
        )
        return SessionResult(
            success=True,
            provider_session_id=body["id"],
            provider_order_id=body["id"],
            amount=from_subunits(int(body.get("amount", payload["amount"]))),
            currency=body.get("currency", self.currency),
            message="Razorpay order created successfully.",
        )

    def verify_status(self, provider_order_id: str) -> GatewayCheck:
        body = self._request("GET", f"/orders/{provider_order_id}/payments")
        payments = body.get("items", []) if isinstance(body, dict) else []
        statuses = {p.get("status") for p in payments}
        if "captured" in statuses:
            return GatewayCheck.SUCCESS
        if statuses and statuses <= {"failed"}:
            return GatewayCheck.FAILED
        return GatewayCheck.PENDING

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str], timestamp: Optional[str] = None) -> bool:
        if not self.webhook_secret:
            logger.error("RAZORPAY_WEBHOOK_SECRET is not set; rejecting webhook")
            return False
        if not signature:
            return False
        return hmac.compare_digest(_hmac_hex(self.webhook_secret, raw_body), signature)

    def verify_payment_signature(self, provider_order_id: str, provider_payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            raise GatewayError("Razorpay key secret is not configured")
        expected = _hmac_hex(self.key_secret, f"{provider_order_id}|{provider_payment_id}".encode("utf-8"))
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        event_type = webhook_text(payload, "event")
        inner = webhook_section(payload, "payload")
        payment = webhook_section(webhook_section(inner, "payment"), "entity")
        order = webhook_section(webhook_section(inner, "order"), "entity")
        provider_order_id = webhook_text(payment, "order_id") or webhook_text(order, "id")

        if event_type in CAPTURED_EVENTS:
            kind = WebhookEventKind.CAPTURED
        elif event_type in FAILED_EVENTS:
            kind = WebhookEventKind.FAILED
        else:
            kind = WebhookEventKind.IGNORED
        return WebhookEvent(
            kind=kind,
            event_type=event_type,
            provider_order_id=provider_order_id,
            provider_payment_id=webhook_text(payment, "id"),
        )

    def verify_redirect(self, params: Mapping[str, str]) -> RedirectResult:
        order_id = params.get("razorpay_order_id")
        payment_id = params.get("razorpay_payment_id")
        signature = params.get("razorpay_signature")
        if not (order_id and payment_id and signature):
            return RedirectResult(
                status=GatewayCheck.FAILED,
                provider_order_id=order_id,
                provider_payment_id=payment_id,
                message="Payment verification parameters missing",
            )
        if not self.verify_payment_signature(order_id, payment_id, signature):
            return RedirectResult(
                status=GatewayCheck.FAILED,
                provider_order_id=order_id,
                provider_payment_id=payment_id,
                message="Invalid payment signature",
            )
        return RedirectResult(status=GatewayCheck.SUCCESS, provider_order_id=order_id, provider_payment_id=payment_id)
