import base64
import hashlib
import hmac
import time
from typing import Any, Mapping, Optional

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

SUCCESS_EVENTS = {"PAYMENT_SUCCESS_WEBHOOK"}
FAILED_EVENTS = {"PAYMENT_FAILED_WEBHOOK", "PAYMENT_USER_DROPPED_WEBHOOK"}
FAILED_PAYMENT_STATUSES = {"FAILED", "USER_DROPPED", "CANCELLED", "VOID"}
FALLBACK_PHONE = "9999999999"


class CashfreeGateway(PaymentGateway):
    """Cashfree PG orders API. Payment state is confirmed by polling the order's payments."""

    name = "cashfree"
    signature_header = "x-webhook-signature"
    timestamp_header = "x-webhook-timestamp"

    def __init__(
        self,
        app_id: Optional[str],
        secret_key: Optional[str],
        api_base_url: str = "https://sandbox.cashfree.com/pg",
        api_version: str = "2022-09-01",
        callback_base_url: str = "http://localhost:8000",
        **kwargs,
    ):
        super().__init__(api_base_url, **kwargs)
        self.app_id = app_id
        self.secret_key = secret_key
        self.api_version = api_version
        self.callback_base_url = callback_base_url.rstrip("/")
        if not app_id or not secret_key:
            logger.error("Cashfree API keys are missing; payment session creation will fail")

    def _headers(self) -> dict:
        return {
            "x-client-id": self.app_id or "",
            "x-client-secret": self.secret_key or "",
            "x-api-version": self.api_version,
            "Content-Type": "application/json",
        }

    def create_session(self, internal_order_id: int, amount: float, customer: CustomerContact) -> SessionResult:
        if not self.app_id or not self.secret_key:
            return SessionResult.failure("Payment gateway error: Cashfree API keys are not configured")
        # Cashfree echoes this id back in the redirect and webhook, so it is the lookup key
        provider_order_id = f"ORDER_{internal_order_id}_{int(time.time() * 1000)}"
        payload = {
            "order_id": provider_order_id,
            "order_amount": round(amount, 2),
            "order_currency": self.currency,
            "order_meta": {
                "return_url": f"{self.callback_base_url}/payments/verify?order_id={{order_id}}",
                "notify_url": f"{self.callback_base_url}/payments/webhook",
            },
            "customer_details": {
                "customer_id": customer.user_id,
                "customer_email": customer.email,
                "customer_phone": customer.phone or FALLBACK_PHONE,
            },
        }
        try:
            body = self._request("POST", "/orders", json=payload)
        except GatewayError as e:
            logger.error(
                "Cashfree session creation failed",
                extra={'extra_fields': {'order_id': internal_order_id, 'error': e.message}}
            )
            return SessionResult.failure(f"Payment gateway error: {e.message}")

        if not isinstance(body, dict) or not body.get("cf_order_id") or not body.get("payment_session_id"):
            message = body.get("message") if isinstance(body, dict) else None
            return SessionResult.failure(f"Payment gateway error: {message or 'Cashfree session failed.'}")
        logger.info(
            "Cashfree session created",
            extra={'extra_fields': {'order_id': internal_order_id, 'provider_order_id': provider_order_id}}
        )
        return SessionResult(
            success=True,
            provider_session_id=body["payment_session_id"],
            provider_order_id=provider_order_id,
            amount=float(body.get("order_amount", payload["order_amount"])),
            currency=body.get("order_currency", self.currency),
            message="Cashfree session created successfully.",
        )

    def verify_status(self, provider_order_id: str) -> GatewayCheck:
        body = self._request("GET", f"/orders/{provider_order_id}/payments")
        payments = body if isinstance(body, list) else []
        statuses = {p.get("payment_status") for p in payments}
        if "SUCCESS" in statuses:
            return GatewayCheck.SUCCESS
        if statuses and statuses <= FAILED_PAYMENT_STATUSES:
            return GatewayCheck.FAILED
        return GatewayCheck.PENDING

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str], timestamp: Optional[str] = None) -> bool:
        if not self.secret_key:
            logger.error("CASHFREE_SECRET_KEY is not set; rejecting webhook")
            return False
        if not signature or not timestamp:
            return False
        digest = hmac.new(self.secret_key.encode("utf-8"), timestamp.encode("utf-8") + raw_body, hashlib.sha256).digest()
        return hmac.compare_digest(base64.b64encode(digest).decode("ascii"), signature)

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        event_type = webhook_text(payload, "type")
        data = webhook_section(payload, "data")
        order = webhook_section(data, "order")
        payment = webhook_section(data, "payment")
        if event_type in SUCCESS_EVENTS:
            kind = WebhookEventKind.CAPTURED
        elif event_type in FAILED_EVENTS:
            kind = WebhookEventKind.FAILED
        else:
            kind = WebhookEventKind.IGNORED
        return WebhookEvent(
            kind=kind,
            event_type=event_type,
            provider_order_id=webhook_text(order, "order_id"),
            provider_payment_id=webhook_text(payment, "cf_payment_id"),
        )

    def verify_redirect(self, params: Mapping[str, str]) -> RedirectResult:
        order_id = params.get("order_id")
        if not order_id:
            return RedirectResult(status=GatewayCheck.FAILED, message="Payment verification parameters missing")
        try:
            status = self.verify_status(order_id)
        except GatewayError as e:
            logger.warning(
                "Cashfree status poll failed; leaving payment pending",
                extra={'extra_fields': {'provider_order_id': order_id, 'error': e.message}}
            )
            return RedirectResult(status=GatewayCheck.PENDING, provider_order_id=order_id, message=e.message)
        message = "Payment failed at gateway" if status == GatewayCheck.FAILED else None
        return RedirectResult(status=status, provider_order_id=order_id, message=message)
