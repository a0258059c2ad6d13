"""Payment reconciliation.

The provider webhook and the browser redirect race for the same order. Both
end in the same guarded writes, so whichever arrives second is a no-op.
"""
import json
from typing import Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.domain.enums import OrderStatus, PaymentStatus
from app.domain.errors import NotFoundError, ValidationError
from app.domain.models import Order, utcnow
from app.domain.status import TERMINAL_STATUSES
from app.infrastructure.payments import GatewayCheck, PaymentGateway, WebhookEventKind
from .schemas import VerifyPaymentResponse, WebhookAck
from shared.core import get_logger, set_order_context

logger = get_logger(__name__, component="payments")

TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


class PaymentReconciler:
    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway

    def find_order(self, provider_order_id: str) -> Optional[Order]:
        """Orders are located by the provider's id, never by our own."""
        return self.db.scalars(select(Order).where(Order.gateway_order_id == provider_order_id)).first()

    def mark_paid(self, order: Order, provider_payment_id: Optional[str], source: str) -> bool:
        """Confirm a placed order as paid. Returns False when there was nothing to do."""
        now = utcnow()
        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status != PaymentStatus.PAID.value,
                Order.order_status == OrderStatus.PLACED.value,
            )
            .values(
                payment_status=PaymentStatus.PAID.value,
                order_status=OrderStatus.CONFIRMED.value,
                payment_id=provider_payment_id or Order.payment_id,
                confirmed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        if not applied:
            self._flag_late_capture(order, provider_payment_id, source)
        self.db.commit()
        self.db.refresh(order)
        logger.info(
            "Payment confirmed" if applied else "Payment confirmation already applied",
            extra={'extra_fields': {
                'order_id': order.id,
                'operation': 'mark_paid',
                'source': source,
                'provider_payment_id': provider_payment_id,
            }}
        )
        return applied

    def _flag_late_capture(self, order: Order, provider_payment_id: Optional[str], source: str) -> None:
        # Money captured for an order we already cancelled: it is owed back
        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.order_status == OrderStatus.CANCELLED.value,
                Order.payment_status.in_([PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]),
            )
            .values(
                payment_status=PaymentStatus.REFUND_PENDING.value,
                payment_id=provider_payment_id or Order.payment_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.warning(
                "Payment captured for a cancelled order; marked for refund",
                extra={'extra_fields': {'order_id': order.id, 'source': source}}
            )

    def mark_failed(self, order: Order, reason: str, source: str) -> bool:
        """Cancel an unpaid, non-terminal order after a payment failure."""
        now = utcnow()
        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status != PaymentStatus.PAID.value,
                Order.order_status.notin_(TERMINAL_VALUES),
            )
            .values(
                payment_status=PaymentStatus.FAILED.value,
                order_status=OrderStatus.CANCELLED.value,
                cancellation_reason=reason,
                cancelled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        self.db.commit()
        self.db.refresh(order)
        logger.info(
            "Order cancelled after payment failure" if applied else "Payment failure ignored",
            extra={'extra_fields': {'order_id': order.id, 'operation': 'mark_failed', 'source': source, 'reason': reason}}
        )
        return applied

    def handle_webhook(self, raw_body: bytes, signature: Optional[str], timestamp: Optional[str] = None) -> WebhookAck:
        if not self.gateway.verify_webhook_signature(raw_body, signature, timestamp):
            logger.warning("Webhook rejected: invalid signature", extra={'extra_fields': {'provider': self.gateway.name}})
            raise ValidationError(["Invalid webhook signature"])
        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationError(["Malformed webhook payload"])
        if not isinstance(payload, dict):
            raise ValidationError(["Malformed webhook payload"])

        event = self.gateway.parse_webhook(payload)
        context = {'provider': self.gateway.name, 'event': event.event_type, 'provider_order_id': event.provider_order_id}
        if event.kind == WebhookEventKind.IGNORED or not event.provider_order_id:
            logger.info("Webhook event ignored", extra={'extra_fields': context})
            return WebhookAck(processed=False, message="Event ignored")

        order = self.find_order(event.provider_order_id)
        if order is None:
            logger.warning("Webhook for unknown order", extra={'extra_fields': context})
            return WebhookAck(processed=False, message="Unknown order")
        set_order_context(order.id)

        if event.kind == WebhookEventKind.CAPTURED:
            applied = self.mark_paid(order, event.provider_payment_id, source="webhook")
            return WebhookAck(processed=applied, message="Payment confirmed" if applied else "Already processed")
        applied = self.mark_failed(order, "Payment failed at gateway", source="webhook")
        return WebhookAck(processed=applied, message="Order cancelled" if applied else "Already processed")

    def verify_redirect(self, params: Mapping[str, str]) -> VerifyPaymentResponse:
        result = self.gateway.verify_redirect(params)
        if not result.provider_order_id:
            raise ValidationError(["Payment order reference is missing"])
        order = self.find_order(result.provider_order_id)
        if order is None:
            raise NotFoundError("Order not found for this payment")
        set_order_context(order.id)

        if result.status == GatewayCheck.SUCCESS:
            self.mark_paid(order, result.provider_payment_id, source="redirect")
        elif result.status == GatewayCheck.FAILED:
            self.mark_failed(order, result.message or "Payment verification failed", source="redirect")

        if order.payment_status == PaymentStatus.PAID.value:
            message = "Payment successful"
        elif result.status == GatewayCheck.PENDING and order.order_status not in TERMINAL_VALUES:
            message = "Payment is pending confirmation"
        else:
            message = result.message or "Payment failed"
        return VerifyPaymentResponse(
            order_id=order.id,
            order_number=order.order_number,
            payment_status=order.payment_status,
            order_status=order.order_status,
            message=message,
        )
