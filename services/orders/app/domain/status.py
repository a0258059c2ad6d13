"""Order status state machine.

placed -> confirmed -> preparing -> ready -> picked_up -> on_the_way -> delivered,
with cancelled reachable from every non-terminal state.
"""
from typing import Optional

from app.domain.enums import OrderStatus, PaymentMethod, PaymentStatus, Role
from app.domain.errors import AuthorizationError, ConflictError, ValidationError

PROGRESSION = [
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.PICKED_UP,
    OrderStatus.ON_THE_WAY,
    OrderStatus.DELIVERED,
]
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})
NON_TERMINAL_STATUSES = frozenset(s for s in OrderStatus if s not in TERMINAL_STATUSES)
CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PLACED, OrderStatus.CONFIRMED})
DELIVERY_PERSON_TARGETS = frozenset({OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY, OrderStatus.DELIVERED})

# Column stamped when an order enters the status
STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.READY: "prepared_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise ValidationError([f"Invalid status '{value}'. Valid statuses: {valid}"])


def is_terminal(status: str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def ensure_transition(
    current: str,
    target: OrderStatus,
    actor: Role,
    payment_method: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> None:
    """Raise unless ``actor`` may move an order from ``current`` to ``target``."""
    current = OrderStatus(current)
    if current in TERMINAL_STATUSES:
        raise ConflictError(f"Order is already {current.value}; no further status changes are allowed")
    if target == current:
        raise ConflictError(f"Order is already in status '{current.value}'")

    if target == OrderStatus.CANCELLED:
        if actor == Role.DELIVERY_PERSON:
            raise AuthorizationError("Delivery personnel cannot cancel orders")
        if actor == Role.CUSTOMER and current not in CUSTOMER_CANCELLABLE:
            raise ConflictError(
                "Order cannot be cancelled. It is already being prepared or is out for delivery."
            )
        return

    if actor == Role.CUSTOMER:
        raise AuthorizationError("Customers can only cancel their orders")
    if actor == Role.DELIVERY_PERSON and target not in DELIVERY_PERSON_TARGETS:
        allowed = ", ".join(s.value for s in PROGRESSION if s in DELIVERY_PERSON_TARGETS)
        raise AuthorizationError(f"Delivery personnel may only set: {allowed}")
    if PROGRESSION.index(target) < PROGRESSION.index(current):
        raise ConflictError(f"Cannot move order back from '{current.value}' to '{target.value}'")
    if payment_method is not None and payment_method != PaymentMethod.COD.value \
            and payment_status != PaymentStatus.PAID.value:
        raise ConflictError(
            f"Order paid via {payment_method} cannot move to '{target.value}' before payment is confirmed"
        )
