from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import Optional

from app.api.deps import get_order_service, require_admin
from app.application.service import OrderService, Principal
from app.application.schemas import (
    AssignDeliveryPerson,
    CancelRequest,
    OrderActionResponse,
    OrderFilters,
    OrderRead,
    OrderSummary,
    StatusUpdate,
)
from app.domain.enums import OrderStatus, PaymentMethod

router = APIRouter(prefix="/orders/admin", tags=["orders-admin"])


@router.get("", response_model=list[OrderRead])
def list_orders(
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
    status: Optional[OrderStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    pincode: Optional[str] = Query(None, max_length=12),
    assigned_admin_id: Optional[str] = Query(None),
    delivery_person_id: Optional[str] = Query(None),
    from_date: Optional[datetime] = Query(None, description="Created at or after"),
    to_date: Optional[datetime] = Query(None, description="Created before"),
    limit: int = Query(50, ge=1, le=500),
):
    filters = OrderFilters(
        status=status,
        payment_method=payment_method,
        pincode=pincode,
        assigned_admin_id=assigned_admin_id,
        delivery_person_id=delivery_person_id,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
    )
    return service.list_all(filters)


@router.get("/summary", response_model=OrderSummary)
def order_summary(admin: Principal = Depends(require_admin), service: OrderService = Depends(get_order_service)):
    return service.summary()


@router.get("/pincode/{pincode}", response_model=list[OrderRead])
def orders_by_pincode(
    pincode: str,
    status: Optional[OrderStatus] = Query(None),
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return service.list_by_pincode(pincode, status)


@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: int,
    payload: StatusUpdate,
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return service.update_status(order_id, payload.status, admin, payload.notes)


@router.patch("/{order_id}/assign", response_model=OrderRead)
def assign_delivery_person(
    order_id: int,
    payload: AssignDeliveryPerson,
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return service.assign_delivery_person(order_id, payload, admin)


@router.patch("/{order_id}/cancel", response_model=OrderActionResponse)
def admin_cancel_order(
    order_id: int,
    payload: CancelRequest,
    admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    order = service.cancel(order_id, admin, payload.reason)
    return OrderActionResponse(
        message="Order cancelled successfully.",
        order_id=order.id,
        order_status=order.order_status,
        payment_status=order.payment_status,
    )
