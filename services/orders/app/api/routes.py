from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from app.api.deps import get_order_service, get_principal, require_customer, require_delivery_person
from app.application.service import OrderService, Principal
from app.application.schemas import (
    CancelRequest,
    OrderActionResponse,
    OrderCreate,
    OrderRead,
    PaymentSessionRead,
    PlaceOrderResponse,
    StatusUpdate,
)
from app.domain.enums import OrderStatus, Role

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=PlaceOrderResponse, status_code=201)
def place_order(
    payload: OrderCreate,
    principal: Principal = Depends(require_customer),
    service: OrderService = Depends(get_order_service),
):
    """Place an order. Online orders come back with the gateway session to complete checkout."""
    result = service.place_order(principal.subject, payload)
    payment = None
    if result.session is not None:
        payment = PaymentSessionRead(
            provider=service.gateway.name,
            provider_order_id=result.session.provider_order_id,
            provider_session_id=result.session.provider_session_id,
            amount=result.session.amount if result.session.amount is not None else result.order.total_amount,
            currency=result.session.currency or service.settings.PAYMENT_CURRENCY,
        )
    return PlaceOrderResponse(message=result.message, order=OrderRead.model_validate(result.order), payment=payment)


@router.get("/mine", response_model=list[OrderRead])
def list_my_orders(
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of records to return"),
    pincode: Optional[str] = Query(None, max_length=12, description="Delivery personnel: filter by pincode"),
    status: Optional[OrderStatus] = Query(None, description="Delivery personnel: filter by status"),
):
    """The caller's orders, newest first. Delivery personnel see the orders assigned to them."""
    if principal.role == Role.CUSTOMER:
        return service.list_for_user(principal.subject, skip=skip, limit=limit)
    if principal.role == Role.DELIVERY_PERSON:
        return service.list_for_delivery_person(principal.subject, pincode, status, skip=skip, limit=limit)
    raise HTTPException(status_code=403, detail="Use the admin order listing")


@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: int,
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    return service.get_for(order_id, principal)


@router.put("/{order_id}/cancel", response_model=OrderActionResponse)
def cancel_order(
    order_id: int,
    payload: CancelRequest,
    principal: Principal = Depends(require_customer),
    service: OrderService = Depends(get_order_service),
):
    order = service.cancel(order_id, principal, payload.reason)
    return OrderActionResponse(
        message="Order cancelled successfully.",
        order_id=order.id,
        order_status=order.order_status,
        payment_status=order.payment_status,
    )


@router.patch("/{order_id}/status", response_model=OrderRead)
def update_delivery_status(
    order_id: int,
    payload: StatusUpdate,
    principal: Principal = Depends(require_delivery_person),
    service: OrderService = Depends(get_order_service),
):
    """Delivery personnel: picked_up, on_the_way or delivered on an assigned order."""
    return service.update_status(order_id, payload.status, principal)
