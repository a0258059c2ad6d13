from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.application.service import OrderService, Principal
from app.auth_local import decode_access_token
from app.core_settings import get_settings
from app.domain.enums import Role
from app.infrastructure.db import get_db
from app.infrastructure.payments import PaymentGateway, get_payment_gateway
from shared.core import set_request_context

BEARER_PREFIX = "Bearer "


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_order_service(db: Session = Depends(get_db), gateway: PaymentGateway = Depends(get_gateway)) -> OrderService:
    return OrderService(db, get_settings(), gateway)


async def get_principal(request: Request) -> Principal:
    # Must stay async: context set inside a threadpool dependency never reaches the endpoint
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = decode_access_token(auth_header.split(" ", 1)[1])
    if not token_data or not token_data.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        role = Role(token_data.get("role", Role.CUSTOMER.value))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token role")
    set_request_context(user_id=token_data["sub"])
    return Principal(subject=token_data["sub"], role=role)


def require_customer(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != Role.CUSTOMER:
        raise HTTPException(status_code=403, detail="Customer access required")
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal


def require_delivery_person(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != Role.DELIVERY_PERSON:
        raise HTTPException(status_code=403, detail="Delivery personnel access required")
    return principal
