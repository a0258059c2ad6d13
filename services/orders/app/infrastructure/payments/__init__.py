"""Payment gateway adapters.

One provider is active per deployment, chosen by ``PAYMENT_PROVIDER``.
"""
from functools import lru_cache
from typing import Optional

import httpx

from app.core_settings import Settings, get_settings
from .base import (
    CustomerContact,
    GatewayCheck,
    PaymentGateway,
    RedirectResult,
    SessionResult,
    WebhookEvent,
    WebhookEventKind,
)
from .cashfree import CashfreeGateway
from .razorpay import RazorpayGateway


def build_payment_gateway(settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> PaymentGateway:
    provider = settings.PAYMENT_PROVIDER.lower()
    common = {
        "currency": settings.PAYMENT_CURRENCY,
        "timeout": settings.PAYMENT_TIMEOUT_SECONDS,
        "transport": transport,
    }
    if provider == "razorpay":
        return RazorpayGateway(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            base_url=settings.RAZORPAY_API_BASE_URL,
            **common,
        )
    if provider == "cashfree":
        return CashfreeGateway(
            app_id=settings.CASHFREE_APP_ID,
            secret_key=settings.CASHFREE_SECRET_KEY,
            api_base_url=settings.CASHFREE_API_BASE_URL,
            api_version=settings.CASHFREE_API_VERSION,
            callback_base_url=settings.API_BASE_URL,
            **common,
        )
    raise ValueError(f"Unsupported PAYMENT_PROVIDER '{settings.PAYMENT_PROVIDER}'")


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    return build_payment_gateway(get_settings())


__all__ = [
    "CashfreeGateway",
    "CustomerContact",
    "GatewayCheck",
    "PaymentGateway",
    "RazorpayGateway",
    "RedirectResult",
    "SessionResult",
    "WebhookEvent",
    "WebhookEventKind",
    "build_payment_gateway",
    "get_payment_gateway",
]
