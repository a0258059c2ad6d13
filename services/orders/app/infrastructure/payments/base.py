"""Provider-agnostic payment gateway interface.

Amounts cross this boundary in the system's decimal currency unit. Providers
that bill in subunits convert inside their own adapter.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Mapping, Optional

import httpx
from pydantic import BaseModel

from app.domain.errors import GatewayError, ValidationError
from shared.core import get_logger

logger = get_logger(__name__, component="payments")


class GatewayCheck(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"


class WebhookEventKind(str, Enum):
    CAPTURED = "captured"
    FAILED = "failed"
    IGNORED = "ignored"


class CustomerContact(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class SessionResult(BaseModel):
    success: bool
    provider_session_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "SessionResult":
        return cls(success=False, message=message)


class WebhookEvent(BaseModel):
    kind: WebhookEventKind
    event_type: Optional[str] = None
    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None


class RedirectResult(BaseModel):
    status: GatewayCheck
    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    message: Optional[str] = None


def webhook_section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Nested webhook object, or an empty mapping when absent.

    Raises ValidationError when the provider sent something other than an object.
    """
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(["Malformed webhook payload"])
    return value


def webhook_text(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


class PaymentGateway(ABC):
    name: str = ""
    signature_header: str = ""
    timestamp_header: Optional[str] = None

    def __init__(
        self,
        base_url: str,
        currency: str = "INR",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout
        self.transport = transport

    @abstractmethod
    def create_session(self, internal_order_id: int, amount: float, customer: CustomerContact) -> SessionResult:
        """Create the remote order/session. Never raises; failures come back as ``success=False``."""

    @abstractmethod
    def verify_status(self, provider_order_id: str) -> GatewayCheck:
        """Poll the provider for the payment state of an order. Raises GatewayError on I/O failure."""

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str], timestamp: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        ...

    @abstractmethod
    def verify_redirect(self, params: Mapping[str, str]) -> RedirectResult:
        ...

    def _headers(self) -> dict:
        return {"Content-Type": "application/json"}

    def _auth(self) -> Optional[httpx.Auth]:
        return None

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Issue a provider call and return its decoded JSON body.

        Timeouts, transport errors, non-2xx replies and undecodable bodies all
        surface as GatewayError.
        """
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers(),
                auth=self._auth(),
                transport=self.transport,
            ) as client:
                response = client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayError(f"{self.name} request timed out: {e}")
        except httpx.HTTPError as e:
            raise GatewayError(f"{self.name} request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None
        if response.status_code >= 400:
            raise GatewayError(f"{self.name} returned {response.status_code}: {self._error_message(body)}")
        if body is None:
            raise GatewayError(f"{self.name} returned an unreadable response")
        return body

    @staticmethod
    def _error_message(body: Any) -> str:
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("description"):
                return str(error["description"])
            if body.get("message"):
                return str(body["message"])
        return "unknown error"
