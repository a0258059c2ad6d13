import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"

from datetime import datetime
from typing import Any, Mapping, Optional

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_gateway
from app.auth_local import create_access_token
from app.core_settings import get_settings
from app.domain.models import Address, Base, DeliveryPerson, DeliveryPersonPincode, User
from app.infrastructure.db import SessionLocal, engine
from app.infrastructure.payments import (
    GatewayCheck,
    PaymentGateway,
    RedirectResult,
    SessionResult,
    WebhookEvent,
    WebhookEventKind,
)
from app.main import app

CUSTOMER_ID = "user-1"
OTHER_CUSTOMER_ID = "user-2"
ADDRESS_ID = "addr-1"
FAR_ADDRESS_ID = "addr-far"
NO_RIDER_ADDRESS_ID = "addr-no-rider"
PINCODE = "600097"


class FakeGateway(PaymentGateway):
    """In-process provider. Webhooks are 'signed' with a fixed token."""

    name = "fake"
    signature_header = "X-Fake-Signature"
    SIGNATURE = "valid-signature"

    def __init__(self):
        super().__init__("http://gateway.test")
        self.fail_sessions = False
        self.raise_on_session = False
        self.redirect_status = GatewayCheck.SUCCESS
        self.sessions = []

    def create_session(self, internal_order_id, amount, customer):
        if self.raise_on_session:
            raise RuntimeError("connection reset")
        if self.fail_sessions:
            return SessionResult.failure("Payment gateway error: provider unavailable")
        self.sessions.append((internal_order_id, amount, customer))
        return SessionResult(
            success=True,
            provider_order_id=f"fake_order_{internal_order_id}",
            provider_session_id=f"fake_session_{internal_order_id}",
            amount=amount,
            currency="INR",
        )

    def verify_status(self, provider_order_id):
        return self.redirect_status

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str], timestamp: Optional[str] = None) -> bool:
        return signature == self.SIGNATURE

    def parse_webhook(self, payload: Mapping[str, Any]) -> WebhookEvent:
        kinds = {"captured": WebhookEventKind.CAPTURED, "failed": WebhookEventKind.FAILED}
        return WebhookEvent(
            kind=kinds.get(payload.get("event"), WebhookEventKind.IGNORED),
            event_type=payload.get("event"),
            provider_order_id=payload.get("order_id"),
            provider_payment_id=payload.get("payment_id"),
        )

    def verify_redirect(self, params: Mapping[str, str]) -> RedirectResult:
        order_id = params.get("order_id")
        if not order_id:
            return RedirectResult(status=GatewayCheck.FAILED, message="Payment verification parameters missing")
        return RedirectResult(
            status=self.redirect_status,
            provider_order_id=order_id,
            provider_payment_id=params.get("payment_id"),
            message="Payment failed at gateway" if self.redirect_status == GatewayCheck.FAILED else None,
        )


def seed(db):
    db.add_all([
        User(id=CUSTOMER_ID, display_name="Asha", email="asha@example.com", phone_number="9000000001"),
        User(id=OTHER_CUSTOMER_ID, display_name="Ravi", email="ravi@example.com", phone_number="9000000002"),
        Address(
            id=ADDRESS_ID,
            user_id=CUSTOMER_ID,
            title="Home",
            address_line1="12 Lake View Road",
            area="Thoraipakkam",
            city="Chennai",
            state="Tamil Nadu",
            pincode=PINCODE,
            latitude=12.98,
            longitude=80.24,
        ),
        Address(
            id=FAR_ADDRESS_ID,
            user_id=CUSTOMER_ID,
            address_line1="1 Far Away Street",
            city="Vellore",
            pincode="632001",
            latitude=12.9165,
            longitude=79.1325,
        ),
        Address(
            id=NO_RIDER_ADDRESS_ID,
            user_id=CUSTOMER_ID,
            address_line1="5 Beach Road",
            city="Chennai",
            pincode="600041",
            latitude=12.99,
            longitude=80.26,
        ),
        DeliveryPerson(
            id="rider-busy",
            display_name="Kumar",
            phone_number="9100000001",
            last_assigned_at=datetime(2026, 1, 2, 10, 0),
        ),
        DeliveryPerson(
            id="rider-idle",
            display_name="Selvi",
            phone_number="9100000002",
            last_assigned_at=datetime(2026, 1, 1, 10, 0),
        ),
        DeliveryPerson(id="rider-off", display_name="Off Duty", phone_number="9100000003", is_active=False),
    ])
    db.flush()
    db.add_all([
        DeliveryPersonPincode(delivery_person_id="rider-busy", pincode=PINCODE),
        DeliveryPersonPincode(delivery_person_id="rider-idle", pincode=PINCODE),
        DeliveryPersonPincode(delivery_person_id="rider-off", pincode=PINCODE),
    ])
    db.commit()


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(engine)
    db = SessionLocal()
    seed(db)
    db.close()
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def client(gateway):
    return TestClient(app)


def auth(subject: str, role: str = "customer") -> dict:
    return {"Authorization": f"Bearer {create_access_token(subject, role=role)}"}


def order_payload(**overrides) -> dict:
    payload = {
        "payment_method": "cod",
        "delivery_address_id": ADDRESS_ID,
        "items": [
            {"menu_item_id": "m-1", "name": "Masala Dosa", "price": 100, "quantity": 1, "is_veg": True},
            {"menu_item_id": "m-2", "name": "Idli", "price": 50, "quantity": 2, "is_veg": True},
        ],
        "subtotal": 200,
        "delivery_fee": 30,
        "tax_amount": 10,
        "discount_amount": 0,
        "total_amount": 240,
    }
    payload.update(overrides)
    return payload
