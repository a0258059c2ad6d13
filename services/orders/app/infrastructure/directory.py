"""Read access to the user, address and delivery-personnel records.

These records belong to neighbouring services; the order workflow only needs
lookups and the delivery-person assignment stamp. Profiles and addresses come
from the users service when ``USERS_SERVICE_URL`` is set, otherwise from the
local directory tables. Delivery persons are always local since assignment
stamps their rows.
"""
from datetime import datetime
from typing import Any, Optional, Union

import httpx
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core_settings import Settings
from app.domain.errors import DirectoryUnavailableError
from app.domain.models import Address, DeliveryPerson, DeliveryPersonPincode, User
from shared.core import get_logger

logger = get_logger(__name__, component="directory")

ADDRESS_FIELDS = (
    "title", "address_line1", "address_line2", "landmark", "area", "city", "state",
    "country", "latitude", "longitude", "contact_name", "contact_phone", "delivery_instructions",
)


class UserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)


class AddressBook:
    def __init__(self, db: Session):
        self.db = db

    def get(self, address_id: str, user_id: Optional[str] = None) -> Optional[Address]:
        stmt = select(Address).where(Address.id == address_id, Address.is_active.is_(True))
        if user_id is not None:
            stmt = stmt.where(Address.user_id == user_id)
        return self.db.scalars(stmt).first()


class DeliveryPersonDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get(self, delivery_person_id: str) -> Optional[DeliveryPerson]:
        return self.db.get(DeliveryPerson, delivery_person_id)

    def active_for_pincode(self, pincode: str) -> list[DeliveryPerson]:
        stmt = (
            select(DeliveryPerson)
            .join(DeliveryPersonPincode)
            .where(DeliveryPersonPincode.pincode == pincode, DeliveryPerson.is_active.is_(True))
            .order_by(DeliveryPerson.id)
        )
        return list(self.db.scalars(stmt).unique())

    def stamp_assignment(self, delivery_person_id: str, when: datetime) -> None:
        self.db.execute(
            update(DeliveryPerson)
            .where(DeliveryPerson.id == delivery_person_id)
            .values(last_assigned_at=when)
        )

    def restore_assignment(self, delivery_person_id: str, stamped_at: datetime, previous: Optional[datetime]) -> None:
        """Put back ``previous`` unless the person has been stamped again since ``stamped_at``."""
        self.db.execute(
            update(DeliveryPerson)
            .where(DeliveryPerson.id == delivery_person_id, DeliveryPerson.last_assigned_at == stamped_at)
            .values(last_assigned_at=previous)
        )


class UsersServiceClient:
    """GET-only client for the users service."""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def fetch(self, path: str) -> Optional[dict[str, Any]]:
        """Decoded JSON object at ``path``, or None on 404."""
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.get(path)
        except httpx.HTTPError as e:
            logger.warning(
                "Users service unreachable",
                extra={'extra_fields': {'path': path, 'error': str(e)}}
            )
            raise DirectoryUnavailableError("Users service unavailable")

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Users service lookup failed",
                extra={'extra_fields': {'path': path, 'status_code': response.status_code}}
            )
            raise DirectoryUnavailableError(f"Users service returned {response.status_code}")
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise DirectoryUnavailableError("Users service returned an unreadable response")
        return body


class HttpUserDirectory:
    def __init__(self, client: UsersServiceClient):
        self.client = client

    def get(self, user_id: str) -> Optional[User]:
        body = self.client.fetch(f"/users/{user_id}")
        if body is None:
            return None
        return User(
            id=str(body.get("id") or user_id),
            display_name=body.get("display_name") or body.get("name"),
            email=body.get("email"),
            phone_number=body.get("phone_number") or body.get("phone"),
            is_active=body.get("is_active", True),
        )


class HttpAddressBook:
    def __init__(self, client: UsersServiceClient):
        self.client = client

    def get(self, address_id: str, user_id: Optional[str] = None) -> Optional[Address]:
        path = f"/users/{user_id}/addresses/{address_id}" if user_id else f"/addresses/{address_id}"
        body = self.client.fetch(path)
        if body is None or body.get("is_active") is False:
            return None
        owner = body.get("user_id") or user_id
        if user_id is not None and owner != user_id:
            return None
        pincode = body.get("pincode")
        return Address(
            id=str(body.get("id") or address_id),
            user_id=owner,
            pincode=str(pincode) if pincode is not None else None,
            is_active=True,
            **{field: body.get(field) for field in ADDRESS_FIELDS},
        )


def profile_directories(
    db: Session,
    settings: Settings,
    transport: Optional[httpx.BaseTransport] = None,
) -> tuple[Union[UserDirectory, HttpUserDirectory], Union[AddressBook, HttpAddressBook]]:
    if not settings.USERS_SERVICE_URL:
        return UserDirectory(db), AddressBook(db)
    client = UsersServiceClient(settings.USERS_SERVICE_URL, settings.DIRECTORY_TIMEOUT_SECONDS, transport)
    return HttpUserDirectory(client), HttpAddressBook(client)
