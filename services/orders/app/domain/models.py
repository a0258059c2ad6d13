from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Date, Boolean, Text, Float, JSON
from datetime import datetime, date, timezone
from typing import Optional

from app.domain.enums import OrderStatus, PaymentStatus, STATUS_DISPLAY

Money = Numeric(10, 2, asdecimal=False)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    order_type: Mapped[str] = mapped_column(String(20))
    # Customer snapshot (captured at placement, never re-joined)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    user_name: Mapped[str] = mapped_column(String(200))
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # Address snapshot
    delivery_address: Mapped[dict] = mapped_column(JSON)
    delivery_pincode: Mapped[str] = mapped_column(String(12), index=True)
    delivery_distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # Pricing
    subtotal: Mapped[float] = mapped_column(Money)
    delivery_fee: Mapped[float] = mapped_column(Money, default=0)
    tax_amount: Mapped[float] = mapped_column(Money, default=0)
    discount_amount: Mapped[float] = mapped_column(Money, default=0)
    total_amount: Mapped[float] = mapped_column(Money)
    # Payment
    payment_method: Mapped[str] = mapped_column(String(20))
    payment_status: Mapped[str] = mapped_column(String(30), default=PaymentStatus.PENDING.value)
    gateway_provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True, index=True)
    gateway_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # Status and delivery
    order_status: Mapped[str] = mapped_column(String(30), index=True, default=OrderStatus.PLACED.value)
    estimated_delivery_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivery_person_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    delivery_person_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    delivery_person_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    assigned_admin_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    admin_notes: Mapped[str] = mapped_column(Text, default="")
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Scheduling (slotted orders only)
    order_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    slot_timing: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    # Lifecycle timestamps
    placed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    prepared_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_rating: Mapped[Optional[int]] = mapped_column(nullable=True)
    customer_review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    @property
    def status_display(self) -> str:
        try:
            return STATUS_DISPLAY[OrderStatus(self.order_status)]
        except ValueError:
            return self.order_status


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    # Catalog snapshot (price and name as they were at placement)
    menu_item_id: Mapped[str] = mapped_column(String(128))
    name: Mapped[str] = mapped_column(String(200))
    unit_price: Mapped[float] = mapped_column(Money)
    quantity: Mapped[int]
    is_veg: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    order: Mapped[Order] = relationship("Order", back_populates="items")


# Collaborator records. Owned by the user, address and delivery-personnel
# services; this service only reads them and stamps assignment times.

class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Address(Base):
    __tablename__ = "addresses"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    title: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address_line1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    landmark: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    area: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(12), nullable=True)
    country: Mapped[str] = mapped_column(String(100), default="India")
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    delivery_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class DeliveryPerson(Base):
    __tablename__ = "delivery_persons"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    pincodes: Mapped[list["DeliveryPersonPincode"]] = relationship(
        "DeliveryPersonPincode", back_populates="delivery_person", cascade="all, delete-orphan"
    )


class DeliveryPersonPincode(Base):
    __tablename__ = "delivery_person_pincodes"
    delivery_person_id: Mapped[str] = mapped_column(ForeignKey("delivery_persons.id"), primary_key=True)
    pincode: Mapped[str] = mapped_column(String(12), primary_key=True, index=True)
    delivery_person: Mapped[DeliveryPerson] = relationship("DeliveryPerson", back_populates="pincodes")
