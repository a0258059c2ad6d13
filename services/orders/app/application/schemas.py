from pydantic import BaseModel, Field
from datetime import datetime, date
from typing import Optional

from app.domain.enums import OrderStatus, OrderType, PaymentMethod


class OrderItemCreate(BaseModel):
    menu_item_id: str
    name: str
    price: float
    quantity: int
    is_veg: Optional[bool] = None
    image_url: Optional[str] = None


class OrderCreate(BaseModel):
    # Enum-like fields stay plain strings so bad values are reported with the other rule violations
    payment_method: str
    delivery_address_id: str
    items: list[OrderItemCreate]
    order_type: str = OrderType.FOOD.value
    subtotal: Optional[float] = None
    delivery_fee: Optional[float] = None
    tax_amount: Optional[float] = None
    discount_amount: float = 0
    total_amount: Optional[float] = None
    order_date: Optional[date] = None
    slot_timing: Optional[str] = None
    special_instructions: Optional[str] = None


class CancelRequest(BaseModel):
    reason: str = ""


class StatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None


class AssignDeliveryPerson(BaseModel):
    delivery_person_id: str
    delivery_person_name: Optional[str] = None
    delivery_person_phone: Optional[str] = None
    mark_picked_up: bool = False


class AddressSnapshot(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    area: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = "India"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    delivery_instructions: Optional[str] = None


class OrderItemRead(BaseModel):
    id: int
    menu_item_id: str
    name: str
    unit_price: float
    quantity: int
    is_veg: Optional[bool] = None
    image_url: Optional[str] = None

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: int
    order_number: str
    order_type: str
    user_id: str
    user_name: str
    user_email: Optional[str] = None
    user_phone: Optional[str] = None
    delivery_address: AddressSnapshot
    delivery_distance_km: Optional[float] = None
    items: list[OrderItemRead]
    subtotal: float
    delivery_fee: float
    tax_amount: float
    discount_amount: float
    total_amount: float
    payment_method: PaymentMethod
    payment_status: str
    gateway_provider: Optional[str] = None
    gateway_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    order_status: OrderStatus
    status_display: str
    estimated_delivery_time: Optional[datetime] = None
    delivery_person_id: Optional[str] = None
    delivery_person_name: Optional[str] = None
    delivery_person_phone: Optional[str] = None
    assigned_admin_id: Optional[str] = None
    admin_notes: str = ""
    special_instructions: Optional[str] = None
    order_date: Optional[date] = None
    slot_timing: Optional[str] = None
    placed_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    cancellation_reason: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class PaymentSessionRead(BaseModel):
    """Handed to the client so it can complete checkout with the provider."""
    provider: str
    provider_order_id: str
    provider_session_id: Optional[str] = None
    amount: float
    currency: str


class PlaceOrderResponse(BaseModel):
    message: str
    order: OrderRead
    payment: Optional[PaymentSessionRead] = None


class OrderActionResponse(BaseModel):
    message: str
    order_id: int
    order_status: OrderStatus
    payment_status: str


class VerifyPaymentResponse(BaseModel):
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    payment_status: str
    order_status: Optional[str] = None
    message: str


class WebhookAck(BaseModel):
    received: bool = True
    processed: bool
    message: str


class OrderFilters(BaseModel):
    status: Optional[OrderStatus] = None
    payment_method: Optional[PaymentMethod] = None
    pincode: Optional[str] = None
    assigned_admin_id: Optional[str] = None
    delivery_person_id: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = Field(50, ge=1, le=500)


class TodaySummary(BaseModel):
    total: int
    revenue: float
    by_status: dict[str, int]


class ActiveSummary(BaseModel):
    pending: int
    preparing: int
    delivery: int
    completed: int
    cancelled: int


class OrderSummary(BaseModel):
    today: TodaySummary
    active: ActiveSummary
    by_pincode: dict[str, int]
