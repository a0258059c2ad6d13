from enum import Enum


class OrderStatus(str, Enum):
    PLACED = "placed"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"


class PaymentMethod(str, Enum):
    COD = "cod"
    ONLINE = "online"
    WALLET = "wallet"


class OrderType(str, Enum):
    FOOD = "food"
    GROCERY = "grocery"


class Role(str, Enum):
    CUSTOMER = "customer"
    DELIVERY_PERSON = "delivery_person"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def is_admin(self) -> bool:
        return self in (Role.ADMIN, Role.SUPER_ADMIN)


STATUS_DISPLAY = {
    OrderStatus.PLACED: "Order Placed",
    OrderStatus.CONFIRMED: "Order Confirmed",
    OrderStatus.PREPARING: "Preparing Food",
    OrderStatus.READY: "Ready for Pickup",
    OrderStatus.PICKED_UP: "Picked Up",
    OrderStatus.ON_THE_WAY: "On the Way",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}
