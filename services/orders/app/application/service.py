from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from datetime import datetime, timedelta
from dataclasses import dataclass
from typing import Optional, List
import math
import random
import time

from app.core_settings import Settings, get_settings
from app.domain.enums import OrderStatus, OrderType, PaymentMethod, PaymentStatus, Role
from app.domain.errors import (
    AuthorizationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.domain.geo import estimate_delivery_time, haversine_km, parse_slot_start
from app.domain.models import Address, Order, OrderItem, User, utcnow
from app.domain.status import STATUS_TIMESTAMPS, TERMINAL_STATUSES, ensure_transition, parse_status
from app.infrastructure.directory import DeliveryPersonDirectory, profile_directories
from app.infrastructure.payments import CustomerContact, PaymentGateway, SessionResult
from .assignment import DeliveryAssigner
from .schemas import (
    ActiveSummary,
    AssignDeliveryPerson,
    OrderCreate,
    OrderFilters,
    OrderSummary,
    TodaySummary,
)
from shared.core import get_logger, set_order_context

logger = get_logger(__name__)

AMOUNT_TOLERANCE = 0.01
GATEWAY_INIT_FAILED = "Gateway session initialization failed"


@dataclass
class Principal:
    """Authenticated caller."""
    subject: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin


@dataclass
class PlacementResult:
    order: Order
    message: str
    session: Optional[SessionResult] = None


class OrderService:
    def __init__(self, db: Session, settings: Optional[Settings] = None, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.users, self.addresses = profile_directories(db, self.settings)
        self.delivery_persons = DeliveryPersonDirectory(db)
        self.assigner = DeliveryAssigner(db)

    def _generate_order_number(self) -> str:
        """KS + last six digits of the millisecond clock + three random digits."""
        timestamp = str(int(time.time() * 1000))[-6:]
        return f"KS{timestamp}{random.randint(0, 999):03d}"

    # ------------------------------------------------------------------ placement

    def place_order(self, user_id: str, data: OrderCreate) -> PlacementResult:
        if data.payment_method == PaymentMethod.COD.value:
            return self.place_cod_order(user_id, data)
        if data.payment_method == PaymentMethod.ONLINE.value:
            return self.place_online_order(user_id, data)
        if data.payment_method == PaymentMethod.WALLET.value:
            raise ValidationError(["Wallet payments are not available yet"])
        # Unknown method: report it alongside every other rule the request breaks
        user, address = self._resolve_snapshots(user_id, data)
        self._build_order(user, address, data)
        raise ValidationError(["Invalid payment method"])

    def place_cod_order(self, user_id: str, data: OrderCreate) -> PlacementResult:
        user, address = self._resolve_snapshots(user_id, data)
        order = self._build_order(user, address, data)
        self._auto_assign(order)
        self._persist_new(order)
        logger.info(
            f"COD order {order.order_number} placed",
            extra={'extra_fields': {'order_id': order.id, 'operation': 'place_cod_order', 'total': order.total_amount}}
        )
        return PlacementResult(order=order, message="COD order placed successfully.")

    def place_online_order(self, user_id: str, data: OrderCreate) -> PlacementResult:
        if self.gateway is None:
            raise GatewayError("Payment gateway error: no payment provider configured")
        user, address = self._resolve_snapshots(user_id, data)
        order = self._build_order(user, address, data)
        order.gateway_provider = self.gateway.name
        self._auto_assign(order)
        self._persist_new(order)

        contact = CustomerContact(
            user_id=order.user_id, name=order.user_name, email=order.user_email, phone=order.user_phone
        )
        try:
            session = self.gateway.create_session(order.id, order.total_amount, contact)
        except Exception as e:
            logger.error(
                "Payment session creation raised",
                exc_info=True,
                extra={'extra_fields': {'order_id': order.id, 'operation': 'create_session'}}
            )
            session = SessionResult.failure(f"Payment gateway error: {e}")

        if not session.success or not session.provider_order_id:
            self._compensate_provisional(order, session.message)
            raise GatewayError(session.message or f"Payment gateway error: {GATEWAY_INIT_FAILED}", order_id=order.id)

        try:
            self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.gateway_order_id.is_(None))
                .values(
                    gateway_order_id=session.provider_order_id,
                    gateway_session_id=session.provider_session_id,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Failed to stamp gateway identifiers",
                exc_info=True,
                extra={'extra_fields': {'order_id': order.id, 'provider_order_id': session.provider_order_id}}
            )
            self._compensate_provisional(order, "could not record gateway session")
            raise PersistenceError("Failed to record payment session")
        self.db.refresh(order)

        logger.info(
            f"Online order {order.order_number} awaiting payment",
            extra={'extra_fields': {
                'order_id': order.id,
                'operation': 'place_online_order',
                'provider': self.gateway.name,
                'provider_order_id': session.provider_order_id,
            }}
        )
        return PlacementResult(order=order, message="Order created. Complete payment to confirm.", session=session)

    def _compensate_provisional(self, order: Order, detail: Optional[str]) -> None:
        """Cancel a provisional order whose gateway step failed and free its delivery person."""
        now = utcnow()
        delivery_person_id = order.delivery_person_id
        try:
            result = self.db.execute(
                update(Order)
                .where(
                    Order.id == order.id,
                    Order.order_status == OrderStatus.PLACED.value,
                    Order.payment_status == PaymentStatus.PENDING.value,
                )
                .values(
                    order_status=OrderStatus.CANCELLED.value,
                    payment_status=PaymentStatus.FAILED.value,
                    cancellation_reason=GATEWAY_INIT_FAILED,
                    delivery_person_id=None,
                    delivery_person_name=None,
                    delivery_person_phone=None,
                    cancelled_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1 and delivery_person_id:
                self.assigner.release(delivery_person_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Failed to cancel provisional order",
                exc_info=True,
                extra={'extra_fields': {'order_id': order.id, 'operation': 'compensate_provisional'}}
            )
            raise PersistenceError("Failed to cancel provisional order")
        logger.warning(
            "Provisional order cancelled after gateway failure",
            extra={'extra_fields': {'order_id': order.id, 'operation': 'compensate_provisional', 'detail': detail}}
        )

    def _resolve_snapshots(self, user_id: str, data: OrderCreate) -> tuple[User, Address]:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        address = self.addresses.get(data.delivery_address_id, user_id=user_id)
        if address is None:
            raise NotFoundError("Delivery address not found.")
        return user, address

    def _address_snapshot(self, user: User, address: Address) -> dict:
        return {
            "id": address.id,
            "title": address.title,
            "address_line1": address.address_line1,
            "address_line2": address.address_line2,
            "landmark": address.landmark,
            "area": address.area,
            "city": address.city,
            "state": address.state,
            "pincode": str(address.pincode) if address.pincode is not None else None,
            "country": address.country or "India",
            "latitude": address.latitude,
            "longitude": address.longitude,
            "contact_name": address.contact_name or user.display_name,
            "contact_phone": address.contact_phone or user.phone_number,
            "delivery_instructions": address.delivery_instructions,
        }

    def _collect_request_errors(self, data: OrderCreate) -> List[str]:
        errors = []
        if data.payment_method not in {m.value for m in PaymentMethod}:
            errors.append("Invalid payment method")
        if data.order_type not in {t.value for t in OrderType}:
            errors.append("Invalid order type")
        if not data.items:
            errors.append("Order items are required")
        for index, item in enumerate(data.items, start=1):
            if not item.menu_item_id:
                errors.append(f"Item {index}: Menu item ID is required")
            if not item.name:
                errors.append(f"Item {index}: Name is required")
            if item.price is None or not math.isfinite(item.price) or item.price <= 0:
                errors.append(f"Item {index}: Valid price is required")
            if item.quantity is None or item.quantity <= 0:
                errors.append(f"Item {index}: Valid quantity is required")
        for field in ("subtotal", "delivery_fee", "tax_amount", "discount_amount"):
            value = getattr(data, field)
            if value is None:
                continue
            if not math.isfinite(value):
                errors.append(f"{field} must be a finite amount")
            elif value < 0:
                errors.append(f"{field} cannot be negative")
        if data.slot_timing:
            try:
                parse_slot_start(data.slot_timing)
            except ValueError:
                errors.append("Slot timing must look like 'HH:MM - HH:MM'")
        return errors

    def _build_order(self, user: User, address: Address, data: OrderCreate) -> Order:
        """Validate the request against the order rules and build an unsaved Order."""
        s = self.settings
        errors = self._collect_request_errors(data)
        snapshot = self._address_snapshot(user, address)

        if not snapshot["address_line1"]:
            errors.append("Address line 1 is required")
        if not snapshot["pincode"]:
            errors.append("Pincode is required")
        distance = None
        if snapshot["latitude"] is None or snapshot["longitude"] is None:
            errors.append("Address coordinates are required")
        else:
            distance = haversine_km(s.HUB_LATITUDE, s.HUB_LONGITUDE, snapshot["latitude"], snapshot["longitude"])
            if distance > s.MAX_DELIVERY_RADIUS_KM:
                errors.append(
                    f"Delivery not available to this location. Distance: {distance:.2f}km "
                    f"exceeds our {s.MAX_DELIVERY_RADIUS_KM:g}km delivery radius."
                )

        items_total = round(sum(i.price * i.quantity for i in data.items if i.price and i.quantity), 2)
        subtotal = data.subtotal if data.subtotal is not None else items_total
        if abs(subtotal - items_total) > AMOUNT_TOLERANCE:
            errors.append(f"Subtotal {subtotal:.2f} does not match line items total {items_total:.2f}")
        if data.delivery_fee is not None:
            delivery_fee = data.delivery_fee
        elif distance is not None and distance > s.FAR_DELIVERY_THRESHOLD_KM:
            delivery_fee = s.FAR_DELIVERY_FEE
        else:
            delivery_fee = s.NEAR_DELIVERY_FEE
        tax_amount = data.tax_amount if data.tax_amount is not None else round(subtotal * s.TAX_RATE, 2)
        discount = data.discount_amount or 0
        expected_total = round(subtotal + delivery_fee + tax_amount - discount, 2)
        total = data.total_amount if data.total_amount is not None else expected_total
        # NaN compares false against everything, so it must be caught explicitly
        if not math.isfinite(total) or total <= 0:
            errors.append("Valid total amount is required")
        elif abs(total - expected_total) > AMOUNT_TOLERANCE:
            errors.append(
                f"Total amount {total:.2f} does not equal subtotal + delivery fee + tax - discount ({expected_total:.2f})"
            )

        if errors:
            logger.info("Order validation failed", extra={'extra_fields': {'user_id': user.id, 'errors': errors}})
            raise ValidationError(errors)

        now = utcnow()
        slotted = bool(data.order_date and data.slot_timing)
        return Order(
            order_number=self._generate_order_number(),
            order_type=data.order_type,
            user_id=user.id,
            user_name=user.display_name or user.email or "Customer",
            user_email=user.email,
            user_phone=user.phone_number or snapshot["contact_phone"],
            delivery_address=snapshot,
            delivery_pincode=snapshot["pincode"],
            delivery_distance_km=round(distance, 2),
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            tax_amount=tax_amount,
            discount_amount=discount,
            total_amount=total,
            payment_method=data.payment_method,
            payment_status=PaymentStatus.PENDING.value,
            order_status=OrderStatus.PLACED.value,
            estimated_delivery_time=estimate_delivery_time(
                now,
                distance,
                data.order_date if slotted else None,
                data.slot_timing if slotted else None,
                slot_buffer_minutes=s.SLOT_BUFFER_MINUTES,
                base_prep_minutes=s.BASE_PREP_MINUTES,
                minutes_per_km=s.MINUTES_PER_KM,
                max_eta_minutes=s.MAX_ETA_MINUTES,
            ),
            order_date=data.order_date if slotted else None,
            slot_timing=data.slot_timing if slotted else None,
            special_instructions=data.special_instructions,
            admin_notes="",
            placed_at=now,
            created_at=now,
            updated_at=now,
            is_active=True,
            items=[
                OrderItem(
                    menu_item_id=i.menu_item_id,
                    name=i.name,
                    unit_price=i.price,
                    quantity=i.quantity,
                    is_veg=i.is_veg,
                    image_url=i.image_url,
                )
                for i in data.items
            ],
        )

    def _auto_assign(self, order: Order) -> None:
        person = self.assigner.assign_for_pincode(order.delivery_pincode)
        if person is not None:
            order.delivery_person_id = person.id
            order.delivery_person_name = person.display_name
            order.delivery_person_phone = person.phone_number

    def _persist_new(self, order: Order) -> None:
        self.db.add(order)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Failed to persist order",
                exc_info=True,
                extra={'extra_fields': {'order_number': order.order_number, 'operation': 'persist_order'}}
            )
            raise PersistenceError("Failed to save order")
        self.db.refresh(order)
        set_order_context(order.id)

    # ------------------------------------------------------------------ queries

    def _query(self):
        return select(Order).options(selectinload(Order.items))

    def get(self, order_id: int) -> Optional[Order]:
        return self.db.scalars(self._query().where(Order.id == order_id)).first()

    def get_for(self, order_id: int, principal: Principal) -> Order:
        order = self.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if principal.is_admin:
            return order
        if principal.role == Role.DELIVERY_PERSON:
            if order.delivery_person_id != principal.subject:
                raise AuthorizationError("Order is not assigned to you")
            return order
        if order.user_id != principal.subject:
            raise AuthorizationError("Unauthorized to view this order")
        return order

    def list_for_user(self, user_id: str, skip: int = 0, limit: int = 20) -> List[Order]:
        stmt = (
            self._query()
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(self.db.scalars(stmt))

    def list_for_delivery_person(
        self,
        delivery_person_id: str,
        pincode: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Order]:
        stmt = self._query().where(Order.delivery_person_id == delivery_person_id)
        if pincode:
            stmt = stmt.where(Order.delivery_pincode == pincode)
        if status:
            stmt = stmt.where(Order.order_status == status.value)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset(skip).limit(limit)
        return list(self.db.scalars(stmt))

    def list_all(self, filters: OrderFilters) -> List[Order]:
        stmt = self._query()
        if filters.status:
            stmt = stmt.where(Order.order_status == filters.status.value)
        if filters.payment_method:
            stmt = stmt.where(Order.payment_method == filters.payment_method.value)
        if filters.pincode:
            stmt = stmt.where(Order.delivery_pincode == filters.pincode)
        if filters.assigned_admin_id:
            stmt = stmt.where(Order.assigned_admin_id == filters.assigned_admin_id)
        if filters.delivery_person_id:
            stmt = stmt.where(Order.delivery_person_id == filters.delivery_person_id)
        if filters.from_date:
            stmt = stmt.where(Order.created_at >= filters.from_date)
        if filters.to_date:
            stmt = stmt.where(Order.created_at < filters.to_date)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(filters.limit)
        return list(self.db.scalars(stmt))

    def list_by_pincode(self, pincode: str, status: Optional[OrderStatus] = None) -> List[Order]:
        stmt = self._query().where(Order.delivery_pincode == pincode)
        if status:
            stmt = stmt.where(Order.order_status == status.value)
        return list(self.db.scalars(stmt.order_by(Order.created_at.desc(), Order.id.desc())))

    def summary(self, now: Optional[datetime] = None) -> OrderSummary:
        now = now or utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_of_day = start_of_day + timedelta(days=1)

        today_rows = self.db.execute(
            select(Order.order_status, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .where(Order.created_at >= start_of_day, Order.created_at < end_of_day)
            .group_by(Order.order_status)
        ).all()
        by_status = {status: count for status, count, _ in today_rows}
        revenue = round(sum(float(total) for _, _, total in today_rows), 2)

        counts = dict(
            self.db.execute(select(Order.order_status, func.count(Order.id)).group_by(Order.order_status)).all()
        )

        def bucket(*statuses: OrderStatus) -> int:
            return sum(counts.get(s.value, 0) for s in statuses)

        open_statuses = [s.value for s in OrderStatus if s not in TERMINAL_STATUSES]
        by_pincode = dict(
            self.db.execute(
                select(Order.delivery_pincode, func.count(Order.id))
                .where(Order.order_status.in_(open_statuses))
                .group_by(Order.delivery_pincode)
            ).all()
        )
        return OrderSummary(
            today=TodaySummary(total=sum(by_status.values()), revenue=revenue, by_status=by_status),
            active=ActiveSummary(
                pending=bucket(OrderStatus.PLACED, OrderStatus.CONFIRMED),
                preparing=bucket(OrderStatus.PREPARING, OrderStatus.READY),
                delivery=bucket(OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY),
                completed=bucket(OrderStatus.DELIVERED),
                cancelled=bucket(OrderStatus.CANCELLED),
            ),
            by_pincode=by_pincode,
        )

    # ------------------------------------------------------------------ transitions

    def _apply_guarded(self, order: Order, expected_status: str, values: dict, operation: str) -> Order:
        """Write ``values`` only if the order is still in ``expected_status``."""
        values["updated_at"] = utcnow()
        try:
            result = self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.order_status == expected_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                raise ConflictError("Order was modified by another request; reload and retry")
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Order update failed",
                exc_info=True,
                extra={'extra_fields': {'order_id': order.id, 'operation': operation}}
            )
            raise PersistenceError("Failed to update order")
        self.db.refresh(order)
        return order

    def _require(self, order_id: int) -> Order:
        order = self.get(order_id)
        if order is None:
            raise NotFoundError("Order not found.")
        set_order_context(order.id)
        return order

    def cancel(self, order_id: int, principal: Principal, reason: Optional[str]) -> Order:
        order = self._require(order_id)
        if principal.role == Role.CUSTOMER and order.user_id != principal.subject:
            raise AuthorizationError("Unauthorized to cancel this order.")
        ensure_transition(order.order_status, OrderStatus.CANCELLED, principal.role)
        reason = (reason or "").strip()
        minimum = self.settings.MIN_CANCEL_REASON_LENGTH
        if len(reason) < minimum:
            raise ValidationError([f"Cancellation reason is required (minimum {minimum} characters)"])

        now = utcnow()
        values = {
            "order_status": OrderStatus.CANCELLED.value,
            "cancellation_reason": reason,
            "cancelled_at": now,
        }
        if order.payment_status == PaymentStatus.PAID.value:
            values["payment_status"] = PaymentStatus.REFUND_PENDING.value
        if principal.is_admin:
            values["assigned_admin_id"] = principal.subject
        self._apply_guarded(order, order.order_status, values, "cancel_order")
        logger.info(
            f"Order {order.order_number} cancelled",
            extra={'extra_fields': {'order_id': order.id, 'operation': 'cancel_order', 'by': principal.role.value}}
        )
        return order

    def update_status(self, order_id: int, status: str, principal: Principal, notes: Optional[str] = None) -> Order:
        target = parse_status(status)
        if target == OrderStatus.CANCELLED:
            return self.cancel(order_id, principal, notes)
        order = self._require(order_id)
        if principal.role == Role.DELIVERY_PERSON and order.delivery_person_id != principal.subject:
            raise AuthorizationError("Order is not assigned to you")
        ensure_transition(order.order_status, target, principal.role, order.payment_method, order.payment_status)

        previous = order.order_status
        values = {"order_status": target.value}
        timestamp_column = STATUS_TIMESTAMPS.get(target)
        if timestamp_column:
            values[timestamp_column] = utcnow()
        if principal.is_admin:
            values["assigned_admin_id"] = principal.subject
            if notes:
                values["admin_notes"] = notes
        self._apply_guarded(order, previous, values, "update_status")
        logger.info(
            f"Order {order.order_number} moved {previous} -> {target.value}",
            extra={'extra_fields': {'order_id': order.id, 'operation': 'update_status', 'by': principal.subject}}
        )
        return order

    def assign_delivery_person(self, order_id: int, data: AssignDeliveryPerson, admin: Principal) -> Order:
        order = self._require(order_id)
        if OrderStatus(order.order_status) in TERMINAL_STATUSES:
            raise ConflictError(f"Order is already {order.order_status}; it cannot be reassigned")

        person = self.delivery_persons.get(data.delivery_person_id)
        name = data.delivery_person_name or (person.display_name if person else None)
        phone = data.delivery_person_phone or (person.phone_number if person else None)
        errors = []
        if person is not None and not person.is_active:
            errors.append("Delivery person is not active")
        if not name or not phone:
            errors.append("Delivery person ID, name, and phone are required")
        if errors:
            raise ValidationError(errors)

        values = {
            "delivery_person_id": data.delivery_person_id,
            "delivery_person_name": name,
            "delivery_person_phone": phone,
            "assigned_admin_id": admin.subject,
        }
        if data.mark_picked_up:
            ensure_transition(
                order.order_status, OrderStatus.PICKED_UP, admin.role, order.payment_method, order.payment_status
            )
            values["order_status"] = OrderStatus.PICKED_UP.value
        if person is not None:
            self.delivery_persons.stamp_assignment(person.id, utcnow())
        self._apply_guarded(order, order.order_status, values, "assign_delivery_person")
        logger.info(
            f"Delivery person {data.delivery_person_id} assigned to order {order.order_number}",
            extra={'extra_fields': {'order_id': order.id, 'operation': 'assign_delivery_person', 'by': admin.subject}}
        )
        return order
