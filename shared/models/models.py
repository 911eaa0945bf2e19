"""
shared/models/models.py
All SQLAlchemy ORM models for the HomeServe platform.
UUID primary keys throughout; JSON columns become JSONB on PostgreSQL.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always hands back UTC-aware values (SQLite drops tzinfo)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    USER = "USER"
    PARTNER = "PARTNER"
    ADMIN = "ADMIN"


class BookingType(str, PyEnum):
    SERVICE = "SERVICE"
    PLAN_PURCHASE = "PLAN_PURCHASE"
    SOS = "SOS"


class OrderStatus(str, PyEnum):
    """Shared by order items and the aggregate booking status."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ASSIGNED = "ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    REACHED = "REACHED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUND_INITIATED = "REFUND_INITIATED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, PyEnum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUND_PENDING = "REFUND_PENDING"
    REFUNDED = "REFUNDED"


class ChargeType(str, PyEnum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class CouponScope(str, PyEnum):
    ALL = "ALL"
    SERVICE = "SERVICE"


class TransactionStatus(str, PyEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SOSStatus(str, PyEnum):
    TRIGGERED = "TRIGGERED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


class NotificationType(str, PyEnum):
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_STATUS = "BOOKING_STATUS"
    BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    JOB_ASSIGNED = "JOB_ASSIGNED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PLAN_ACTIVATED = "PLAN_ACTIVATED"
    SOS_UPDATE = "SOS_UPDATE"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Accounts ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Customer, partner, or admin account."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.USER, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class FamilyMember(TimestampMixin, Base):
    """A person covered by the owner's plan; matched to accounts by phone."""
    __tablename__ = "family_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    relation: Mapped[str] = mapped_column(String(50), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (Index("ix_family_members_phone", "phone"),)


# ── Catalog ───────────────────────────────────────────────────

class Service(TimestampMixin, Base):
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    credit_cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    customer_visit_required: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ServiceVariant(TimestampMixin, Base):
    __tablename__ = "service_variants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    credit_cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ServiceRegion(TimestampMixin, Base):
    """Named geofence. polygon is an ordered list of {"lat", "lng"} vertices."""
    __tablename__ = "service_regions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    polygon: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ServicePartner(TimestampMixin, Base):
    """
    Field worker. service_ids / region_ids hold UUID strings;
    an empty region_ids list means the partner is not geofenced.
    """
    __tablename__ = "service_partners"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    service_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    region_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    availability: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    # e.g. [{"day": "monday", "start_time": "09:00", "end_time": "18:00", "is_available": true}]
    blackout_dates: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (Index("ix_service_partners_active", "is_active"),)


# ── Plans & Wallet ────────────────────────────────────────────

class Plan(TimestampMixin, Base):
    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    validity_days: Mapped[int] = mapped_column(Integer, default=365, nullable=False)
    total_members: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    allow_sos: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class UserPlan(TimestampMixin, Base):
    """The user's current plan. Active iff active_plan_id is set and not expired."""
    __tablename__ = "user_plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    active_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("plans.id"), nullable=True
    )
    activated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    plan: Mapped[Optional["Plan"]] = relationship(lazy="selectin")

    def is_active_at(self, moment: datetime) -> bool:
        if not self.active_plan_id:
            return False
        return self.expires_at is None or moment < self.expires_at


class UserCredits(TimestampMixin, Base):
    """Credit wallet. Always mutated with conditional UPDATEs, never read-modify-write."""
    __tablename__ = "user_credits"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (CheckConstraint("credits >= 0", name="ck_user_credits_non_negative"),)


class PlanTransaction(TimestampMixin, Base):
    __tablename__ = "plan_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("plans.id"), nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), unique=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)


# ── Checkout Configuration ────────────────────────────────────

class CheckoutField(TimestampMixin, Base):
    """Configurable fee/tax line applied in ascending `order`."""
    __tablename__ = "checkout_fields"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    charge_type: Mapped[ChargeType] = mapped_column(Enum(ChargeType), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Coupon(TimestampMixin, Base):
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    max_uses: Mapped[int] = mapped_column(Integer, default=-1, nullable=False)  # -1 = unlimited
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_restricted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allowed_phones: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    applies_to: Mapped[CouponScope] = mapped_column(
        Enum(CouponScope), default=CouponScope.ALL, nullable=False
    )
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("services.id"), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "discount_percent > 0 AND discount_percent <= 100", name="ck_coupon_percent_range"
        ),
    )


# ── Bookings ──────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    One customer request. `status` is derived from the order items
    by services.booking.sync and never set independently once items exist.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    type: Mapped[BookingType] = mapped_column(
        Enum(BookingType), default=BookingType.SERVICE, nullable=False
    )

    # Immutable address snapshot: {"full_address", "label", "lat", "lng"}
    address: Mapped[dict] = mapped_column(JSONType, nullable=False)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)  # None = ASAP
    scheduled_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)  # "HH:MM"

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )

    # Money
    item_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    total_original_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credit_holder_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )  # wallet the credits were drawn from
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_breakdown: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # Gateway
    order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Audit / lifecycle
    action_log: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_bookings_user_id", "user_id"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_payment_status", "payment_status"),
        Index("ix_bookings_created_at", "created_at"),
    )


class OrderItem(TimestampMixin, Base):
    """One line of a booking with its own job lifecycle. Snapshot fields are frozen at purchase."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Snapshot
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    credit_cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    paid_with_credits: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    customer_visit_required: Mapped[bool] = mapped_column(Boolean, default=False)

    # Fulfilment
    assigned_partner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("service_partners.id"), nullable=True
    )
    assigned_service_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False
    )
    start_job_otp: Mapped[str] = mapped_column(String(8), nullable=False)
    end_job_otp: Mapped[str] = mapped_column(String(8), nullable=False)

    # Holds: [{"reason", "custom_remark", "hold_started_at", "hold_ended_at", "held_by"}]
    hold_history: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_on_hold: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    active_work_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    booking: Mapped["Booking"] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_quantity"),
        Index("ix_order_items_booking_id", "booking_id"),
        Index("ix_order_items_partner_id", "assigned_partner_id"),
        Index("ix_order_items_status", "status"),
    )


class DailySequence(Base):
    """Atomic per-day counter behind BOOK-/SOS- identifiers."""
    __tablename__ = "daily_sequences"

    prefix: Mapped[str] = mapped_column(String(10), primary_key=True)
    day: Mapped[str] = mapped_column(String(8), primary_key=True)  # YYYYMMDD
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# ── SOS ───────────────────────────────────────────────────────

class SOSAlert(TimestampMixin, Base):
    __tablename__ = "sos_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    alert_id: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    family_member_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("family_members.id"), nullable=True
    )
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("services.id"), nullable=True
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    location: Mapped[dict] = mapped_column(JSONType, nullable=False)  # {"latitude", "longitude"}
    status: Mapped[SOSStatus] = mapped_column(
        Enum(SOSStatus), default=SOSStatus.TRIGGERED, nullable=False
    )
    otp: Mapped[str] = mapped_column(String(8), nullable=False)
    logs: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    credits_charged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credit_holder_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    acknowledged_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    resolved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_sos_alerts_user_status", "user_id", "status"),
        Index("ix_sos_alerts_status", "status"),
    )


# ── Notifications & Audit ─────────────────────────────────────

class Notification(TimestampMixin, Base):
    """In-app notification log. Delivery to push/SMS channels happens elsewhere."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
