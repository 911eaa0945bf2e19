"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.models.models import (
    BookingType,
    NotificationType,
    OrderStatus,
    PaymentStatus,
    SOSStatus,
)
from shared.utils.availability import parse_clock
from shared.utils.worktime import HOLD_REASONS


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


# ── Checkout ──────────────────────────────────────────────────

class AddressSnapshot(BaseSchema):
    full_address: str = Field(..., min_length=5, max_length=500)
    label: Optional[str] = Field(None, max_length=50)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class CartLine(BaseSchema):
    service_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int = Field(1, ge=1, le=20)


class QuoteRequest(BaseSchema):
    items: List[CartLine] = Field(..., min_length=1, max_length=20)
    use_credits: bool = False
    coupon_code: Optional[str] = Field(None, max_length=50)


class BookingCreateRequest(QuoteRequest):
    address: AddressSnapshot
    scheduled_date: Optional[date] = None      # None = ASAP
    scheduled_time: Optional[str] = None       # "HH:MM" or "h:mm AM/PM"
    notes: Optional[str] = Field(None, max_length=1000)
    expected_total: Optional[Decimal] = Field(None, ge=0)

    @field_validator("scheduled_time")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parsed = parse_clock(v)
        if parsed is None:
            raise ValueError("scheduled_time must be HH:MM or h:mm AM/PM")
        return parsed.strftime("%H:%M")

    @field_validator("scheduled_date")
    @classmethod
    def validate_date(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v < date.today():
            raise ValueError("scheduled_date cannot be in the past")
        return v


class BreakdownLine(BaseSchema):
    name: str
    display_name: str
    type: str
    amount: Decimal


class QuoteLineResponse(BaseSchema):
    service_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    name: str
    unit_price: Decimal
    credit_cost: int
    quantity: int
    price: Decimal
    paid_with_credits: bool


class QuoteResponse(BaseSchema):
    item_total: Decimal
    credits_used: int
    cash_subtotal: Decimal
    discount: Decimal
    breakdown: List[BreakdownLine]
    total: Decimal
    total_subunits: int
    lines: List[QuoteLineResponse]
    credits_available: int = 0


# ── Bookings ──────────────────────────────────────────────────

class OrderItemResponse(BaseSchema):
    id: uuid.UUID
    position: int
    service_id: Optional[uuid.UUID]
    variant_id: Optional[uuid.UUID]
    name: str
    unit_price: Decimal
    credit_cost: int
    quantity: int
    price: Decimal
    paid_with_credits: bool
    customer_visit_required: bool = False
    assigned_partner_id: Optional[uuid.UUID]
    status: OrderStatus
    # Shown to the customer only; the partner collects them on site.
    start_job_otp: str
    end_job_otp: str
    is_on_hold: bool
    hold_history: List[Dict[str, Any]] = []
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    active_work_seconds: Optional[int]


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_id: str
    user_id: uuid.UUID
    type: BookingType
    status: OrderStatus
    payment_status: PaymentStatus
    address: Dict[str, Any]
    scheduled_date: Optional[date]
    scheduled_time: Optional[str]
    item_total: Decimal
    total_original_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    credits_used: int
    coupon_code: Optional[str]
    payment_breakdown: List[Dict[str, Any]]
    order_id: Optional[str]
    paid_at: Optional[datetime]
    reschedule_count: int
    refund_amount: Decimal
    cancellation_reason: Optional[str]
    notes: Optional[str]
    action_log: List[Dict[str, Any]]
    created_at: datetime
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    items: List[OrderItemResponse] = []


class RescheduleRequest(BaseSchema):
    scheduled_date: date
    scheduled_time: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parsed = parse_clock(v)
        if parsed is None:
            raise ValueError("scheduled_time must be HH:MM or h:mm AM/PM")
        return parsed.strftime("%H:%M")

    @field_validator("scheduled_date")
    @classmethod
    def validate_date(cls, v: date) -> date:
        if v < date.today():
            raise ValueError("scheduled_date cannot be in the past")
        return v


class CancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


# ── Partner Jobs ──────────────────────────────────────────────

class PartnerStatusRequest(BaseSchema):
    status: Literal["EN_ROUTE", "REACHED"]


class OTPRequest(BaseSchema):
    otp: str = Field(..., min_length=4, max_length=8, pattern=r"^\d+$")


class HoldRequest(BaseSchema):
    reason: str
    custom_remark: Optional[str] = Field(None, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if v not in HOLD_REASONS:
            raise ValueError(f"reason must be one of: {', '.join(HOLD_REASONS)}")
        return v


class PartnerJobResponse(BaseSchema):
    """Job card for the assigned partner. Excludes the job OTPs."""
    id: uuid.UUID
    booking_id: uuid.UUID
    booking_reference: str
    booking_type: BookingType
    name: str
    quantity: int
    status: OrderStatus
    address: Dict[str, Any]
    scheduled_date: Optional[date]
    scheduled_time: Optional[str]
    customer_visit_required: bool = False
    is_on_hold: bool
    hold_history: List[Dict[str, Any]] = []
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    active_work_seconds: Optional[int]


# ── Payments ──────────────────────────────────────────────────

class PaymentOrderRequest(BaseSchema):
    booking_id: uuid.UUID


class PaymentOrderResponse(BaseSchema):
    booking_id: uuid.UUID
    order_id: Optional[str]
    amount: int  # paise
    currency: str
    key_id: str
    confirmed: bool = False  # True when nothing was payable


class PaymentVerifyRequest(BaseSchema):
    booking_id: uuid.UUID
    razorpay_order_id: str = Field(..., min_length=1, max_length=100)
    razorpay_payment_id: str = Field(..., min_length=1, max_length=100)
    razorpay_signature: str = Field(..., min_length=1, max_length=256)


class PaymentVerifyResponse(BaseSchema):
    success: bool
    booking_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus
    message: str


# ── Plans ─────────────────────────────────────────────────────

class PlanResponse(BaseSchema):
    id: uuid.UUID
    name: str
    price: Decimal
    total_credits: int
    validity_days: int
    total_members: int
    allow_sos: bool


class MyPlanResponse(BaseSchema):
    plan: Optional[PlanResponse] = None
    is_active: bool
    is_dependent: bool
    plan_holder_id: uuid.UUID
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    credits: int


class PlanPurchaseRequest(BaseSchema):
    address: Optional[AddressSnapshot] = None


# ── SOS ───────────────────────────────────────────────────────

class SOSLocation(BaseSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)


class SOSTriggerRequest(BaseSchema):
    location: SOSLocation
    family_member_id: Optional[uuid.UUID] = None
    service_id: Optional[uuid.UUID] = None


class SOSCancelRequest(BaseSchema):
    alert_id: Optional[str] = Field(None, max_length=30)


class SOSResolveRequest(BaseSchema):
    otp: str = Field(..., min_length=4, max_length=8)


class SOSOverrideResolveRequest(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason is required")
        return v.strip()


class SOSAlertSummary(BaseSchema):
    """Admin view. The OTP stays with the customer."""
    id: uuid.UUID
    alert_id: str
    user_id: uuid.UUID
    family_member_id: Optional[uuid.UUID]
    service_id: Optional[uuid.UUID]
    booking_id: Optional[uuid.UUID]
    location: Dict[str, Any]
    status: SOSStatus
    logs: List[Dict[str, Any]]
    credits_charged: int
    created_at: datetime
    updated_at: datetime
    acknowledged_at: Optional[datetime]
    resolved_at: Optional[datetime]
    resolution_note: Optional[str]


class SOSAlertResponse(SOSAlertSummary):
    otp: str


# ── Admin ─────────────────────────────────────────────────────

class AdminAssignRequest(BaseSchema):
    partner_id: uuid.UUID
    override_availability: bool = False


class AdminStatusRequest(BaseSchema):
    status: OrderStatus
    reason: str = Field(..., min_length=3, max_length=500)


class EligiblePartnerResponse(BaseSchema):
    id: uuid.UUID
    name: str
    phone: Optional[str]
    last_assigned_at: Optional[datetime]


class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    admin_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: Optional[str]
    payload: Optional[Dict[str, Any]]
    created_at: datetime


# ── Notifications ─────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    booking_id: Optional[uuid.UUID]
    type: NotificationType
    title: str
    body: str
    data: Optional[Dict[str, Any]]
    is_read: bool
    created_at: datetime
