"""
services/booking/router.py
Customer booking endpoints: quote, create, list, detail, reschedule, cancel.

Creation flow:
    1. Price the cart (catalog snapshot, credits, coupon, checkout fields)
    2. Reject if the client's expected total drifts beyond tolerance
    3. Reserve credits from the plan holder's wallet
    4. Write Booking + OrderItems (with job OTPs)
    5. Nothing payable → settle immediately; otherwise wait for /payments
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import cancel_booking as cancel_booking_items
from services.booking.lifecycle import reschedule_booking as reschedule_booking_items
from services.booking.sync import append_action, load_booking
from services.checkout.calculator import amount_within_tolerance
from services.checkout.cart import quote_cart
from services.notification.router import notify_safely
from services.payment.settlement import settle_booking
from services.plan.wallet import deduct_credits
from services.sos.broadcaster import SOSBroadcaster, get_broadcaster
from shared.middleware.auth import get_current_user
from shared.models.models import (
    Booking,
    BookingType,
    NotificationType,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    BookingCreateRequest,
    BookingResponse,
    CancelRequest,
    QuoteRequest,
    QuoteResponse,
    RescheduleRequest,
)
from shared.utils.identifiers import generate_booking_id
from shared.utils.security import generate_otp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_booking_for(booking_id: UUID, user: User, db: AsyncSession) -> Booking:
    """Customers see their own bookings, admins see all."""
    booking = await load_booking(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if user.role != UserRole.ADMIN and booking.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return booking


def _actor(user: User) -> str:
    return f"{user.role.value.lower()}:{user.id}"


# ── Quote ─────────────────────────────────────────────────────

@router.post("/quote", response_model=QuoteResponse)
async def quote(
    data: QuoteRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Price a cart without reserving anything."""
    priced = await quote_cart(db, current_user, data)
    result = priced.result
    return QuoteResponse(
        item_total=result.item_total,
        credits_used=result.credits_used,
        cash_subtotal=result.cash_subtotal,
        discount=result.discount,
        breakdown=result.breakdown,
        total=result.total,
        total_subunits=result.total_subunits,
        lines=[line.__dict__ for line in result.lines],
        credits_available=priced.wallet_credits,
    )


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    if current_user.role != UserRole.USER:
        raise HTTPException(status_code=403, detail="Only customers can create bookings")

    # Step 1: price
    priced = await quote_cart(db, current_user, data)
    result = priced.result

    # Step 2: tolerance against what the client displayed
    if data.expected_total is not None and not amount_within_tolerance(data.expected_total, result.total):
        raise HTTPException(
            status_code=400,
            detail=f"Amount mismatch: expected {data.expected_total}, calculated {result.total}",
        )

    # Step 3: reserve credits
    if result.credits_used and not await deduct_credits(db, priced.plan_holder_id, result.credits_used):
        raise HTTPException(status_code=400, detail="Insufficient credits")

    # Step 4: persist
    booking = Booking(
        booking_id=await generate_booking_id(db),
        user_id=current_user.id,
        type=BookingType.SERVICE,
        address=data.address.model_dump(),
        scheduled_date=data.scheduled_date,
        scheduled_time=data.scheduled_time,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        item_total=result.item_total,
        total_original_amount=result.cash_subtotal,
        discount_amount=result.discount,
        total_amount=result.total,
        credits_used=result.credits_used,
        credit_holder_id=priced.plan_holder_id if result.credits_used else None,
        coupon_code=priced.coupon.code if priced.coupon else None,
        payment_breakdown=result.breakdown_json(),
        notes=data.notes,
        items=[
            OrderItem(
                position=position,
                service_id=line.service_id,
                variant_id=line.variant_id,
                name=line.name,
                unit_price=line.unit_price,
                credit_cost=line.credit_cost,
                quantity=line.quantity,
                price=line.price,
                paid_with_credits=line.paid_with_credits,
                customer_visit_required=line.customer_visit_required,
                status=OrderStatus.PENDING,
                start_job_otp=generate_otp(),
                end_job_otp=generate_otp(),
            )
            for position, line in enumerate(result.lines)
        ],
    )
    append_action(booking, "CREATED", _actor(current_user), f"{len(result.lines)} item(s)")
    db.add(booking)
    await db.flush()
    await db.commit()
    logger.info(
        f"Booking {booking.booking_id} created for user {current_user.id}: "
        f"total={result.total} credits={result.credits_used}"
    )

    # Step 5: free bookings skip the gateway
    if result.total == 0:
        booking = await settle_booking(db, booking, actor=_actor(current_user), broadcaster=broadcaster)
    else:
        await notify_safely(
            db,
            current_user.id,
            NotificationType.BOOKING_CREATED,
            {"booking_ref": booking.booking_id},
            booking_id=booking.id,
        )
        booking = await load_booking(db, booking.id)

    return BookingResponse.model_validate(booking)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the current user's bookings, newest first."""
    query = select(Booking).where(Booking.user_id == current_user.id)

    if status_filter:
        try:
            query = query.where(Booking.status == OrderStatus(status_filter))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status_filter}")

    query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [BookingResponse.model_validate(b) for b in result.scalars().all()]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_for(booking_id, current_user, db)
    return BookingResponse.model_validate(booking)


# ── Reschedule / Cancel ───────────────────────────────────────

@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: UUID,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_booking_for(booking_id, current_user, db)
    if booking.type != BookingType.SERVICE:
        raise HTTPException(status_code=400, detail="Only service bookings can be rescheduled")
    booking = await reschedule_booking_items(
        db, booking, data.scheduled_date, data.scheduled_time, _actor(current_user)
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: CancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """
    Cancel before the professional reaches the address.
    Credits go back to the wallet; paid amounts move to REFUND_PENDING.
    """
    booking = await _get_booking_for(booking_id, current_user, db)
    if booking.type != BookingType.SERVICE:
        raise HTTPException(status_code=400, detail="Use the SOS or plan endpoints for this booking")
    booking = await cancel_booking_items(
        db, booking, data.reason, _actor(current_user), broadcaster
    )
    return BookingResponse.model_validate(booking)
