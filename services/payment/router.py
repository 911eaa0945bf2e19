"""
services/payment/router.py
Razorpay checkout handshake: order creation and client-side signature
verification. The gateway client is injected (see gateway.py).
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pybreaker import CircuitBreakerError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.booking.sync import load_booking
from services.payment.gateway import PaymentGatewayError, RazorpayGateway, get_payment_gateway
from services.payment.settlement import settle_booking
from services.sos.broadcaster import SOSBroadcaster, get_broadcaster
from shared.middleware.auth import get_current_user
from shared.models.models import Booking, OrderStatus, PaymentStatus, User
from shared.schemas.schemas import (
    PaymentOrderRequest,
    PaymentOrderResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


async def _get_own_booking(booking_id: UUID, user: User, db: AsyncSession) -> Booking:
    """Another customer's booking is reported as missing, not forbidden."""
    booking = await load_booking(db, booking_id)
    if not booking or booking.user_id != user.id:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


# ── Create Order ──────────────────────────────────────────────

@router.post("/orders", response_model=PaymentOrderResponse)
async def create_payment_order(
    data: PaymentOrderRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """
    Create a Razorpay order for the booking's computed total.
    Client uses order_id + key_id to open Razorpay checkout.
    """
    booking = await _get_own_booking(data.booking_id, current_user, db)

    if booking.payment_status != PaymentStatus.PENDING:
        raise HTTPException(status_code=400, detail="Booking is already paid")
    if booking.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        raise HTTPException(status_code=400, detail=f"Booking is {booking.status.value}")

    # Nothing payable: confirm without the gateway
    if booking.total_amount <= 0:
        booking = await settle_booking(
            db, booking, actor=f"user:{current_user.id}", broadcaster=broadcaster
        )
        return PaymentOrderResponse(
            booking_id=booking.id,
            order_id=None,
            amount=0,
            currency=settings.PAYMENT_CURRENCY,
            key_id=gateway.key_id,
            confirmed=True,
        )

    amount_paise = int(booking.total_amount * 100)
    try:
        order = await gateway.create_order(
            amount_paise,
            receipt=booking.booking_id,
            notes={"booking_id": str(booking.id), "user_id": str(current_user.id)},
        )
    except CircuitBreakerError:
        raise HTTPException(status_code=503, detail="Payment service temporarily unavailable")
    except PaymentGatewayError as e:
        raise HTTPException(status_code=502, detail=f"Payment gateway error: {e}")

    booking.order_id = order["id"]
    await db.commit()

    return PaymentOrderResponse(
        booking_id=booking.id,
        order_id=order["id"],
        amount=amount_paise,
        currency=settings.PAYMENT_CURRENCY,
        key_id=gateway.key_id,
    )


# ── Verify Payment (called from client after checkout) ────────

@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    data: PaymentVerifyRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """
    Verify the checkout signature, then settle the booking:
    paid → coupon counted → items confirmed → plan fulfilled → partners assigned.
    """
    booking = await _get_own_booking(data.booking_id, current_user, db)

    if booking.payment_status != PaymentStatus.PENDING:
        return PaymentVerifyResponse(
            success=True,
            booking_id=booking.id,
            status=booking.status,
            payment_status=booking.payment_status,
            message="Payment already verified",
        )

    if not booking.order_id or booking.order_id != data.razorpay_order_id:
        raise HTTPException(status_code=400, detail="Order does not match this booking")
    if not gateway.verify_signature(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
    ):
        logger.warning(f"Invalid payment signature for booking {booking.booking_id}")
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    booking = await settle_booking(
        db,
        booking,
        payment_id=data.razorpay_payment_id,
        actor=f"user:{current_user.id}",
        broadcaster=broadcaster,
    )
    logger.info(f"Payment {data.razorpay_payment_id} verified for booking {booking.booking_id}")

    return PaymentVerifyResponse(
        success=True,
        booking_id=booking.id,
        status=booking.status,
        payment_status=booking.payment_status,
        message="Payment verified",
    )
