"""
services/payment/settlement.py
What happens once a booking is paid (or turns out to cost nothing):
mark paid, count the coupon, confirm items, fulfil plan purchases,
then try to assign partners.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from services.assignment.engine import auto_assign_booking
from services.booking.lifecycle import confirm_pending_items
from services.booking.state_machine import TERMINAL_STATES, transition_item
from services.booking.sync import append_action, load_booking, sync_booking
from services.checkout.cart import increment_coupon_usage
from services.notification.router import notify_safely
from shared.models.models import (
    Booking,
    BookingType,
    NotificationType,
    OrderStatus,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


async def settle_booking(
    db: AsyncSession,
    booking: Booking,
    *,
    payment_id: Optional[str] = None,
    actor: str = "system",
    broadcaster=None,
) -> Booking:
    """
    PENDING → PAID exactly once (conditional UPDATE). A booking that is
    already paid is returned untouched.
    """
    now = datetime.now(timezone.utc)
    await db.flush()
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.payment_status == PaymentStatus.PENDING)
        .values(payment_status=PaymentStatus.PAID, payment_id=payment_id, paid_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(f"Booking {booking.booking_id} already settled, skipping")
        return await load_booking(db, booking.id)

    booking = await load_booking(db, booking.id)
    append_action(booking, "PAYMENT_CONFIRMED", actor, payment_id)
    if booking.coupon_code:
        await increment_coupon_usage(db, booking.coupon_code)
    await confirm_pending_items(db, booking)
    booking = await sync_booking(db, booking.id, broadcaster)
    logger.info(f"Booking {booking.booking_id} paid ({booking.total_amount} {payment_id or 'no charge'})")

    if booking.type == BookingType.PLAN_PURCHASE:
        # Nothing to dispatch: paying is the fulfilment.
        for item in booking.items:
            if OrderStatus(item.status) not in TERMINAL_STATES:
                await transition_item(
                    db, item, OrderStatus.COMPLETED, enforce_otp=False,
                    extra_values={"completed_at": now},
                )
        booking = await sync_booking(db, booking.id, broadcaster)

    await notify_safely(
        db,
        booking.user_id,
        NotificationType.PAYMENT_SUCCESS if booking.total_amount > 0 else NotificationType.BOOKING_CONFIRMED,
        {"booking_ref": booking.booking_id, "amount": booking.total_amount},
        booking_id=booking.id,
    )

    if booking.type == BookingType.SERVICE:
        await auto_assign_booking(db, booking.id, broadcaster)

    return await load_booking(db, booking.id)
