"""
services/booking/lifecycle.py
Job and booking level operations layered on the status machine:
partner progress, OTP start/end, hold/resume, reschedule, cancel,
and admin status corrections.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.state_machine import (
    TERMINAL_STATES,
    check_transition,
    ensure_cancellable,
    transition_item,
)
from services.booking.sync import append_action, load_booking, sync_booking
from services.notification.router import dispatch_notification
from services.plan.wallet import add_credits
from shared.models.models import (
    Booking,
    BookingType,
    NotificationType,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ServicePartner,
)
from shared.utils.worktime import active_work_seconds, format_duration

logger = logging.getLogger(__name__)

PARTNER_SETTABLE = (OrderStatus.EN_ROUTE, OrderStatus.REACHED)
RESCHEDULE_BLOCKERS = frozenset(TERMINAL_STATES | {OrderStatus.IN_PROGRESS, OrderStatus.REFUND_INITIATED})


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _booking_for(db: AsyncSession, item: OrderItem) -> Booking:
    booking = await load_booking(db, item.booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def _ensure_assigned_to(item: OrderItem, partner: ServicePartner) -> None:
    if item.assigned_partner_id != partner.id:
        raise HTTPException(status_code=403, detail="This job is not assigned to you")


def _open_hold(item: OrderItem) -> Optional[dict]:
    for entry in reversed(item.hold_history or []):
        if not entry.get("hold_ended_at"):
            return entry
    return None


# ── Partner job operations ────────────────────────────────────

async def update_partner_status(
    db: AsyncSession, item: OrderItem, partner: ServicePartner, target: OrderStatus, broadcaster=None
) -> OrderItem:
    """EN_ROUTE / REACHED need no OTP."""
    target = OrderStatus(target)
    if target not in PARTNER_SETTABLE:
        raise HTTPException(status_code=400, detail="Partners may only set EN_ROUTE or REACHED")
    _ensure_assigned_to(item, partner)

    booking = await _booking_for(db, item)
    await transition_item(db, item, target, is_sos=booking.type == BookingType.SOS)
    append_action(booking, f"ITEM_{target.value}", f"partner:{partner.id}", item.name)
    await sync_booking(db, booking.id, broadcaster, actor_id=partner.user_id)
    await db.refresh(item)
    return item


async def start_job(
    db: AsyncSession, item: OrderItem, partner: ServicePartner, otp: Optional[str], broadcaster=None
) -> OrderItem:
    """REACHED → IN_PROGRESS with the start OTP (waived for SOS)."""
    _ensure_assigned_to(item, partner)
    if OrderStatus(item.status) != OrderStatus.REACHED:
        raise HTTPException(
            status_code=400,
            detail=f"Job can only be started from REACHED (current: {item.status.value})",
        )

    booking = await _booking_for(db, item)
    await transition_item(
        db,
        item,
        OrderStatus.IN_PROGRESS,
        is_sos=booking.type == BookingType.SOS,
        otp=otp,
        extra_values={"started_at": _now()},
    )
    append_action(booking, "JOB_STARTED", f"partner:{partner.id}", item.name)
    logger.info(f"Job started: item {item.id} of booking {booking.booking_id}")
    await sync_booking(db, booking.id, broadcaster, actor_id=partner.user_id)
    await db.refresh(item)
    return item


async def end_job(
    db: AsyncSession, item: OrderItem, partner: ServicePartner, otp: Optional[str], broadcaster=None
) -> OrderItem:
    """IN_PROGRESS → COMPLETED with the end OTP. Active time excludes completed holds."""
    _ensure_assigned_to(item, partner)
    if OrderStatus(item.status) != OrderStatus.IN_PROGRESS:
        raise HTTPException(
            status_code=400,
            detail=f"Job can only be ended from IN_PROGRESS (current: {item.status.value})",
        )
    if item.is_on_hold or _open_hold(item):
        raise HTTPException(status_code=400, detail="Resume the job before ending it")

    booking = await _booking_for(db, item)
    completed_at = _now()
    worked = active_work_seconds(item.started_at, completed_at, item.hold_history)
    await transition_item(
        db,
        item,
        OrderStatus.COMPLETED,
        is_sos=booking.type == BookingType.SOS,
        otp=otp,
        extra_values={
            "completed_at": completed_at,
            "active_work_seconds": worked,
        },
    )
    append_action(booking, "JOB_COMPLETED", f"partner:{partner.id}", item.name)
    logger.info(
        f"Job completed: item {item.id} of booking {booking.booking_id} "
        f"after {format_duration(worked)} of active work"
    )
    await sync_booking(db, booking.id, broadcaster, actor_id=partner.user_id)
    await db.refresh(item)
    return item


async def hold_job(
    db: AsyncSession,
    item: OrderItem,
    partner: ServicePartner,
    reason: str,
    custom_remark: Optional[str] = None,
) -> OrderItem:
    _ensure_assigned_to(item, partner)
    if OrderStatus(item.status) != OrderStatus.IN_PROGRESS:
        raise HTTPException(status_code=400, detail="Only a job in progress can be put on hold")
    if item.is_on_hold or _open_hold(item):
        raise HTTPException(status_code=400, detail="Job is already on hold")
    if reason == "Other" and not (custom_remark or "").strip():
        raise HTTPException(status_code=400, detail="A remark is required when the reason is Other")

    item.hold_history = [
        *(item.hold_history or []),
        {
            "reason": reason,
            "custom_remark": custom_remark,
            "hold_started_at": _now().isoformat(),
            "hold_ended_at": None,
            "held_by": str(partner.id),
        },
    ]
    item.is_on_hold = True
    await db.flush()
    logger.info(f"Job on hold: item {item.id} ({reason})")
    return item


async def resume_job(db: AsyncSession, item: OrderItem, partner: ServicePartner) -> OrderItem:
    _ensure_assigned_to(item, partner)
    if OrderStatus(item.status) != OrderStatus.IN_PROGRESS:
        raise HTTPException(status_code=400, detail="Only a job in progress can be resumed")
    if not item.is_on_hold and not _open_hold(item):
        raise HTTPException(status_code=400, detail="Job is not on hold")

    now = _now().isoformat()
    history = []
    for entry in item.hold_history or []:
        if not entry.get("hold_ended_at"):
            entry = {**entry, "hold_ended_at": now}
        history.append(entry)
    item.hold_history = history
    item.is_on_hold = False
    await db.flush()
    logger.info(f"Job resumed: item {item.id}")
    return item


# ── Booking operations ────────────────────────────────────────

async def reschedule_booking(
    db: AsyncSession,
    booking: Booking,
    new_date: date,
    new_time: Optional[str],
    actor: str,
) -> Booking:
    blocked = [i for i in booking.items if OrderStatus(i.status) in RESCHEDULE_BLOCKERS]
    if blocked or OrderStatus(booking.status) in TERMINAL_STATES:
        raise HTTPException(
            status_code=400,
            detail="Booking cannot be rescheduled once work has started or items are closed",
        )

    old = f"{booking.scheduled_date or 'ASAP'} {booking.scheduled_time or ''}".strip()
    new = f"{new_date} {new_time or ''}".strip()
    booking.scheduled_date = new_date
    booking.scheduled_time = new_time
    booking.reschedule_count = (booking.reschedule_count or 0) + 1
    append_action(booking, "RESCHEDULED", actor, f"{old} -> {new}")
    await dispatch_notification(
        db,
        booking.user_id,
        NotificationType.BOOKING_RESCHEDULED,
        {"booking_ref": booking.booking_id, "scheduled_for": new},
        booking_id=booking.id,
    )
    await db.commit()
    logger.info(f"Booking {booking.booking_id} rescheduled: {old} -> {new}")
    return await load_booking(db, booking.id)


async def cancel_booking(
    db: AsyncSession,
    booking: Booking,
    reason: Optional[str],
    actor: str,
    broadcaster=None,
) -> Booking:
    """
    Cancel every open item. Not allowed once any item has reached the
    customer. Reserved credits go back to the wallet they came from.
    """
    if OrderStatus(booking.status) in TERMINAL_STATES:
        raise HTTPException(status_code=400, detail=f"Booking is already {booking.status.value}")
    ensure_cancellable(booking.items)

    for item in booking.items:
        if OrderStatus(item.status) in TERMINAL_STATES:
            continue
        await transition_item(db, item, OrderStatus.CANCELLED, enforce_otp=False)

    if booking.credits_used:
        holder_id = booking.credit_holder_id or booking.user_id
        await add_credits(db, holder_id, booking.credits_used)
        logger.info(f"Restored {booking.credits_used} credits for cancelled booking {booking.booking_id}")

    if booking.payment_status == PaymentStatus.PAID and booking.total_amount > 0:
        booking.refund_amount = booking.total_amount
        booking.payment_status = PaymentStatus.REFUND_PENDING

    booking.cancellation_reason = reason
    append_action(booking, "CANCELLED", actor, reason)
    await dispatch_notification(
        db,
        booking.user_id,
        NotificationType.BOOKING_CANCELLED,
        {"booking_ref": booking.booking_id},
        booking_id=booking.id,
    )
    logger.info(f"Booking {booking.booking_id} cancelled by {actor}")
    return await sync_booking(db, booking.id, broadcaster)


async def admin_set_status(
    db: AsyncSession,
    item: OrderItem,
    target: OrderStatus,
    reason: str,
    actor: str,
    broadcaster=None,
) -> OrderItem:
    """Correction path: normal transition rules, OTPs skipped, reason recorded."""
    if not (reason or "").strip():
        raise HTTPException(status_code=400, detail="A reason is required for status corrections")
    target = OrderStatus(target)
    check_transition(item, target, enforce_otp=False)

    extra = {}
    if target == OrderStatus.IN_PROGRESS and item.started_at is None:
        extra["started_at"] = _now()
    if target == OrderStatus.COMPLETED:
        completed_at = _now()
        extra["completed_at"] = completed_at
        extra["active_work_seconds"] = active_work_seconds(
            item.started_at, completed_at, item.hold_history
        )

    booking = await _booking_for(db, item)
    await transition_item(db, item, target, enforce_otp=False, extra_values=extra)
    append_action(booking, f"ADMIN_STATUS_{target.value}", actor, reason)
    await sync_booking(db, booking.id, broadcaster)
    await db.refresh(item)
    return item


async def confirm_pending_items(db: AsyncSession, booking: Booking) -> None:
    """Payment landed: every PENDING item moves to CONFIRMED."""
    for item in booking.items:
        if OrderStatus(item.status) == OrderStatus.PENDING:
            await transition_item(db, item, OrderStatus.CONFIRMED, enforce_otp=False)


async def load_item(db: AsyncSession, item_id: uuid.UUID) -> Optional[OrderItem]:
    return await db.get(OrderItem, item_id, populate_existing=True)
