"""
services/booking/sync.py
Derives the booking's aggregate status from its order items and runs the
follow-up work that hangs off a status change.

Precedence (first match wins):
    no items                                  → unchanged
    any non-terminal item                     → least advanced non-terminal state
    all COMPLETED                             → COMPLETED
    all CANCELLED                             → CANCELLED
    all terminal, at least one COMPLETED      → COMPLETED
    all terminal otherwise                    → REFUNDED
REFUND_INITIATED counts as non-terminal and ranks after IN_PROGRESS.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.state_machine import TERMINAL_STATES
from services.notification.router import dispatch_notification
from services.plan.wallet import add_credits, get_user_plan
from services.sos.broadcaster import SOS_RESOLVED, SOSBroadcaster, alert_payload
from shared.models.models import (
    Booking,
    BookingType,
    NotificationType,
    OrderItem,
    OrderStatus,
    Plan,
    PlanTransaction,
    SOSAlert,
    SOSStatus,
    TransactionStatus,
    UserPlan,
)

logger = logging.getLogger(__name__)

# Least advanced first
NON_TERMINAL_RANK = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.ASSIGNED,
    OrderStatus.EN_ROUTE,
    OrderStatus.REACHED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.REFUND_INITIATED,
)

ACTIVE_SOS_STATES = (SOSStatus.TRIGGERED, SOSStatus.ACKNOWLEDGED)


def aggregate_status(statuses: Iterable[OrderStatus]) -> Optional[OrderStatus]:
    """Booking status implied by its item statuses; None means leave it alone."""
    statuses = [OrderStatus(s) for s in statuses]
    if not statuses:
        return None

    open_states = [s for s in statuses if s not in TERMINAL_STATES]
    if open_states:
        return min(open_states, key=NON_TERMINAL_RANK.index)

    distinct = set(statuses)
    if distinct == {OrderStatus.COMPLETED}:
        return OrderStatus.COMPLETED
    if distinct == {OrderStatus.CANCELLED}:
        return OrderStatus.CANCELLED
    if OrderStatus.COMPLETED in distinct:
        return OrderStatus.COMPLETED
    return OrderStatus.REFUNDED


async def load_booking(db: AsyncSession, booking_id: uuid.UUID) -> Optional[Booking]:
    """Fresh copy of the booking and its items, overwriting anything stale in the session."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def append_action(booking: Booking, action: str, actor: str, details: Optional[str] = None) -> None:
    # JSON columns are not mutation-tracked; assign a new list.
    booking.action_log = [
        *(booking.action_log or []),
        {
            "action": action,
            "actor": actor,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
        },
    ]


async def sync_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    broadcaster: Optional[SOSBroadcaster] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Optional[Booking]:
    """
    Recompute and persist the aggregate status, commit, then run side effects.
    Side-effect failures are logged and never undo the status write.
    Returns the freshly loaded booking.
    """
    await db.flush()
    result = await db.execute(select(OrderItem.status).where(OrderItem.booking_id == booking_id))
    statuses = list(result.scalars().all())

    booking = await load_booking(db, booking_id)
    if booking is None:
        logger.warning(f"sync_booking: booking {booking_id} not found")
        return None

    previous = booking.status
    new_status = aggregate_status(statuses)
    changed = new_status is not None and new_status != previous
    if changed:
        now = datetime.now(timezone.utc)
        booking.status = new_status
        if new_status == OrderStatus.COMPLETED and booking.completed_at is None:
            booking.completed_at = now
        if new_status == OrderStatus.CANCELLED and booking.cancelled_at is None:
            booking.cancelled_at = now
        logger.info(f"Booking {booking.booking_id}: {previous.value} → {new_status.value}")
    await db.commit()

    # ── Side effects ──────────────────────────────────────────
    has_completed_item = OrderStatus.COMPLETED in statuses

    if booking.type == BookingType.PLAN_PURCHASE and has_completed_item:
        await _run_side_effect(db, "plan activation", _activate_plan(db, booking))

    if booking.type == BookingType.SOS and has_completed_item:
        await _run_side_effect(
            db, "SOS resolution", _resolve_linked_alert(db, booking, broadcaster, actor_id)
        )

    if changed:
        await _run_side_effect(
            db,
            "status notification",
            dispatch_notification(
                db,
                booking.user_id,
                NotificationType.BOOKING_STATUS,
                {"booking_ref": booking.booking_id, "status": new_status.value.replace("_", " ").lower()},
                booking_id=booking.id,
            ),
        )

    return await load_booking(db, booking_id)


async def _run_side_effect(db: AsyncSession, label: str, work) -> None:
    try:
        await work
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(f"Booking sync side effect failed: {label}")


async def _activate_plan(db: AsyncSession, booking: Booking) -> None:
    """PENDING → COMPLETED on the plan transaction gates the activation to exactly once."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(PlanTransaction)
        .where(
            PlanTransaction.booking_id == booking.id,
            PlanTransaction.status == TransactionStatus.PENDING,
        )
        .values(status=TransactionStatus.COMPLETED, completed_at=now)
    )
    if result.rowcount != 1:
        return

    txn = (
        await db.execute(select(PlanTransaction).where(PlanTransaction.booking_id == booking.id))
    ).scalar_one()
    plan = await db.get(Plan, txn.plan_id)
    expires_at = now + timedelta(days=plan.validity_days)

    user_plan = await get_user_plan(db, txn.user_id)
    if user_plan is None:
        db.add(UserPlan(
            user_id=txn.user_id,
            active_plan_id=plan.id,
            activated_at=now,
            expires_at=expires_at,
        ))
    else:
        user_plan.active_plan_id = plan.id
        user_plan.activated_at = now
        user_plan.expires_at = expires_at
    await db.flush()

    await add_credits(db, txn.user_id, txn.credits)
    await dispatch_notification(
        db,
        txn.user_id,
        NotificationType.PLAN_ACTIVATED,
        {"plan_name": plan.name, "credits": txn.credits},
        booking_id=booking.id,
    )
    logger.info(f"Plan {plan.name} activated for user {txn.user_id} until {expires_at.date()}")


async def _resolve_linked_alert(
    db: AsyncSession,
    booking: Booking,
    broadcaster: Optional[SOSBroadcaster],
    actor_id: Optional[uuid.UUID],
) -> None:
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(SOSAlert)
        .where(SOSAlert.booking_id == booking.id, SOSAlert.status.in_(ACTIVE_SOS_STATES))
        .values(status=SOSStatus.RESOLVED, resolved_at=now, resolved_by_id=actor_id, updated_at=now)
    )
    if result.rowcount != 1:
        return

    alert = (
        await db.execute(
            select(SOSAlert)
            .where(SOSAlert.booking_id == booking.id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    alert.logs = [
        *(alert.logs or []),
        {
            "action": "RESOLVED",
            "timestamp": now.isoformat(),
            "performed_by": str(actor_id) if actor_id else "system",
            "details": "Job completed",
        },
    ]
    await db.flush()
    logger.info(f"SOS {alert.alert_id} resolved by job completion")

    if broadcaster is not None:
        await broadcaster.publish(SOS_RESOLVED, alert_payload(alert))
