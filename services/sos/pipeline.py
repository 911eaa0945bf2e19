"""
services/sos/pipeline.py
Emergency requests.

Triggering an SOS writes a synthetic, already-paid SOS booking with one
item (so it flows through assignment and the job lifecycle like any other
order) plus the SOSAlert that admins track. The alert OTP doubles as the
item's end-job OTP.

Eligibility:
    plan path  - plan holder has an active plan with allow_sos and enough credits
    free path  - fewer than MAX_FREE_SOS_COUNT earlier alerts
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.assignment.engine import auto_assign_booking
from services.booking.state_machine import can_transition, ensure_cancellable, is_terminal, transition_item
from services.booking.sync import ACTIVE_SOS_STATES, append_action, load_booking, sync_booking
from services.notification.router import notify_safely
from services.plan.wallet import add_credits, deduct_credits, get_active_plan, resolve_plan_holder
from services.sos.broadcaster import (
    SOS_ACKNOWLEDGED,
    SOS_ACTIVE,
    SOS_ALERT,
    SOS_CANCELLED,
    SOS_RESOLVED,
    SOSBroadcaster,
    alert_payload,
)
from shared.models.models import (
    Booking,
    BookingType,
    FamilyMember,
    NotificationType,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Service,
    SOSAlert,
    SOSStatus,
    User,
)
from shared.utils.identifiers import generate_sos_id
from shared.utils.security import generate_otp, otp_matches

logger = logging.getLogger(__name__)

DEFAULT_ITEM_NAME = "Emergency assistance"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _log_entry(action: str, performed_by: str, details: Optional[str] = None) -> dict:
    return {
        "action": action,
        "timestamp": _now().isoformat(),
        "performed_by": performed_by,
        "details": details,
    }


def _append_log(alert: SOSAlert, action: str, performed_by: str, details: Optional[str] = None) -> None:
    alert.logs = [*(alert.logs or []), _log_entry(action, performed_by, details)]


async def _reload(db: AsyncSession, alert_pk: uuid.UUID) -> SOSAlert:
    return await db.get(SOSAlert, alert_pk, populate_existing=True)


async def _publish(broadcaster: Optional[SOSBroadcaster], event: str, alert: SOSAlert) -> None:
    if broadcaster is not None:
        await broadcaster.publish(event, alert_payload(alert))


# ── Lookups ───────────────────────────────────────────────────

async def get_active_alert(db: AsyncSession, user_id: uuid.UUID) -> Optional[SOSAlert]:
    result = await db.execute(
        select(SOSAlert)
        .where(SOSAlert.user_id == user_id, SOSAlert.status.in_(ACTIVE_SOS_STATES))
        .order_by(SOSAlert.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_alert(db: AsyncSession, alert_pk: uuid.UUID) -> SOSAlert:
    alert = await _reload(db, alert_pk)
    if alert is None:
        raise HTTPException(status_code=404, detail="SOS alert not found")
    return alert


async def list_active_alerts(db: AsyncSession) -> List[SOSAlert]:
    """Admin console feed, oldest emergency first."""
    result = await db.execute(
        select(SOSAlert)
        .where(SOSAlert.status.in_(ACTIVE_SOS_STATES))
        .order_by(SOSAlert.created_at)
    )
    return list(result.scalars().all())


async def get_sos_history(db: AsyncSession, user: User, limit: int = 50) -> List[SOSAlert]:
    result = await db.execute(
        select(SOSAlert)
        .where(SOSAlert.user_id == user.id)
        .order_by(SOSAlert.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# ── Trigger ───────────────────────────────────────────────────

async def _validate_targets(
    db: AsyncSession,
    user: User,
    family_member_id: Optional[uuid.UUID],
    service_id: Optional[uuid.UUID],
) -> Optional[Service]:
    if family_member_id is not None:
        member = await db.get(FamilyMember, family_member_id)
        if member is None or member.owner_id != user.id:
            raise HTTPException(status_code=400, detail="Family member not found")
    if service_id is None:
        return None
    service = await db.get(Service, service_id)
    if service is None or not service.is_active:
        raise HTTPException(status_code=400, detail="Service not found or inactive")
    return service


async def _charge_for_sos(db: AsyncSession, user: User) -> Tuple[uuid.UUID, int]:
    """Returns (plan holder id, credits charged). Raises 400 when no path applies."""
    holder_id = await resolve_plan_holder(db, user)
    plan = await get_active_plan(db, holder_id)
    cost = settings.SOS_CREDIT_COST
    if plan is not None and plan.allow_sos and await deduct_credits(db, holder_id, cost):
        return holder_id, cost

    # Plan-paid alerts do not use up the free allowance
    prior = await db.scalar(
        select(func.count(SOSAlert.id)).where(
            SOSAlert.user_id == user.id,
            SOSAlert.credits_charged == 0,
        )
    )
    if prior < settings.MAX_FREE_SOS_COUNT:
        return holder_id, 0

    raise HTTPException(
        status_code=400,
        detail="SOS requires an active plan with SOS coverage and enough credits",
    )


async def _discard_booking(
    db: AsyncSession, booking_pk: uuid.UUID, holder_id: uuid.UUID, credits: int
) -> None:
    """Undo a booking whose alert could not be written."""
    await db.execute(delete(OrderItem).where(OrderItem.booking_id == booking_pk))
    await db.execute(delete(Booking).where(Booking.id == booking_pk))
    await add_credits(db, holder_id, credits)
    await db.commit()
    logger.warning(f"Discarded orphan SOS booking {booking_pk}, refunded {credits} credits")


async def trigger_sos(
    db: AsyncSession,
    user: User,
    location: dict,
    family_member_id: Optional[uuid.UUID] = None,
    service_id: Optional[uuid.UUID] = None,
    broadcaster: Optional[SOSBroadcaster] = None,
) -> Tuple[SOSAlert, bool]:
    """
    Raise an emergency. A user with an alert still open gets that alert
    back with the new location instead of a second one.
    Returns (alert, created).
    """
    service = await _validate_targets(db, user, family_member_id, service_id)

    existing = await get_active_alert(db, user.id)
    if existing is not None:
        existing.location = location
        existing.family_member_id = family_member_id
        existing.service_id = service_id
        existing.updated_at = _now()
        _append_log(existing, "LOCATION_UPDATED", f"user:{user.id}")
        await db.commit()
        logger.info(f"SOS {existing.alert_id}: location updated by user {user.id}")
        await _publish(broadcaster, SOS_ACTIVE, existing)
        return existing, False

    holder_id, credits_charged = await _charge_for_sos(db, user)

    now = _now()
    reference = await generate_sos_id(db, now)
    otp = generate_otp()
    booking = Booking(
        booking_id=reference,
        user_id=user.id,
        type=BookingType.SOS,
        address={
            "full_address": location.get("address") or "SOS location",
            "label": "SOS",
            "lat": location["latitude"],
            "lng": location["longitude"],
        },
        status=OrderStatus.CONFIRMED,
        payment_status=PaymentStatus.PAID,
        paid_at=now,
        item_total=Decimal("0.00"),
        total_original_amount=Decimal("0.00"),
        total_amount=Decimal("0.00"),
        credits_used=credits_charged,
        credit_holder_id=holder_id if credits_charged else None,
        payment_breakdown=[],
        items=[
            OrderItem(
                position=0,
                service_id=service.id if service else None,
                name=service.name if service else DEFAULT_ITEM_NAME,
                unit_price=Decimal("0.00"),
                price=Decimal("0.00"),
                quantity=1,
                credit_cost=credits_charged,
                paid_with_credits=bool(credits_charged),
                status=OrderStatus.CONFIRMED,
                start_job_otp=generate_otp(),
                end_job_otp=otp,
            )
        ],
    )
    append_action(booking, "SOS_TRIGGERED", f"user:{user.id}", reference)
    db.add(booking)
    await db.flush()
    booking_pk = booking.id
    await db.commit()

    try:
        alert = SOSAlert(
            alert_id=reference,
            user_id=user.id,
            family_member_id=family_member_id,
            service_id=service_id,
            booking_id=booking_pk,
            location=location,
            status=SOSStatus.TRIGGERED,
            otp=otp,
            credits_charged=credits_charged,
            credit_holder_id=holder_id if credits_charged else None,
            logs=[_log_entry("TRIGGERED", f"user:{user.id}")],
        )
        db.add(alert)
        await db.flush()
        alert_pk = alert.id
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(f"Failed to record SOS alert {reference}, rolling back its booking")
        await _discard_booking(db, booking_pk, holder_id, credits_charged)
        raise

    logger.info(
        f"SOS {reference} triggered by user {user.id} "
        f"({'plan, ' + str(credits_charged) + ' credits' if credits_charged else 'free'})"
    )

    await auto_assign_booking(db, booking_pk, broadcaster)
    alert = await _reload(db, alert_pk)
    await _publish(broadcaster, SOS_ALERT, alert)
    return alert, True


# ── Admin handling ────────────────────────────────────────────

async def acknowledge_sos(
    db: AsyncSession, alert: SOSAlert, actor: User, broadcaster: Optional[SOSBroadcaster] = None
) -> SOSAlert:
    now = _now()
    result = await db.execute(
        update(SOSAlert)
        .where(SOSAlert.id == alert.id, SOSAlert.status == SOSStatus.TRIGGERED)
        .values(
            status=SOSStatus.ACKNOWLEDGED,
            acknowledged_by_id=actor.id,
            acknowledged_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise HTTPException(
            status_code=400,
            detail=f"SOS alert is {SOSStatus(alert.status).value} and cannot be acknowledged",
        )
    alert = await _reload(db, alert.id)
    _append_log(alert, "ACKNOWLEDGED", f"admin:{actor.id}")
    await db.commit()
    logger.info(f"SOS {alert.alert_id} acknowledged by {actor.id}")
    await _publish(broadcaster, SOS_ACKNOWLEDGED, alert)
    return alert


async def _close_alert(
    db: AsyncSession,
    alert: SOSAlert,
    actor: User,
    action: str,
    note: Optional[str],
    broadcaster: Optional[SOSBroadcaster],
) -> SOSAlert:
    """Mark the alert RESOLVED once, then complete its job."""
    now = _now()
    result = await db.execute(
        update(SOSAlert)
        .where(SOSAlert.id == alert.id, SOSAlert.status.in_(ACTIVE_SOS_STATES))
        .values(
            status=SOSStatus.RESOLVED,
            resolved_by_id=actor.id,
            resolved_at=now,
            resolution_note=note,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise HTTPException(status_code=400, detail="SOS alert is already resolved or cancelled")

    alert = await _reload(db, alert.id)
    alert_pk = alert.id
    performed_by = f"{actor.role.value.lower()}:{actor.id}"
    _append_log(alert, action, performed_by, note)

    if alert.booking_id is not None:
        booking = await load_booking(db, alert.booking_id)
        for item in booking.items:
            if is_terminal(item.status) or not can_transition(item.status, OrderStatus.COMPLETED):
                continue
            await transition_item(
                db, item, OrderStatus.COMPLETED, is_sos=True, enforce_otp=False,
                extra_values={"completed_at": now},
            )
        append_action(booking, action, performed_by, note)
        await sync_booking(db, booking.id, broadcaster, actor_id=actor.id)
    else:
        await db.commit()

    alert = await _reload(db, alert_pk)
    logger.info(f"SOS {alert.alert_id} {action.lower()} by {actor.id}")
    await _publish(broadcaster, SOS_RESOLVED, alert)
    return alert


async def resolve_sos(
    db: AsyncSession,
    alert: SOSAlert,
    otp: str,
    actor: User,
    broadcaster: Optional[SOSBroadcaster] = None,
) -> SOSAlert:
    """Close with the OTP the customer holds."""
    if SOSStatus(alert.status) not in ACTIVE_SOS_STATES:
        raise HTTPException(
            status_code=400,
            detail=f"SOS alert is already {SOSStatus(alert.status).value.lower()}",
        )
    if not otp_matches(alert.otp, otp):
        raise HTTPException(status_code=400, detail="Invalid SOS OTP")
    return await _close_alert(db, alert, actor, "RESOLVED", None, broadcaster)


async def override_resolve_sos(
    db: AsyncSession,
    alert: SOSAlert,
    reason: str,
    actor: User,
    broadcaster: Optional[SOSBroadcaster] = None,
) -> SOSAlert:
    """Admin close without the OTP. The reason is mandatory and kept on the alert."""
    reason = (reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="A reason is required to override an SOS")
    if SOSStatus(alert.status) not in ACTIVE_SOS_STATES:
        raise HTTPException(
            status_code=400,
            detail=f"SOS alert is already {SOSStatus(alert.status).value.lower()}",
        )
    return await _close_alert(db, alert, actor, "OVERRIDE_RESOLVED", reason, broadcaster)


# ── Customer cancel ───────────────────────────────────────────

async def cancel_sos(
    db: AsyncSession,
    user: User,
    alert_id: Optional[str] = None,
    broadcaster: Optional[SOSBroadcaster] = None,
) -> SOSAlert:
    if alert_id:
        alert = (
            await db.execute(select(SOSAlert).where(SOSAlert.alert_id == alert_id))
        ).scalar_one_or_none()
        if alert is None or alert.user_id != user.id:
            raise HTTPException(status_code=404, detail="SOS alert not found")
    else:
        alert = await get_active_alert(db, user.id)
        if alert is None:
            raise HTTPException(status_code=404, detail="No active SOS alert")

    if alert.booking_id is not None:
        linked = await load_booking(db, alert.booking_id)
        if linked is not None:
            ensure_cancellable(linked.items)

    now = _now()
    result = await db.execute(
        update(SOSAlert)
        .where(SOSAlert.id == alert.id, SOSAlert.status.in_(ACTIVE_SOS_STATES))
        .values(status=SOSStatus.CANCELLED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise HTTPException(
            status_code=400,
            detail=f"SOS alert is already {SOSStatus(alert.status).value.lower()}",
        )

    alert = await _reload(db, alert.id)
    alert_pk = alert.id
    _append_log(alert, "CANCELLED", f"user:{user.id}")

    if alert.credits_charged:
        await add_credits(db, alert.credit_holder_id or alert.user_id, alert.credits_charged)

    if alert.booking_id is not None:
        booking = await load_booking(db, alert.booking_id)
        for item in booking.items:
            if can_transition(item.status, OrderStatus.CANCELLED):
                await transition_item(db, item, OrderStatus.CANCELLED, enforce_otp=False)
        booking.cancellation_reason = "SOS cancelled by user"
        append_action(booking, "SOS_CANCELLED", f"user:{user.id}")
        await sync_booking(db, booking.id, broadcaster)
    else:
        await db.commit()

    alert = await _reload(db, alert_pk)
    logger.info(f"SOS {alert.alert_id} cancelled by user {user.id}")
    await notify_safely(
        db,
        user.id,
        NotificationType.SOS_UPDATE,
        {"alert_ref": alert.alert_id, "status": "cancelled"},
        booking_id=alert.booking_id,
    )
    alert = await _reload(db, alert_pk)
    await _publish(broadcaster, SOS_CANCELLED, alert)
    return alert
