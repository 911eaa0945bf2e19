"""
services/assignment/engine.py
Matches order items to field partners.

A partner is eligible for an item when it is active, offers the item's
service, covers the booking address (or is not geofenced at all) and is
available at the booking's date/time. Candidates are ordered least recently
assigned first (name, then id, break ties), and a partner not already busy
on the same booking is preferred. Only paid bookings are assigned.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.state_machine import TERMINAL_STATES
from services.booking.sync import append_action, load_booking, sync_booking
from services.notification.router import dispatch_notification
from shared.models.models import (
    Booking,
    NotificationType,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ServicePartner,
    ServiceRegion,
)
from shared.utils.availability import is_partner_available
from shared.utils.geofence import find_containing_regions

logger = logging.getLogger(__name__)

PRE_ASSIGNMENT_STATES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
_ASSIGNED = literal(OrderStatus.ASSIGNED, type_=OrderItem.__table__.c.status.type)


def _booking_coordinates(booking: Booking) -> tuple[Optional[float], Optional[float]]:
    address = booking.address or {}
    lat = address.get("lat", address.get("latitude"))
    lng = address.get("lng", address.get("longitude"))
    if lat is None or lng is None:
        return None, None
    return float(lat), float(lng)


def _covers_location(
    partner: ServicePartner,
    regions_by_id: dict,
    lat: Optional[float],
    lng: Optional[float],
) -> bool:
    region_ids = partner.region_ids or []
    if not region_ids:
        return True
    if lat is None or lng is None:
        return False
    regions = [regions_by_id[str(rid)] for rid in region_ids if str(rid) in regions_by_id]
    return bool(find_containing_regions(lat, lng, regions))


async def find_eligible_partners(
    db: AsyncSession,
    booking: Booking,
    item: OrderItem,
    *,
    check_availability: bool = True,
) -> List[ServicePartner]:
    result = await db.execute(
        select(ServicePartner)
        .where(ServicePartner.is_active == True)  # noqa: E712
        # Least recently assigned first, never-assigned partners ahead of everyone
        .order_by(
            ServicePartner.last_assigned_at.is_not(None),
            ServicePartner.last_assigned_at,
            ServicePartner.name,
            ServicePartner.id,
        )
    )
    partners = list(result.scalars().all())
    # SOS items raised without a service go to any partner on the ground
    if item.service_id is not None:
        service_key = str(item.service_id)
        partners = [p for p in partners if service_key in {str(s) for s in (p.service_ids or [])}]
    if not partners:
        return []

    region_result = await db.execute(select(ServiceRegion))
    regions_by_id = {str(r.id): r for r in region_result.scalars().all()}
    lat, lng = _booking_coordinates(booking)

    eligible = []
    for partner in partners:
        if not _covers_location(partner, regions_by_id, lat, lng):
            continue
        if check_availability and not is_partner_available(
            partner.availability,
            booking.scheduled_date,
            booking.scheduled_time,
            blackout_dates=partner.blackout_dates,
        ):
            continue
        eligible.append(partner)

    return eligible


def select_partner(
    candidates: Sequence[ServicePartner], busy_ids: Sequence[uuid.UUID] = ()
) -> Optional[ServicePartner]:
    """First candidate not already working another item of the booking, else the first one."""
    if not candidates:
        return None
    busy = {str(b) for b in busy_ids if b}
    for partner in candidates:
        if str(partner.id) not in busy:
            return partner
    return candidates[0]


async def assign_partner(
    db: AsyncSession,
    booking: Booking,
    item: OrderItem,
    partner: ServicePartner,
    actor: str = "system",
) -> bool:
    """
    Single conditional UPDATE: only an unassigned, non-terminal item is taken.
    Returns False when someone else got there first (or it was already assigned).
    """
    await db.flush()
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(OrderItem)
        .where(
            OrderItem.id == item.id,
            OrderItem.assigned_partner_id.is_(None),
            OrderItem.status.not_in(list(TERMINAL_STATES)),
        )
        .values(
            assigned_partner_id=partner.id,
            status=case(
                (OrderItem.status.in_(PRE_ASSIGNMENT_STATES), _ASSIGNED),
                else_=OrderItem.status,
            ),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    partner.last_assigned_at = now
    await db.refresh(item)
    append_action(booking, "PARTNER_ASSIGNED", actor, f"{item.name} → {partner.name}")
    await db.flush()

    logger.info(
        f"Assigned partner {partner.name} ({partner.id}) to item {item.id} "
        f"of booking {booking.booking_id}"
    )

    if partner.user_id:
        await dispatch_notification(
            db,
            partner.user_id,
            NotificationType.JOB_ASSIGNED,
            {"item_name": item.name, "booking_ref": booking.booking_id},
            booking_id=booking.id,
        )
    return True


async def auto_assign_item(
    db: AsyncSession,
    booking: Booking,
    item: OrderItem,
    busy_ids: Sequence[uuid.UUID] = (),
) -> Optional[ServicePartner]:
    """Assign the best candidate. No-op for items that already have a partner."""
    if item.assigned_partner_id is not None or OrderStatus(item.status) in TERMINAL_STATES:
        return None
    candidates = await find_eligible_partners(db, booking, item)
    partner = select_partner(candidates, busy_ids)
    if partner is None:
        logger.info(f"No eligible partner for item {item.id} of booking {booking.booking_id}")
        return None
    if await assign_partner(db, booking, item, partner):
        return partner
    return None


async def auto_assign_booking(db: AsyncSession, booking_id: uuid.UUID, broadcaster=None) -> int:
    """
    Best effort: try every unassigned item and never raise to the caller.
    Returns the number of items assigned.
    """
    assigned = 0
    try:
        booking = await load_booking(db, booking_id)
        if booking is None or booking.payment_status != PaymentStatus.PAID:
            return 0
        busy = [i.assigned_partner_id for i in booking.items if i.assigned_partner_id]
        for item in booking.items:
            partner = await auto_assign_item(db, booking, item, busy)
            if partner is not None:
                busy.append(partner.id)
                assigned += 1
        if assigned:
            await sync_booking(db, booking.id, broadcaster)
        else:
            await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(f"Auto-assignment failed for booking {booking_id}")
    return assigned


async def manual_assign(
    db: AsyncSession,
    item_id: uuid.UUID,
    partner_id: uuid.UUID,
    actor: str,
    *,
    override_availability: bool = False,
) -> OrderItem:
    """Admin assignment. Same eligibility rules; availability can be overridden."""
    item = await db.get(OrderItem, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Order item not found")
    if item.assigned_partner_id is not None:
        raise HTTPException(status_code=400, detail="Order item already has an assigned partner")
    if OrderStatus(item.status) in TERMINAL_STATES:
        raise HTTPException(status_code=400, detail=f"Order item is already {item.status.value}")

    booking = await load_booking(db, item.booking_id)
    if booking.payment_status != PaymentStatus.PAID:
        raise HTTPException(status_code=400, detail="Booking must be paid before a partner is assigned")

    candidates = await find_eligible_partners(
        db, booking, item, check_availability=not override_availability
    )
    partner = next((p for p in candidates if p.id == partner_id), None)
    if partner is None:
        raise HTTPException(status_code=400, detail="Partner is not eligible for this order item")

    if not await assign_partner(db, booking, item, partner, actor=actor):
        raise HTTPException(status_code=400, detail="Order item already has an assigned partner")
    await sync_booking(db, booking.id)
    await db.refresh(item)
    return item
