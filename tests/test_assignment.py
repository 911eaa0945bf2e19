"""
tests/test_assignment.py
Automatic assignment on payment, eligibility rules, retries and manual assignment.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from services.assignment.engine import auto_assign_booking, select_partner
from shared.models.models import (
    AdminAuditLog,
    Booking,
    Notification,
    NotificationType,
    OrderItem,
    OrderStatus,
    ServicePartner,
    UserRole,
)
from tasks.assignment_tasks import find_unassigned_bookings
from tests.conftest import (
    ALL_WEEK,
    OUTSIDE_ADDRESS,
    auth_headers,
    create_booking,
    make_user,
    pay_booking,
    reload,
)


async def _paid_booking(client, user, service, **overrides) -> uuid.UUID:
    body = await create_booking(client, user, service, **overrides)
    await pay_booking(client, user, body["id"])
    return uuid.UUID(body["id"])


# ── Auto-assign ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_payment_assigns_eligible_partner(client, db, user, service, partner, partner_user):
    booking_id = await _paid_booking(client, user, service)

    booking = await reload(db, Booking, booking_id)
    item = booking.items[0]
    assert item.assigned_partner_id == partner.id
    assert item.status == OrderStatus.ASSIGNED
    assert booking.status == OrderStatus.ASSIGNED
    assert "PARTNER_ASSIGNED" in [entry["action"] for entry in booking.action_log]
    assert (await reload(db, ServicePartner, partner.id)).last_assigned_at is not None

    notes = (
        await db.execute(select(Notification).where(Notification.user_id == partner_user.id))
    ).scalars().all()
    assert [n.type for n in notes] == [NotificationType.JOB_ASSIGNED]


@pytest.mark.asyncio
async def test_address_outside_region_stays_unassigned(client, db, user, service, partner):
    booking_id = await _paid_booking(client, user, service, address=OUTSIDE_ADDRESS)

    booking = await reload(db, Booking, booking_id)
    assert booking.items[0].assigned_partner_id is None
    assert booking.status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_partner_without_regions_covers_everywhere(client, db, user, service, partner):
    partner.region_ids = []
    await db.commit()

    booking_id = await _paid_booking(client, user, service, address=OUTSIDE_ADDRESS)

    assert (await reload(db, Booking, booking_id)).items[0].assigned_partner_id == partner.id


@pytest.mark.asyncio
async def test_blackout_date_blocks_assignment(client, db, user, service, partner):
    day = date.today() + timedelta(days=2)
    partner.blackout_dates = [day.isoformat()]
    await db.commit()

    booking_id = await _paid_booking(client, user, service, scheduled_date=str(day), scheduled_time="10:00")

    assert (await reload(db, Booking, booking_id)).items[0].assigned_partner_id is None


@pytest.mark.asyncio
async def test_least_recently_assigned_partner_wins(client, db, user, service, partner, region):
    partner.last_assigned_at = datetime.now(timezone.utc) - timedelta(hours=1)
    other_user = await make_user(db, UserRole.PARTNER, name="Zoya Partner")
    fresh = ServicePartner(
        user_id=other_user.id, name="Zoya Partner", service_ids=[str(service.id)],
        region_ids=[str(region.id)], availability=ALL_WEEK, blackout_dates=[],
    )
    db.add(fresh)
    await db.commit()

    booking_id = await _paid_booking(client, user, service)

    assert (await reload(db, Booking, booking_id)).items[0].assigned_partner_id == fresh.id


@pytest.mark.asyncio
async def test_auto_assign_is_idempotent(client, db, user, service, partner):
    booking_id = await _paid_booking(client, user, service)

    assert await auto_assign_booking(db, booking_id) == 0
    booking = await reload(db, Booking, booking_id)
    assert [e["action"] for e in booking.action_log].count("PARTNER_ASSIGNED") == 1


@pytest.mark.asyncio
async def test_retry_picks_up_items_once_a_partner_exists(client, db, user, service, partner):
    partner.is_active = False
    await db.commit()
    booking_id = await _paid_booking(client, user, service, quantity=1)
    assert await find_unassigned_bookings(db) == [booking_id]

    partner.is_active = True
    await db.commit()
    assert await auto_assign_booking(db, booking_id) == 1
    assert await find_unassigned_bookings(db) == []


@pytest.mark.asyncio
async def test_unpaid_bookings_are_not_retried(client, db, user, service, partner):
    await create_booking(client, user, service)
    assert await find_unassigned_bookings(db) == []


def test_select_partner_prefers_idle_candidate():
    busy = SimpleNamespace(id=uuid.uuid4())
    idle = SimpleNamespace(id=uuid.uuid4())
    assert select_partner([busy, idle], busy_ids=[busy.id]) is idle
    assert select_partner([busy], busy_ids=[busy.id]) is busy
    assert select_partner([]) is None


# ── Manual assignment ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_assigns_with_availability_override(client, db, user, admin_user, service, partner):
    partner.availability = []
    await db.commit()
    booking_id = await _paid_booking(client, user, service)
    item_id = (await reload(db, Booking, booking_id)).items[0].id
    headers = auth_headers(admin_user)

    strict = await client.get(f"/admin/order-items/{item_id}/eligible-partners", headers=headers)
    assert strict.json() == []
    relaxed = await client.get(
        f"/admin/order-items/{item_id}/eligible-partners?include_unavailable=true", headers=headers
    )
    assert [p["id"] for p in relaxed.json()] == [str(partner.id)]

    refused = await client.post(
        f"/admin/order-items/{item_id}/assign", json={"partner_id": str(partner.id)}, headers=headers
    )
    assert refused.status_code == 400

    resp = await client.post(
        f"/admin/order-items/{item_id}/assign",
        json={"partner_id": str(partner.id), "override_availability": True},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "ASSIGNED"
    assert resp.json()["assigned_partner_id"] == str(partner.id)

    log = (await db.execute(select(AdminAuditLog))).scalar_one()
    assert log.action == "ASSIGN_PARTNER"
    assert log.entity_id == str(item_id)
    assert log.payload["override_availability"] is True


@pytest.mark.asyncio
async def test_item_cannot_be_assigned_twice(client, db, user, admin_user, service, partner, region):
    booking_id = await _paid_booking(client, user, service)
    item_id = (await reload(db, Booking, booking_id)).items[0].id

    other_user = await make_user(db, UserRole.PARTNER, name="Second Partner")
    other = ServicePartner(
        user_id=other_user.id, name="Second Partner", service_ids=[str(service.id)],
        region_ids=[str(region.id)], availability=ALL_WEEK, blackout_dates=[],
    )
    db.add(other)
    await db.commit()

    resp = await client.post(
        f"/admin/order-items/{item_id}/assign", json={"partner_id": str(other.id)},
        headers=auth_headers(admin_user),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Order item already has an assigned partner"
    assert (await reload(db, OrderItem, item_id)).assigned_partner_id == partner.id


@pytest.mark.asyncio
async def test_partner_without_the_service_is_not_eligible(client, db, user, admin_user, service, partner):
    partner.service_ids = [str(uuid.uuid4())]
    await db.commit()
    booking_id = await _paid_booking(client, user, service)
    item_id = (await reload(db, Booking, booking_id)).items[0].id

    resp = await client.post(
        f"/admin/order-items/{item_id}/assign",
        json={"partner_id": str(partner.id), "override_availability": True},
        headers=auth_headers(admin_user),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Partner is not eligible for this order item"


@pytest.mark.asyncio
async def test_unpaid_booking_cannot_be_assigned(client, db, user, admin_user, service, partner):
    body = await create_booking(client, user, service)
    item_id = uuid.UUID(body["items"][0]["id"])

    resp = await client.post(
        f"/admin/order-items/{item_id}/assign",
        json={"partner_id": str(partner.id), "override_availability": True},
        headers=auth_headers(admin_user),
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Booking must be paid before a partner is assigned"
    item = await reload(db, OrderItem, item_id)
    assert item.assigned_partner_id is None
    assert item.status == OrderStatus.PENDING
