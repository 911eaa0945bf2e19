"""
tests/test_partner_jobs.py
Partner job lifecycle: travel updates, OTP start/end, hold/resume, and the
admin correction path.
"""

import uuid

import pytest
from sqlalchemy import select

from shared.models.models import AdminAuditLog, Booking, OrderStatus, ServicePartner, UserRole
from tests.conftest import (
    ALL_WEEK,
    auth_headers,
    create_booking,
    make_user,
    pay_booking,
    reload,
)


async def _assigned_job(client, user, service) -> dict:
    """Paid booking auto-assigned to the fixture partner; returns the customer's item view."""
    body = await create_booking(client, user, service)
    await pay_booking(client, user, body["id"])
    booking = await client.get(f"/bookings/{body['id']}", headers=auth_headers(user))
    item = booking.json()["items"][0]
    assert item["status"] == "ASSIGNED"
    return {"booking_id": body["id"], **item}


async def _post(client, partner_user, job, action, payload=None):
    return await client.post(
        f"/partner/jobs/{job['id']}/{action}", json=payload or {}, headers=auth_headers(partner_user)
    )


async def _walk_to_site(client, partner_user, job):
    for step in ("EN_ROUTE", "REACHED"):
        resp = await _post(client, partner_user, job, "status", {"status": step})
        assert resp.status_code == 200, resp.text


# ── Listing ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_job_list_hides_otps(client, user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)

    resp = await client.get("/partner/jobs", headers=auth_headers(partner_user))

    assert resp.status_code == 200
    [card] = resp.json()
    assert card["id"] == job["id"]
    assert card["booking_type"] == "SERVICE"
    assert card["address"]["full_address"] == "12 MG Road, Bengaluru"
    assert "start_job_otp" not in card
    assert "end_job_otp" not in card

    filtered = await client.get("/partner/jobs?status_filter=COMPLETED", headers=auth_headers(partner_user))
    assert filtered.json() == []


@pytest.mark.asyncio
async def test_customers_cannot_use_partner_endpoints(client, user, partner):
    resp = await client.get("/partner/jobs", headers=auth_headers(user))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_other_partners_job_is_missing(client, db, user, service, partner, region):
    job = await _assigned_job(client, user, service)
    stranger_user = await make_user(db, UserRole.PARTNER, name="Other Partner")
    db.add(ServicePartner(
        user_id=stranger_user.id, name="Other Partner", service_ids=[str(service.id)],
        region_ids=[str(region.id)], availability=ALL_WEEK, blackout_dates=[],
    ))
    await db.commit()

    resp = await client.get(f"/partner/jobs/{job['id']}", headers=auth_headers(stranger_user))
    assert resp.status_code == 404
    moved = await _post(client, stranger_user, job, "status", {"status": "EN_ROUTE"})
    assert moved.status_code == 404


# ── Lifecycle ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_full_job_lifecycle(client, db, user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)
    booking_id = uuid.UUID(job["booking_id"])

    await _post(client, partner_user, job, "status", {"status": "EN_ROUTE"})
    assert (await reload(db, Booking, booking_id)).status == OrderStatus.EN_ROUTE

    await _post(client, partner_user, job, "status", {"status": "REACHED"})

    wrong = await _post(client, partner_user, job, "start", {"otp": "0000"})
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Invalid start OTP"

    started = await _post(client, partner_user, job, "start", {"otp": job["start_job_otp"]})
    assert started.status_code == 200
    assert started.json()["status"] == "IN_PROGRESS"
    assert started.json()["started_at"] is not None

    held = await _post(client, partner_user, job, "hold", {"reason": "Waiting for parts/materials"})
    assert held.json()["is_on_hold"] is True
    blocked = await _post(client, partner_user, job, "end", {"otp": job["end_job_otp"]})
    assert blocked.status_code == 400
    assert blocked.json()["detail"] == "Resume the job before ending it"

    resumed = await _post(client, partner_user, job, "resume")
    assert resumed.json()["is_on_hold"] is False
    assert resumed.json()["hold_history"][0]["hold_ended_at"] is not None

    bad_end = await _post(client, partner_user, job, "end", {"otp": "0000"})
    assert bad_end.status_code == 400
    assert bad_end.json()["detail"] == "Invalid end OTP"

    ended = await _post(client, partner_user, job, "end", {"otp": job["end_job_otp"]})
    assert ended.status_code == 200
    assert ended.json()["status"] == "COMPLETED"
    assert ended.json()["active_work_seconds"] >= 0

    booking = await reload(db, Booking, booking_id)
    assert booking.status == OrderStatus.COMPLETED
    assert booking.completed_at is not None
    actions = [entry["action"] for entry in booking.action_log]
    assert actions.index("JOB_STARTED") < actions.index("JOB_COMPLETED")


@pytest.mark.asyncio
async def test_start_only_from_reached(client, user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)

    early = await _post(client, partner_user, job, "start", {"otp": job["start_job_otp"]})
    assert early.status_code == 400

    await _walk_to_site(client, partner_user, job)
    await _post(client, partner_user, job, "start", {"otp": job["start_job_otp"]})
    again = await _post(client, partner_user, job, "start", {"otp": job["start_job_otp"]})
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_travel_updates_cannot_go_backwards(client, user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)
    await _walk_to_site(client, partner_user, job)

    resp = await _post(client, partner_user, job, "status", {"status": "EN_ROUTE"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid status transition from REACHED to EN_ROUTE"


@pytest.mark.asyncio
async def test_partner_cannot_jump_to_in_progress(client, user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)
    resp = await _post(client, partner_user, job, "status", {"status": "IN_PROGRESS"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_hold_rules(client, user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)

    not_started = await _post(client, partner_user, job, "hold", {"reason": "Scheduled break"})
    assert not_started.status_code == 400

    await _walk_to_site(client, partner_user, job)
    await _post(client, partner_user, job, "start", {"otp": job["start_job_otp"]})

    unknown = await _post(client, partner_user, job, "hold", {"reason": "Lunch"})
    assert unknown.status_code == 422
    no_remark = await _post(client, partner_user, job, "hold", {"reason": "Other"})
    assert no_remark.status_code == 400
    not_held = await _post(client, partner_user, job, "resume")
    assert not_held.status_code == 400

    ok = await _post(client, partner_user, job, "hold", {"reason": "Other", "custom_remark": "Power cut"})
    assert ok.status_code == 200
    twice = await _post(client, partner_user, job, "hold", {"reason": "Scheduled break"})
    assert twice.status_code == 400


@pytest.mark.asyncio
async def test_customer_cannot_cancel_after_arrival(client, user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)
    await _walk_to_site(client, partner_user, job)

    resp = await client.post(f"/bookings/{job['booking_id']}/cancel", json={}, headers=auth_headers(user))

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Booking cannot be cancelled after the professional has reached"


# ── Admin corrections ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_completes_item_without_otp(client, db, user, admin_user, service, partner):
    job = await _assigned_job(client, user, service)

    resp = await client.post(
        f"/admin/order-items/{job['id']}/status",
        json={"status": "COMPLETED", "reason": "Customer confirmed by phone"},
        headers=auth_headers(admin_user),
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"
    booking = await reload(db, Booking, uuid.UUID(job["booking_id"]))
    assert booking.status == OrderStatus.COMPLETED
    assert booking.action_log[-1]["details"] == "Customer confirmed by phone"

    log = (await db.execute(select(AdminAuditLog))).scalar_one()
    assert log.action == "CORRECT_ITEM_STATUS"
    assert log.payload == {"from": "ASSIGNED", "to": "COMPLETED", "reason": "Customer confirmed by phone"}


@pytest.mark.asyncio
async def test_admin_correction_keeps_transition_rules(client, user, admin_user, service, partner, partner_user):
    job = await _assigned_job(client, user, service)
    await _walk_to_site(client, partner_user, job)
    headers = auth_headers(admin_user)

    back = await client.post(
        f"/admin/order-items/{job['id']}/status",
        json={"status": "CONFIRMED", "reason": "Reopen"}, headers=headers,
    )
    assert back.status_code == 400

    short = await client.post(
        f"/admin/order-items/{job['id']}/status",
        json={"status": "COMPLETED", "reason": ""}, headers=headers,
    )
    assert short.status_code == 422


@pytest.mark.asyncio
async def test_admin_endpoints_require_admin(client, user, service, partner):
    job = await _assigned_job(client, user, service)
    resp = await client.post(
        f"/admin/order-items/{job['id']}/status",
        json={"status": "COMPLETED", "reason": "Self service"},
        headers=auth_headers(user),
    )
    assert resp.status_code == 403
