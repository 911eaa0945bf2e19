"""
tests/test_admin.py
Admin booking oversight and the audit log.
"""

import pytest

from shared.models.models import AdminAuditLog
from tests.conftest import auth_headers, create_booking, make_user


@pytest.mark.asyncio
async def test_bookings_listing_filters_and_pages(client, db, user, admin_user, service):
    first = await create_booking(client, user, service)
    await create_booking(client, user, service)
    other = await make_user(db, name="Other Customer")
    await create_booking(client, other, service)
    await client.post(f"/bookings/{first['id']}/cancel", json={}, headers=auth_headers(user))
    headers = auth_headers(admin_user)

    everything = (await client.get("/admin/bookings?page_size=2", headers=headers)).json()
    assert everything["total"] == 3
    assert everything["pages"] == 2
    assert len(everything["items"]) == 2

    mine = (await client.get(f"/admin/bookings?user_id={user.id}", headers=headers)).json()
    assert mine["total"] == 2

    cancelled = (await client.get("/admin/bookings?status_filter=CANCELLED", headers=headers)).json()
    assert [b["id"] for b in cancelled["items"]] == [first["id"]]

    plans = (await client.get("/admin/bookings?booking_type=PLAN_PURCHASE", headers=headers)).json()
    assert plans == {"items": [], "total": 0, "page": 1, "page_size": 20, "pages": 0}


@pytest.mark.asyncio
async def test_admin_routes_reject_other_roles(client, user, partner_user):
    for who in (user, partner_user):
        resp = await client.get("/admin/bookings", headers=auth_headers(who))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Required role: ['ADMIN']"


@pytest.mark.asyncio
async def test_audit_log_lists_actions_with_admin_name(client, db, admin_user):
    db.add(AdminAuditLog(admin_id=admin_user.id, action="ASSIGN_PARTNER", entity_type="order_item",
                         entity_id="item-1", payload={"partner_id": "p-1"}))
    db.add(AdminAuditLog(admin_id=admin_user.id, action="ACKNOWLEDGE_SOS", entity_type="sos_alert",
                         entity_id="SOS-20261019-001", payload={}))
    await db.commit()
    headers = auth_headers(admin_user)

    resp = await client.get("/admin/audit-logs", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["total"] == 2
    assert {entry["admin_name"] for entry in resp.json()["items"]} == {admin_user.name}

    filtered = (await client.get("/admin/audit-logs?action=assign_partner", headers=headers)).json()
    assert filtered["total"] == 1
    [entry] = filtered["items"]
    assert entry["entity_id"] == "item-1"
    assert entry["payload"] == {"partner_id": "p-1"}

    by_entity = (await client.get("/admin/audit-logs?entity_type=sos_alert", headers=headers)).json()
    assert [e["action"] for e in by_entity["items"]] == ["ACKNOWLEDGE_SOS"]
