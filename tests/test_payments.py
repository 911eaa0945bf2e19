"""
tests/test_payments.py
Gateway order creation, signature verification and settlement.
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from shared.models.models import (
    Booking,
    BookingType,
    Notification,
    NotificationType,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from shared.utils.security import razorpay_signature
from tests.conftest import INSIDE_ADDRESS, auth_headers, create_booking, make_user, pay_booking, reload


async def _order(client, user, booking_id):
    return await client.post("/payments/orders", json={"booking_id": booking_id}, headers=auth_headers(user))


def _verify_body(booking_id, order_id, payment_id="pay_test_1", signature=None):
    return {
        "booking_id": booking_id,
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or razorpay_signature(order_id, payment_id, "rzp_test_secret"),
    }


# ── Orders ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_order_created_for_booking_total(client, db, gateway, user, service):
    body = await create_booking(client, user, service)

    resp = await _order(client, user, body["id"])

    assert resp.status_code == 200
    data = resp.json()
    assert data["amount"] == 50000
    assert data["currency"] == "INR"
    assert data["key_id"] == "rzp_test_key"
    assert data["order_id"] == "order_test_1"
    assert gateway.orders[0]["receipt"] == body["booking_id"]
    assert (await reload(db, Booking, uuid.UUID(body["id"]))).order_id == "order_test_1"


@pytest.mark.asyncio
async def test_open_circuit_returns_503(client, gateway, user, service):
    body = await create_booking(client, user, service)
    gateway.fail = "breaker"
    resp = await _order(client, user, body["id"])
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_gateway_error_returns_502(client, gateway, user, service):
    body = await create_booking(client, user, service)
    gateway.fail = "gateway"
    resp = await _order(client, user, body["id"])
    assert resp.status_code == 502
    assert "Bad request" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_other_customers_booking_is_missing(client, db, user, service):
    body = await create_booking(client, user, service)
    stranger = await make_user(db, name="Stranger")
    resp = await _order(client, stranger, body["id"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_nothing_payable_confirms_without_gateway(client, db, gateway, user):
    booking = Booking(
        booking_id="BOOK-20261019-900",
        user_id=user.id,
        type=BookingType.SERVICE,
        address=INSIDE_ADDRESS,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        total_amount=Decimal("0.00"),
        items=[OrderItem(name="Inspection", unit_price=Decimal("0"), price=Decimal("0"),
                         status=OrderStatus.PENDING, start_job_otp="1111", end_job_otp="2222")],
    )
    db.add(booking)
    await db.commit()

    resp = await _order(client, user, str(booking.id))

    assert resp.status_code == 200
    assert resp.json()["confirmed"] is True
    assert resp.json()["order_id"] is None
    assert gateway.orders == []
    refreshed = await reload(db, Booking, booking.id)
    assert refreshed.payment_status == PaymentStatus.PAID
    assert refreshed.status == OrderStatus.CONFIRMED


# ── Verify ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_verify_settles_booking(client, db, user, service):
    body = await create_booking(client, user, service)

    result = await pay_booking(client, user, body["id"], payment_id="pay_abc")

    assert result["success"] is True
    assert result["payment_status"] == "PAID"
    assert result["status"] == "CONFIRMED"

    booking = await reload(db, Booking, uuid.UUID(body["id"]))
    assert booking.payment_id == "pay_abc"
    assert booking.paid_at is not None
    assert booking.items[0].status == OrderStatus.CONFIRMED
    assert [entry["action"] for entry in booking.action_log][:2] == ["CREATED", "PAYMENT_CONFIRMED"]

    notes = (await db.execute(select(Notification).where(Notification.user_id == user.id))).scalars().all()
    types = {n.type for n in notes}
    assert NotificationType.PAYMENT_SUCCESS in types


@pytest.mark.asyncio
async def test_bad_signature_rejected(client, db, user, service):
    body = await create_booking(client, user, service)
    order = await _order(client, user, body["id"])

    resp = await client.post(
        "/payments/verify",
        json=_verify_body(body["id"], order.json()["order_id"], signature="deadbeef"),
        headers=auth_headers(user),
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid payment signature"
    booking = await reload(db, Booking, uuid.UUID(body["id"]))
    assert booking.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_order_mismatch_rejected(client, user, service):
    body = await create_booking(client, user, service)
    await _order(client, user, body["id"])

    resp = await client.post(
        "/payments/verify", json=_verify_body(body["id"], "order_other"), headers=auth_headers(user)
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Order does not match this booking"


@pytest.mark.asyncio
async def test_paid_booking_is_settled_once(client, db, user, service):
    body = await create_booking(client, user, service)
    await pay_booking(client, user, body["id"])
    booking = await reload(db, Booking, uuid.UUID(body["id"]))

    again = await client.post(
        "/payments/verify",
        json=_verify_body(body["id"], booking.order_id, payment_id="pay_second"),
        headers=auth_headers(user),
    )
    assert again.status_code == 200
    assert again.json()["message"] == "Payment already verified"
    assert (await reload(db, Booking, booking.id)).payment_id == "pay_test_1"

    new_order = await _order(client, user, body["id"])
    assert new_order.status_code == 400
    assert new_order.json()["detail"] == "Booking is already paid"


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_paid(client, user, service):
    body = await create_booking(client, user, service)
    await client.post(f"/bookings/{body['id']}/cancel", json={}, headers=auth_headers(user))

    resp = await _order(client, user, body["id"])

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Booking is CANCELLED"
