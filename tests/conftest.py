"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, ASGI client with dependency
overrides (DB, Redis, payment gateway, SOS broadcaster), seeded users,
partner, region, service and plan.
"""

import os

# Settings are read at import time, so the environment goes first.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pybreaker import CircuitBreakerError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from services.payment.gateway import PaymentGatewayError, get_payment_gateway
from services.sos.broadcaster import get_broadcaster
from shared.models.models import (
    Plan,
    Service,
    ServicePartner,
    ServiceRegion,
    User,
    UserCredits,
    UserPlan,
    UserRole,
)
from shared.utils.security import create_access_token, razorpay_signature, verify_razorpay_signature

ALL_WEEK = [
    {"day": day, "start_time": "00:00", "end_time": "23:59", "is_available": True}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
]

# Square around central Bengaluru
REGION_POLYGON = [
    {"lat": 12.90, "lng": 77.50},
    {"lat": 12.90, "lng": 77.70},
    {"lat": 13.05, "lng": 77.70},
    {"lat": 13.05, "lng": 77.50},
]
INSIDE_ADDRESS = {"full_address": "12 MG Road, Bengaluru", "lat": 12.97, "lng": 77.59}
OUTSIDE_ADDRESS = {"full_address": "1 Marine Drive, Mumbai", "lat": 18.94, "lng": 72.82}


# ── Fakes ─────────────────────────────────────────────────────

class FakeGateway:
    """Records orders; `fail` switches it to raise like the real client."""

    def __init__(self):
        self.key_id = "rzp_test_key"
        self.key_secret = "rzp_test_secret"
        self.orders = []
        self.fail = None
        self._ids = count(1)

    async def create_order(self, amount_subunits, receipt, notes=None):
        if self.fail == "breaker":
            raise CircuitBreakerError("razorpay circuit open")
        if self.fail == "gateway":
            raise PaymentGatewayError("Bad request")
        order = {"id": f"order_test_{next(self._ids)}", "amount": amount_subunits, "receipt": receipt}
        self.orders.append(order)
        return order

    def verify_signature(self, order_id, payment_id, signature):
        return verify_razorpay_signature(order_id, payment_id, signature, self.key_secret)


class RecordingBroadcaster:
    def __init__(self):
        self.events = []

    async def publish(self, event, payload):
        self.events.append((event, payload))
        return True

    def names(self):
        return [event for event, _ in self.events]


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest_asyncio.fixture
async def client(session_factory, gateway, broadcaster):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    redis = AsyncMock()
    redis.exists.return_value = 0

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def reload(db: AsyncSession, model, pk):
    """Fresh copy of a row written by a request handled in another session."""
    return await db.get(model, pk, populate_existing=True)


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.phone)
    return {"Authorization": f"Bearer {token}"}


# ── Seed Data ─────────────────────────────────────────────────

async def make_user(db: AsyncSession, role: UserRole = UserRole.USER, phone: str = None, name: str = "Test User") -> User:
    user = User(
        id=uuid.uuid4(),
        name=name,
        phone=phone or f"+9198{uuid.uuid4().int % 10**8:08d}",
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def user(db):
    return await make_user(db, UserRole.USER, phone="+919876543210", name="Asha Customer")


@pytest_asyncio.fixture
async def partner_user(db):
    return await make_user(db, UserRole.PARTNER, phone="+919811111111", name="Ravi Partner")


@pytest_asyncio.fixture
async def admin_user(db):
    return await make_user(db, UserRole.ADMIN, phone="+919822222222", name="Meera Admin")


@pytest_asyncio.fixture
async def region(db):
    region = ServiceRegion(id=uuid.uuid4(), name="Central Bengaluru", polygon=REGION_POLYGON)
    db.add(region)
    await db.commit()
    return region


@pytest_asyncio.fixture
async def service(db):
    service = Service(
        id=uuid.uuid4(),
        name="AC Repair",
        price=Decimal("500.00"),
        credit_cost=2,
        customer_visit_required=True,
    )
    db.add(service)
    await db.commit()
    return service


@pytest_asyncio.fixture
async def partner(db, partner_user, service, region):
    partner = ServicePartner(
        id=uuid.uuid4(),
        user_id=partner_user.id,
        name="Ravi Partner",
        phone=partner_user.phone,
        service_ids=[str(service.id)],
        region_ids=[str(region.id)],
        availability=ALL_WEEK,
        blackout_dates=[],
    )
    db.add(partner)
    await db.commit()
    return partner


@pytest_asyncio.fixture
async def plan(db):
    plan = Plan(
        id=uuid.uuid4(),
        name="Gold",
        price=Decimal("999.00"),
        total_credits=10,
        validity_days=365,
        allow_sos=True,
    )
    db.add(plan)
    await db.commit()
    return plan


# ── Flow Helpers ──────────────────────────────────────────────

def booking_payload(service, quantity: int = 1, **overrides) -> dict:
    payload = {
        "items": [{"service_id": str(service.id), "quantity": quantity}],
        "address": INSIDE_ADDRESS,
    }
    payload.update(overrides)
    return payload


async def create_booking(client: AsyncClient, user: User, service, **overrides) -> dict:
    resp = await client.post("/bookings", json=booking_payload(service, **overrides), headers=auth_headers(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def pay_booking(client: AsyncClient, user: User, booking_id: str, payment_id: str = "pay_test_1") -> dict:
    """Create the gateway order and verify a correctly signed payment for it."""
    headers = auth_headers(user)
    order = await client.post("/payments/orders", json={"booking_id": booking_id}, headers=headers)
    assert order.status_code == 200, order.text
    order_id = order.json()["order_id"]
    resp = await client.post(
        "/payments/verify",
        json={
            "booking_id": booking_id,
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": razorpay_signature(order_id, payment_id, "rzp_test_secret"),
        },
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def grant_plan(db: AsyncSession, user: User, plan: Plan, credits: int, days: int = 30) -> None:
    """Give `user` an active plan and a funded wallet without going through checkout."""
    now = datetime.now(timezone.utc)
    db.add(UserPlan(user_id=user.id, active_plan_id=plan.id, activated_at=now, expires_at=now + timedelta(days=days)))
    db.add(UserCredits(user_id=user.id, credits=credits))
    await db.commit()


async def wallet_balance(db: AsyncSession, user_id) -> int:
    row = (
        await db.execute(
            select(UserCredits).where(UserCredits.user_id == user_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    return row.credits if row else 0
