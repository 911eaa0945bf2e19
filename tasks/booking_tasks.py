"""
tasks/booking_tasks.py
Expiry of bookings abandoned at checkout.

A booking still unpaid UNPAID_BOOKING_EXPIRY_MINUTES after creation is
cancelled, its items are cancelled and any credits it reserved go back to
the wallet they came from. Every write is conditional on the booking still
being unpaid, so a payment landing mid-run wins.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings
from shared.models.models import (
    Booking,
    BookingType,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    PlanTransaction,
    TransactionStatus,
    UserCredits,
)
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

EXPIRY_REASON = "Payment window expired, auto-cancelled"


# ── Helpers ───────────────────────────────────────────────────

def _sync_url(url: str) -> str:
    """postgresql+asyncpg:// → postgresql+psycopg2://, sqlite+aiosqlite:// → sqlite://"""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def _get_sync_session() -> Session:
    """Synchronous session; Celery workers run sync."""
    engine = create_engine(_sync_url(settings.DATABASE_URL), pool_pre_ping=True)
    return sessionmaker(bind=engine)()


def _restore_credits(db: Session, user_id, amount: int) -> None:
    if amount <= 0:
        return
    result = db.execute(
        update(UserCredits)
        .where(UserCredits.user_id == user_id)
        .values(credits=UserCredits.credits + amount)
    )
    if result.rowcount == 0:
        db.add(UserCredits(user_id=user_id, credits=amount))


def expire_booking(db: Session, booking: Booking, now: datetime) -> bool:
    """Cancel one unpaid booking. False when it was paid or cancelled meanwhile."""
    entry = {
        "action": "EXPIRED",
        "actor": "system",
        "timestamp": now.isoformat(),
        "details": EXPIRY_REASON,
    }
    result = db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status == OrderStatus.PENDING,
            Booking.payment_status == PaymentStatus.PENDING,
        )
        .values(
            status=OrderStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=EXPIRY_REASON,
            action_log=[*(booking.action_log or []), entry],
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    db.execute(
        update(OrderItem)
        .where(OrderItem.booking_id == booking.id, OrderItem.status == OrderStatus.PENDING)
        .values(status=OrderStatus.CANCELLED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if booking.credits_used:
        _restore_credits(db, booking.credit_holder_id or booking.user_id, booking.credits_used)
    if booking.type == BookingType.PLAN_PURCHASE:
        db.execute(
            update(PlanTransaction)
            .where(
                PlanTransaction.booking_id == booking.id,
                PlanTransaction.status == TransactionStatus.PENDING,
            )
            .values(status=TransactionStatus.FAILED)
            .execution_options(synchronize_session=False)
        )
    return True


# ── Tasks ─────────────────────────────────────────────────────

@celery_app.task
def expire_unpaid_bookings():
    """Beat task: every 5 minutes."""
    db = _get_sync_session()
    expired = 0
    try:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=settings.UNPAID_BOOKING_EXPIRY_MINUTES)

        stale = db.execute(
            select(Booking).where(
                Booking.type != BookingType.SOS,
                Booking.status == OrderStatus.PENDING,
                Booking.payment_status == PaymentStatus.PENDING,
                Booking.created_at < cutoff,
            )
        ).scalars().all()
        logger.info(f"expire_unpaid_bookings: {len(stale)} candidate(s)")

        for booking in stale:
            if expire_booking(db, booking, now):
                db.commit()
                expired += 1
                logger.info(f"Expired unpaid booking {booking.booking_id}")
            else:
                db.rollback()

    except Exception as e:
        db.rollback()
        logger.exception(f"expire_unpaid_bookings failed: {e}")
    finally:
        db.close()
    return expired
