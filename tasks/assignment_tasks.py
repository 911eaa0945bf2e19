"""
tasks/assignment_tasks.py
Periodic retry of partner assignment for paid items that are still
unassigned (no partner was available when the booking was paid).

Runs the async assignment engine under asyncio.run with a NullPool engine,
so no pooled connection outlives the event loop of a single run.
"""

import asyncio
import logging
import uuid
from typing import List

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.redis_client import RedisCache
from config.settings import settings
from services.assignment.engine import auto_assign_booking
from services.sos.broadcaster import SOSBroadcaster
from shared.models.models import Booking, BookingType, OrderItem, OrderStatus, PaymentStatus
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def find_unassigned_bookings(db: AsyncSession) -> List[uuid.UUID]:
    result = await db.execute(
        select(Booking.id)
        .join(OrderItem, OrderItem.booking_id == Booking.id)
        .where(
            Booking.type.in_([BookingType.SERVICE, BookingType.SOS]),
            Booking.payment_status == PaymentStatus.PAID,
            OrderItem.assigned_partner_id.is_(None),
            OrderItem.status == OrderStatus.CONFIRMED,
        )
        .distinct()
        .limit(settings.ASSIGNMENT_RETRY_BATCH_SIZE)
    )
    return list(result.scalars().all())


@retry(
    retry=retry_if_exception_type(OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=2, max=30),
    reraise=True,
)
async def _retry_unassigned() -> int:
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    broadcaster = SOSBroadcaster(RedisCache(redis))
    assigned = 0
    try:
        async with session_factory() as db:
            booking_ids = await find_unassigned_bookings(db)
            logger.info(f"retry_unassigned_items: {len(booking_ids)} booking(s) waiting for a partner")
            for booking_id in booking_ids:
                assigned += await auto_assign_booking(db, booking_id, broadcaster)
    finally:
        await redis.aclose()
        await engine.dispose()
    return assigned


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def retry_unassigned_items(self):
    """Beat task: every 10 minutes. Idempotent, items are assigned at most once."""
    try:
        assigned = asyncio.run(_retry_unassigned())
    except OperationalError as e:
        logger.error(f"retry_unassigned_items: database unavailable: {e}")
        raise self.retry(exc=e)
    logger.info(f"retry_unassigned_items: assigned {assigned} item(s)")
    return assigned
