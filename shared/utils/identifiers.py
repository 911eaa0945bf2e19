"""
shared/utils/identifiers.py
Human readable identifiers backed by an atomic per-day counter.
BOOK-20250301-001, SOS-20250301-014 ...
"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import DailySequence

BOOKING_PREFIX = "BOOK"
SOS_PREFIX = "SOS"

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _day_key(now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(ZoneInfo(settings.TIMEZONE))
    return moment.strftime("%Y%m%d")


async def next_daily_sequence(db: AsyncSession, prefix: str, day: str) -> int:
    """
    Increment and return the counter for (prefix, day) in one statement.
    INSERT ... ON CONFLICT DO UPDATE ... RETURNING keeps concurrent callers apart.
    """
    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Daily sequence upsert is not supported on {dialect}")

    stmt = (
        insert(DailySequence)
        .values(prefix=prefix, day=day, value=1)
        .on_conflict_do_update(
            index_elements=["prefix", "day"],
            set_={"value": DailySequence.value + 1},
        )
        .returning(DailySequence.value)
    )
    result = await db.execute(stmt)
    return result.scalar_one()


async def generate_reference(
    db: AsyncSession, prefix: str = BOOKING_PREFIX, now: Optional[datetime] = None
) -> str:
    day = _day_key(now)
    value = await next_daily_sequence(db, prefix, day)
    return f"{prefix}-{day}-{value:03d}"


async def generate_booking_id(db: AsyncSession, now: Optional[datetime] = None) -> str:
    return await generate_reference(db, BOOKING_PREFIX, now)


async def generate_sos_id(db: AsyncSession, now: Optional[datetime] = None) -> str:
    return await generate_reference(db, SOS_PREFIX, now)
