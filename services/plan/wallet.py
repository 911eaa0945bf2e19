"""
services/plan/wallet.py
Plan holder resolution and the credit wallet.

A user whose phone appears as a family member of someone holding an active
plan draws on that owner's plan and credits (the "plan holder").
Wallet writes are single conditional UPDATEs; balances are never read,
modified and written back.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import FamilyMember, Plan, User, UserCredits, UserPlan
from shared.utils.phone import phone_variants

logger = logging.getLogger(__name__)


async def get_user_plan(db: AsyncSession, user_id: uuid.UUID) -> Optional[UserPlan]:
    result = await db.execute(select(UserPlan).where(UserPlan.user_id == user_id))
    return result.scalar_one_or_none()


async def get_active_plan(
    db: AsyncSession, user_id: uuid.UUID, now: Optional[datetime] = None
) -> Optional[Plan]:
    """The user's own active, unexpired plan, or None."""
    now = now or datetime.now(timezone.utc)
    user_plan = await get_user_plan(db, user_id)
    if not user_plan or not user_plan.is_active_at(now):
        return None
    return await db.get(Plan, user_plan.active_plan_id)


async def resolve_plan_holder(db: AsyncSession, user: User) -> uuid.UUID:
    """Owner id when `user` is a family member of an active plan holder, else the user's own id."""
    variants = phone_variants(user.phone)
    if not variants:
        return user.id

    result = await db.execute(
        select(FamilyMember.owner_id)
        .where(FamilyMember.phone.in_(variants), FamilyMember.owner_id != user.id)
        .order_by(FamilyMember.created_at)
    )
    now = datetime.now(timezone.utc)
    for owner_id in result.scalars().all():
        if await get_active_plan(db, owner_id, now):
            return owner_id
    return user.id


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(select(UserCredits.credits).where(UserCredits.user_id == user_id))
    return result.scalar_one_or_none() or 0


async def deduct_credits(db: AsyncSession, user_id: uuid.UUID, amount: int) -> bool:
    """Atomically take `amount` credits. False when the balance is short (nothing changes)."""
    if amount <= 0:
        return True
    result = await db.execute(
        update(UserCredits)
        .where(UserCredits.user_id == user_id, UserCredits.credits >= amount)
        .values(credits=UserCredits.credits - amount)
    )
    return result.rowcount == 1


async def add_credits(db: AsyncSession, user_id: uuid.UUID, amount: int) -> None:
    """Atomically add credits, creating the wallet row on first use."""
    if amount <= 0:
        return
    result = await db.execute(
        update(UserCredits)
        .where(UserCredits.user_id == user_id)
        .values(credits=UserCredits.credits + amount)
    )
    if result.rowcount == 0:
        db.add(UserCredits(user_id=user_id, credits=amount))
        await db.flush()
    logger.info(f"Credited {amount} credits to wallet of user {user_id}")
