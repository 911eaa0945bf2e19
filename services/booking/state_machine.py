"""
services/booking/state_machine.py
Order-item status machine.

Main flow:   PENDING → CONFIRMED → ASSIGNED → EN_ROUTE → REACHED → IN_PROGRESS → COMPLETED
Side branch: CANCELLED → REFUND_INITIATED → REFUNDED

Main-flow items only move forward. The side branch can be entered from any
main state before IN_PROGRESS and is never left, though an open side-branch
item may still be cancelled.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import OrderItem, OrderStatus
from shared.utils.security import otp_matches

logger = logging.getLogger(__name__)

MAIN_FLOW = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.ASSIGNED,
    OrderStatus.EN_ROUTE,
    OrderStatus.REACHED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.COMPLETED,
)
SIDE_BRANCH = (
    OrderStatus.CANCELLED,
    OrderStatus.REFUND_INITIATED,
    OrderStatus.REFUNDED,
)
TERMINAL_STATES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})
# Customer-side cancellation closes once the professional is at the door
CANCEL_CUTOFF = MAIN_FLOW.index(OrderStatus.REACHED)


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATES


def main_index(status: OrderStatus) -> int:
    """Position on the main flow, or -1 for side-branch states."""
    status = OrderStatus(status)
    return MAIN_FLOW.index(status) if status in MAIN_FLOW else -1


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    current = OrderStatus(current)
    target = OrderStatus(target)

    if current in TERMINAL_STATES:
        return False

    if target in SIDE_BRANCH:
        return current != OrderStatus.IN_PROGRESS

    if current in SIDE_BRANCH:
        return False
    return MAIN_FLOW.index(target) >= MAIN_FLOW.index(current)


def ensure_cancellable(items) -> None:
    """Raise 400 when any item has reached the customer or gone further."""
    if any(main_index(item.status) >= CANCEL_CUTOFF for item in items):
        raise HTTPException(
            status_code=400,
            detail="Booking cannot be cancelled after the professional has reached",
        )


def check_transition(
    item: OrderItem,
    target: OrderStatus,
    *,
    is_sos: bool = False,
    otp: Optional[str] = None,
    enforce_otp: bool = True,
) -> None:
    """Raise 400 if `item` may not move to `target` (including OTP gates)."""
    current = OrderStatus(item.status)
    target = OrderStatus(target)

    if not can_transition(current, target):
        if is_terminal(current):
            detail = f"Order item is already {current.value} and cannot change"
        else:
            detail = f"Invalid status transition from {current.value} to {target.value}"
        raise HTTPException(status_code=400, detail=detail)

    if not enforce_otp or target == current:
        return

    if target == OrderStatus.IN_PROGRESS and not is_sos:
        if not otp_matches(item.start_job_otp, otp):
            raise HTTPException(status_code=400, detail="Invalid start OTP")
    if target == OrderStatus.COMPLETED:
        if not otp_matches(item.end_job_otp, otp):
            raise HTTPException(status_code=400, detail="Invalid end OTP")


async def apply_transition(
    db: AsyncSession,
    item: OrderItem,
    target: OrderStatus,
    *,
    extra_values: Optional[dict] = None,
) -> OrderItem:
    """
    Write the status change with a single conditional UPDATE on the current
    status. A concurrent writer that moved the item first causes a 400.
    Callers run check_transition beforehand.
    """
    await db.flush()
    current = OrderStatus(item.status)
    values = {"status": OrderStatus(target), "updated_at": datetime.now(timezone.utc)}
    values.update(extra_values or {})

    result = await db.execute(
        update(OrderItem)
        .where(OrderItem.id == item.id, OrderItem.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise HTTPException(
            status_code=400,
            detail="Order item status changed concurrently, please refresh and retry",
        )
    await db.refresh(item)
    logger.info(f"Order item {item.id}: {current.value} → {OrderStatus(target).value}")
    return item


async def transition_item(
    db: AsyncSession,
    item: OrderItem,
    target: OrderStatus,
    *,
    is_sos: bool = False,
    otp: Optional[str] = None,
    enforce_otp: bool = True,
    extra_values: Optional[dict] = None,
) -> OrderItem:
    check_transition(item, target, is_sos=is_sos, otp=otp, enforce_otp=enforce_otp)
    return await apply_transition(db, item, target, extra_values=extra_values)
