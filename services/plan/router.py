"""
services/plan/router.py
Plan catalog, plan purchase and the caller's plan/credit summary.
A purchase is a PLAN_PURCHASE booking; paying for it activates the plan
(see services.booking.sync).
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.sync import append_action, load_booking
from services.payment.settlement import settle_booking
from services.plan.wallet import get_balance, get_user_plan, resolve_plan_holder
from services.sos.broadcaster import SOSBroadcaster, get_broadcaster
from shared.middleware.auth import get_current_user
from shared.models.models import (
    Booking,
    BookingType,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Plan,
    PlanTransaction,
    TransactionStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    BookingResponse,
    MyPlanResponse,
    PlanPurchaseRequest,
    PlanResponse,
)
from shared.utils.identifiers import generate_booking_id
from shared.utils.security import generate_otp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=list[PlanResponse])
async def list_plans(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Plan).where(Plan.is_active == True).order_by(Plan.price)  # noqa: E712
    )
    return [PlanResponse.model_validate(p) for p in result.scalars().all()]


@router.get("/me", response_model=MyPlanResponse)
async def my_plan(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Plan and credits as the caller sees them (a family member sees the owner's)."""
    holder_id = await resolve_plan_holder(db, current_user)
    user_plan = await get_user_plan(db, holder_id)
    now = datetime.now(timezone.utc)
    is_active = bool(user_plan and user_plan.is_active_at(now))
    plan = await db.get(Plan, user_plan.active_plan_id) if is_active else None

    return MyPlanResponse(
        plan=PlanResponse.model_validate(plan) if plan else None,
        is_active=is_active,
        is_dependent=holder_id != current_user.id,
        plan_holder_id=holder_id,
        activated_at=user_plan.activated_at if is_active else None,
        expires_at=user_plan.expires_at if is_active else None,
        credits=await get_balance(db, holder_id),
    )


@router.post("/{plan_id}/purchase", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def purchase_plan(
    plan_id: UUID,
    data: PlanPurchaseRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """Create the purchase booking. The client then pays through /payments."""
    if current_user.role != UserRole.USER:
        raise HTTPException(status_code=403, detail="Only customers can purchase plans")

    plan = await db.get(Plan, plan_id)
    if not plan or not plan.is_active:
        raise HTTPException(status_code=404, detail="Plan not found")

    booking = Booking(
        booking_id=await generate_booking_id(db),
        user_id=current_user.id,
        type=BookingType.PLAN_PURCHASE,
        address=data.address.model_dump() if data.address else {},
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        item_total=plan.price,
        total_original_amount=plan.price,
        total_amount=plan.price,
        payment_breakdown=[],
        items=[
            OrderItem(
                position=0,
                name=f"{plan.name} plan",
                unit_price=plan.price,
                price=plan.price,
                quantity=1,
                status=OrderStatus.PENDING,
                start_job_otp=generate_otp(),
                end_job_otp=generate_otp(),
            )
        ],
    )
    append_action(booking, "CREATED", f"user:{current_user.id}", f"Plan purchase: {plan.name}")
    db.add(booking)
    await db.flush()

    db.add(PlanTransaction(
        user_id=current_user.id,
        plan_id=plan.id,
        booking_id=booking.id,
        amount=plan.price,
        credits=plan.total_credits,
        status=TransactionStatus.PENDING,
    ))
    await db.commit()
    logger.info(f"Plan purchase {booking.booking_id} started: user {current_user.id}, plan {plan.name}")

    if plan.price <= 0:
        booking = await settle_booking(
            db, booking, actor=f"user:{current_user.id}", broadcaster=broadcaster
        )
    else:
        booking = await load_booking(db, booking.id)
    return BookingResponse.model_validate(booking)
