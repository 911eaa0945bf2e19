"""
services/checkout/cart.py
Turns a requested cart into priced lines: catalog validation, wallet and
plan lookup for the plan holder, coupon lookup, then the calculator.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.checkout.calculator import CheckoutLine, CheckoutResult, calculate_checkout
from services.plan.wallet import get_active_plan, get_balance, resolve_plan_holder
from shared.models.models import CheckoutField, Coupon, Service, ServiceVariant, User
from shared.schemas.schemas import CartLine, QuoteRequest

logger = logging.getLogger(__name__)


@dataclass
class Quote:
    result: CheckoutResult
    plan_holder_id: uuid.UUID
    wallet_credits: int
    coupon: Optional[Coupon] = None


async def build_checkout_lines(db: AsyncSession, cart: List[CartLine]) -> List[CheckoutLine]:
    """Snapshot catalog prices for each cart line; unknown or inactive entries are rejected."""
    lines = []
    for entry in cart:
        service = await db.get(Service, entry.service_id)
        if service is None or not service.is_active:
            raise HTTPException(status_code=400, detail=f"Service {entry.service_id} is not available")

        name = service.name
        unit_price = service.price
        credit_cost = service.credit_cost
        if entry.variant_id is not None:
            variant = await db.get(ServiceVariant, entry.variant_id)
            if variant is None or not variant.is_active or variant.service_id != service.id:
                raise HTTPException(
                    status_code=400, detail=f"Variant {entry.variant_id} is not available"
                )
            name = f"{service.name} - {variant.name}"
            unit_price = variant.price
            credit_cost = variant.credit_cost

        lines.append(CheckoutLine(
            service_id=service.id,
            variant_id=entry.variant_id,
            name=name,
            unit_price=unit_price,
            credit_cost=credit_cost,
            quantity=entry.quantity,
            customer_visit_required=service.customer_visit_required,
        ))
    return lines


async def load_checkout_fields(db: AsyncSession) -> List[CheckoutField]:
    result = await db.execute(
        select(CheckoutField)
        .where(CheckoutField.is_active == True)  # noqa: E712
        .order_by(CheckoutField.order)
    )
    return list(result.scalars().all())


async def load_coupon(db: AsyncSession, code: str) -> Coupon:
    result = await db.execute(select(Coupon).where(Coupon.code == code.strip().upper()))
    coupon = result.scalar_one_or_none()
    if coupon is None:
        raise HTTPException(status_code=400, detail="Invalid coupon code")
    return coupon


async def quote_cart(db: AsyncSession, user: User, request: QuoteRequest) -> Quote:
    lines = await build_checkout_lines(db, request.items)
    holder_id = await resolve_plan_holder(db, user)
    plan = await get_active_plan(db, holder_id)
    wallet = await get_balance(db, holder_id)
    coupon = await load_coupon(db, request.coupon_code) if request.coupon_code else None

    result = calculate_checkout(
        lines,
        fields=await load_checkout_fields(db),
        use_credits=request.use_credits,
        wallet_credits=wallet,
        has_active_plan=plan is not None,
        coupon=coupon,
        phone=user.phone,
    )
    return Quote(result=result, plan_holder_id=holder_id, wallet_credits=wallet, coupon=coupon)


async def increment_coupon_usage(db: AsyncSession, code: str) -> bool:
    """Count one redemption unless the coupon is exhausted. Never exceeds max_uses."""
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.code == code,
            or_(Coupon.max_uses == -1, Coupon.used_count < Coupon.max_uses),
        )
        .values(used_count=Coupon.used_count + 1)
    )
    if result.rowcount != 1:
        logger.warning(f"Coupon {code} could not be counted (exhausted or removed)")
        return False
    return True
