"""
services/checkout/calculator.py
Hybrid credit/cash checkout computation.

Order of application:
    1. per-item credit coverage (cart order, never partial)
    2. percentage coupon on the post-credit cash subtotal
    3. checkout fields by ascending `order`, compounding on the running total
Every amount is rounded to paise as it is applied, so the breakdown always
sums to total - cash_subtotal.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from fastapi import HTTPException

from config.settings import settings
from shared.models.models import ChargeType, CheckoutField, Coupon, CouponScope
from shared.utils.phone import phone_in_list

logger = logging.getLogger(__name__)

PAISE = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(PAISE, rounding=ROUND_HALF_UP)


@dataclass
class CheckoutLine:
    service_id: uuid.UUID
    name: str
    unit_price: Decimal
    credit_cost: int = 0
    quantity: int = 1
    variant_id: Optional[uuid.UUID] = None
    customer_visit_required: bool = False
    # Filled by the calculator
    price: Decimal = ZERO
    paid_with_credits: bool = False

    @property
    def gross(self) -> Decimal:
        return to_money(Decimal(self.unit_price) * self.quantity)

    @property
    def credits_needed(self) -> int:
        return int(self.credit_cost or 0) * self.quantity


@dataclass
class CheckoutResult:
    item_total: Decimal
    credits_used: int
    cash_subtotal: Decimal
    discount: Decimal
    breakdown: List[dict]
    total: Decimal
    lines: List[CheckoutLine] = field(default_factory=list)

    @property
    def total_subunits(self) -> int:
        return int(self.total * 100)

    def breakdown_json(self) -> List[dict]:
        """Breakdown with string amounts, safe for a JSON column."""
        return [{**line, "amount": str(line["amount"])} for line in self.breakdown]


# ── Coupon ────────────────────────────────────────────────────

def validate_coupon(
    coupon: Optional[Coupon],
    *,
    lines: Iterable[CheckoutLine],
    phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Coupon:
    """Raise 400 with a customer-facing message unless the coupon can be applied."""
    now = now or datetime.now(timezone.utc)

    if coupon is None or not coupon.is_active:
        raise HTTPException(status_code=400, detail="Invalid coupon code")
    if coupon.expires_at is not None and coupon.expires_at <= now:
        raise HTTPException(status_code=400, detail="Coupon has expired")
    if coupon.max_uses != -1 and coupon.used_count >= coupon.max_uses:
        raise HTTPException(status_code=400, detail="Coupon usage limit reached")
    if coupon.is_restricted and not phone_in_list(phone, coupon.allowed_phones or []):
        raise HTTPException(status_code=400, detail="This coupon is not available for your account")
    if coupon.applies_to == CouponScope.SERVICE:
        service_ids = {str(line.service_id) for line in lines}
        if str(coupon.service_id) not in service_ids:
            raise HTTPException(
                status_code=400, detail="Coupon is not applicable to the services in your cart"
            )
    return coupon


# ── Calculator ────────────────────────────────────────────────

def _is_discount_field(checkout_field: CheckoutField) -> bool:
    return "discount" in (checkout_field.field_name or "").lower()


def calculate_checkout(
    lines: List[CheckoutLine],
    *,
    fields: Iterable[CheckoutField] = (),
    use_credits: bool = False,
    wallet_credits: int = 0,
    has_active_plan: bool = False,
    coupon: Optional[Coupon] = None,
    phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CheckoutResult:
    """Price a cart. Pure apart from raising 400 for an unusable coupon."""

    # Step 1: credit coverage, item by item
    remaining = max(0, int(wallet_credits or 0))
    credits_used = 0
    for line in lines:
        needed = line.credits_needed
        if use_credits and has_active_plan and needed > 0 and needed <= remaining:
            line.price = ZERO
            line.paid_with_credits = True
            remaining -= needed
            credits_used += needed
        else:
            line.price = line.gross
            line.paid_with_credits = False

    item_total = to_money(sum((line.gross for line in lines), ZERO))
    cash_subtotal = to_money(sum((line.price for line in lines), ZERO))
    running = cash_subtotal
    breakdown: List[dict] = []

    # Step 2: coupon on the post-credit cash subtotal
    discount = ZERO
    if coupon is not None:
        validate_coupon(coupon, lines=lines, phone=phone, now=now)
        discount = min(to_money(cash_subtotal * Decimal(coupon.discount_percent) / 100), running)
        running -= discount
        breakdown.append({
            "name": "coupon",
            "display_name": f"Coupon {coupon.code}",
            "type": "COUPON",
            "amount": -discount,
        })

    # Step 3: checkout fields, compounding
    for checkout_field in sorted(fields, key=lambda f: (f.order, f.field_name)):
        if not checkout_field.is_active:
            continue
        value = Decimal(checkout_field.value)
        if checkout_field.charge_type == ChargeType.PERCENTAGE:
            amount = to_money(running * value / 100)
        else:
            amount = to_money(value)

        if _is_discount_field(checkout_field):
            amount = min(amount, running)
            running -= amount
            amount = -amount
        else:
            running += amount

        breakdown.append({
            "name": checkout_field.field_name,
            "display_name": checkout_field.display_name,
            "type": checkout_field.charge_type.value,
            "amount": amount,
        })

    return CheckoutResult(
        item_total=item_total,
        credits_used=credits_used,
        cash_subtotal=cash_subtotal,
        discount=discount,
        breakdown=breakdown,
        total=to_money(running),
        lines=list(lines),
    )


def amount_within_tolerance(declared, computed) -> bool:
    """Client-declared totals may drift from the server's by a few rupees (rounding, stale fees)."""
    diff = abs(Decimal(str(declared)) - Decimal(str(computed)))
    return diff <= settings.CHECKOUT_AMOUNT_TOLERANCE
