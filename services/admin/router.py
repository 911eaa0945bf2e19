"""
services/admin/router.py
Admin-only endpoints: booking oversight, manual partner assignment,
item status corrections, the SOS console and the audit log.

Every mutation is recorded in AdminAuditLog before returning.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.assignment.engine import find_eligible_partners, manual_assign
from services.booking.lifecycle import admin_set_status, load_item
from services.booking.sync import load_booking
from services.sos.broadcaster import SOSBroadcaster, get_broadcaster
from services.sos.pipeline import (
    acknowledge_sos,
    get_alert,
    list_active_alerts,
    override_resolve_sos,
    resolve_sos,
)
from shared.middleware.auth import require_admin
from shared.models.models import AdminAuditLog, Booking, BookingType, OrderStatus, User
from shared.schemas.schemas import (
    AdminAssignRequest,
    AdminStatusRequest,
    AuditLogResponse,
    BookingResponse,
    EligiblePartnerResponse,
    OrderItemResponse,
    PaginatedResponse,
    SOSAlertSummary,
    SOSOverrideResolveRequest,
    SOSResolveRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ───────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: User,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Append an immutable record to AdminAuditLog and commit it."""
    db.add(AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    ))
    await db.commit()


def _actor(admin: User) -> str:
    return f"admin:{admin.id}"


async def _item_or_404(db: AsyncSession, item_id: UUID):
    item = await load_item(db, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Order item not found")
    return item


# ── Booking Oversight ─────────────────────────────────────────

@router.get("/bookings", response_model=PaginatedResponse)
async def list_all_bookings(
    status_filter: Optional[OrderStatus] = Query(None),
    booking_type: Optional[BookingType] = Query(None),
    user_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """All bookings, newest first, with status, type or customer filter."""
    query = select(Booking).order_by(Booking.created_at.desc())
    if status_filter:
        query = query.where(Booking.status == status_filter)
    if booking_type:
        query = query.where(Booking.type == booking_type)
    if user_id:
        query = query.where(Booking.user_id == user_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    return PaginatedResponse(
        items=[
            BookingResponse.model_validate(b).model_dump(mode="json")
            for b in result.scalars().all()
        ],
        total=total or 0,
        page=page,
        page_size=page_size,
        pages=-(-(total or 0) // page_size),
    )


# ── Assignment ────────────────────────────────────────────────

@router.get("/order-items/{item_id}/eligible-partners", response_model=List[EligiblePartnerResponse])
async def eligible_partners(
    item_id: UUID,
    include_unavailable: bool = Query(False, description="Skip the availability window check"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    item = await _item_or_404(db, item_id)
    booking = await load_booking(db, item.booking_id)
    partners = await find_eligible_partners(
        db, booking, item, check_availability=not include_unavailable
    )
    return [EligiblePartnerResponse.model_validate(p) for p in partners]


@router.post("/order-items/{item_id}/assign", response_model=OrderItemResponse)
async def assign_item(
    item_id: UUID,
    data: AdminAssignRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    item = await manual_assign(
        db,
        item_id,
        data.partner_id,
        _actor(current_user),
        override_availability=data.override_availability,
    )
    await _log(
        db, current_user, "ASSIGN_PARTNER", "order_item", str(item_id),
        {"partner_id": str(data.partner_id), "override_availability": data.override_availability},
        request,
    )
    logger.info(f"Admin {current_user.id} assigned partner {data.partner_id} to item {item_id}")
    return OrderItemResponse.model_validate(item)


@router.post("/order-items/{item_id}/status", response_model=OrderItemResponse)
async def correct_item_status(
    item_id: UUID,
    data: AdminStatusRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """Move an item forward without OTPs. Normal transition rules still apply."""
    item = await _item_or_404(db, item_id)
    previous = OrderStatus(item.status)
    item = await admin_set_status(
        db, item, data.status, data.reason, _actor(current_user), broadcaster
    )
    await _log(
        db, current_user, "CORRECT_ITEM_STATUS", "order_item", str(item_id),
        {"from": previous.value, "to": OrderStatus(data.status).value, "reason": data.reason},
        request,
    )
    return OrderItemResponse.model_validate(item)


# ── SOS Console ───────────────────────────────────────────────

@router.get("/sos/active", response_model=List[SOSAlertSummary])
async def active_sos(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return [SOSAlertSummary.model_validate(a) for a in await list_active_alerts(db)]


@router.post("/sos/{alert_id}/acknowledge", response_model=SOSAlertSummary)
async def acknowledge(
    alert_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    alert = await acknowledge_sos(db, await get_alert(db, alert_id), current_user, broadcaster)
    await _log(db, current_user, "ACKNOWLEDGE_SOS", "sos_alert", alert.alert_id, request=request)
    return SOSAlertSummary.model_validate(alert)


@router.post("/sos/{alert_id}/resolve", response_model=SOSAlertSummary)
async def resolve(
    alert_id: UUID,
    data: SOSResolveRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """Close with the OTP read out by the customer."""
    alert = await resolve_sos(db, await get_alert(db, alert_id), data.otp, current_user, broadcaster)
    await _log(db, current_user, "RESOLVE_SOS", "sos_alert", alert.alert_id, request=request)
    return SOSAlertSummary.model_validate(alert)


@router.post("/sos/{alert_id}/override-resolve", response_model=SOSAlertSummary)
async def override_resolve(
    alert_id: UUID,
    data: SOSOverrideResolveRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    alert = await override_resolve_sos(
        db, await get_alert(db, alert_id), data.reason, current_user, broadcaster
    )
    await _log(
        db, current_user, "OVERRIDE_RESOLVE_SOS", "sos_alert", alert.alert_id,
        {"reason": data.reason}, request,
    )
    return SOSAlertSummary.model_validate(alert)


# ── Audit Log ─────────────────────────────────────────────────

@router.get("/audit-logs", response_model=PaginatedResponse)
async def get_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action e.g. ASSIGN_PARTNER"),
    entity_type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only; nothing here is editable."""
    filters = []
    if action:
        filters.append(AdminAuditLog.action == action.upper())
    if entity_type:
        filters.append(AdminAuditLog.entity_type == entity_type)

    query = (
        select(AdminAuditLog, User)
        .join(User, User.id == AdminAuditLog.admin_id)
        .where(*filters)
        .order_by(AdminAuditLog.created_at.desc())
    )
    total = await db.scalar(select(func.count(AdminAuditLog.id)).where(*filters))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    return PaginatedResponse(
        items=[
            {
                **AuditLogResponse.model_validate(log).model_dump(mode="json"),
                "admin_name": admin.name,
            }
            for log, admin in result.all()
        ],
        total=total or 0,
        page=page,
        page_size=page_size,
        pages=-(-(total or 0) // page_size),
    )
