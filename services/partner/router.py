"""
services/partner/router.py
Field-partner job endpoints: job list, travel updates, OTP-gated start/end,
hold and resume.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import (
    end_job,
    hold_job,
    load_item,
    resume_job,
    start_job,
    update_partner_status,
)
from services.booking.sync import load_booking
from services.sos.broadcaster import SOSBroadcaster, get_broadcaster
from shared.middleware.auth import get_current_partner
from shared.models.models import Booking, OrderItem, OrderStatus, ServicePartner
from shared.schemas.schemas import HoldRequest, OTPRequest, PartnerJobResponse, PartnerStatusRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/partner/jobs", tags=["Partner Jobs"])


def _job_card(item: OrderItem, booking: Booking) -> PartnerJobResponse:
    return PartnerJobResponse(
        id=item.id,
        booking_id=booking.id,
        booking_reference=booking.booking_id,
        booking_type=booking.type,
        name=item.name,
        quantity=item.quantity,
        status=item.status,
        address=booking.address,
        scheduled_date=booking.scheduled_date,
        scheduled_time=booking.scheduled_time,
        customer_visit_required=item.customer_visit_required,
        is_on_hold=item.is_on_hold,
        hold_history=item.hold_history or [],
        started_at=item.started_at,
        completed_at=item.completed_at,
        active_work_seconds=item.active_work_seconds,
    )


async def _my_job(db: AsyncSession, item_id: UUID, partner: ServicePartner) -> OrderItem:
    """Jobs of other partners are reported as missing."""
    item = await load_item(db, item_id)
    if item is None or item.assigned_partner_id != partner.id:
        raise HTTPException(status_code=404, detail="Job not found")
    return item


async def _respond(db: AsyncSession, item: OrderItem) -> PartnerJobResponse:
    booking = await load_booking(db, item.booking_id)
    return _job_card(item, booking)


@router.get("", response_model=List[PartnerJobResponse])
async def list_jobs(
    status_filter: Optional[OrderStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    partner: ServicePartner = Depends(get_current_partner),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(OrderItem, Booking)
        .join(Booking, OrderItem.booking_id == Booking.id)
        .where(OrderItem.assigned_partner_id == partner.id)
    )
    if status_filter:
        query = query.where(OrderItem.status == status_filter)
    query = (
        query.order_by(Booking.scheduled_date, Booking.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return [_job_card(item, booking) for item, booking in result.all()]


@router.get("/{item_id}", response_model=PartnerJobResponse)
async def get_job(
    item_id: UUID,
    partner: ServicePartner = Depends(get_current_partner),
    db: AsyncSession = Depends(get_db),
):
    item = await _my_job(db, item_id, partner)
    return await _respond(db, item)


@router.post("/{item_id}/status", response_model=PartnerJobResponse)
async def update_status(
    item_id: UUID,
    data: PartnerStatusRequest,
    partner: ServicePartner = Depends(get_current_partner),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """EN_ROUTE when leaving, REACHED on arrival."""
    item = await _my_job(db, item_id, partner)
    item = await update_partner_status(db, item, partner, OrderStatus(data.status), broadcaster)
    return await _respond(db, item)


@router.post("/{item_id}/start", response_model=PartnerJobResponse)
async def start(
    item_id: UUID,
    data: OTPRequest,
    partner: ServicePartner = Depends(get_current_partner),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    item = await _my_job(db, item_id, partner)
    item = await start_job(db, item, partner, data.otp, broadcaster)
    return await _respond(db, item)


@router.post("/{item_id}/end", response_model=PartnerJobResponse)
async def end(
    item_id: UUID,
    data: OTPRequest,
    partner: ServicePartner = Depends(get_current_partner),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    item = await _my_job(db, item_id, partner)
    item = await end_job(db, item, partner, data.otp, broadcaster)
    return await _respond(db, item)


@router.post("/{item_id}/hold", response_model=PartnerJobResponse)
async def hold(
    item_id: UUID,
    data: HoldRequest,
    partner: ServicePartner = Depends(get_current_partner),
    db: AsyncSession = Depends(get_db),
):
    item = await _my_job(db, item_id, partner)
    item = await hold_job(db, item, partner, data.reason, data.custom_remark)
    await db.commit()
    return await _respond(db, item)


@router.post("/{item_id}/resume", response_model=PartnerJobResponse)
async def resume(
    item_id: UUID,
    partner: ServicePartner = Depends(get_current_partner),
    db: AsyncSession = Depends(get_db),
):
    item = await _my_job(db, item_id, partner)
    item = await resume_job(db, item, partner)
    await db.commit()
    return await _respond(db, item)
