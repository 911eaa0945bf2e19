"""
services/notification/router.py
In-app notifications. Push/SMS/WhatsApp delivery is handled by a separate
delivery service that reads these rows.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import Notification, NotificationType, User
from shared.schemas.schemas import MessageResponse, NotificationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ── Notification Templates ────────────────────────────────────

TEMPLATES = {
    NotificationType.BOOKING_CREATED: {
        "title": "Booking Received",
        "body": "Your booking {booking_ref} has been created. Complete payment to confirm it.",
    },
    NotificationType.BOOKING_CONFIRMED: {
        "title": "Booking Confirmed",
        "body": "Your booking {booking_ref} is confirmed. We are assigning a professional.",
    },
    NotificationType.BOOKING_STATUS: {
        "title": "Booking Update",
        "body": "Your booking {booking_ref} is now {status}.",
    },
    NotificationType.BOOKING_RESCHEDULED: {
        "title": "Booking Rescheduled",
        "body": "Your booking {booking_ref} has been moved to {scheduled_for}.",
    },
    NotificationType.BOOKING_CANCELLED: {
        "title": "Booking Cancelled",
        "body": "Your booking {booking_ref} has been cancelled.",
    },
    NotificationType.JOB_ASSIGNED: {
        "title": "New Job Assigned",
        "body": "You have been assigned {item_name} for booking {booking_ref}.",
    },
    NotificationType.PAYMENT_SUCCESS: {
        "title": "Payment Successful",
        "body": "Payment of ₹{amount} received for booking {booking_ref}.",
    },
    NotificationType.PLAN_ACTIVATED: {
        "title": "Plan Activated",
        "body": "Your {plan_name} plan is active. {credits} credits were added to your wallet.",
    },
    NotificationType.SOS_UPDATE: {
        "title": "SOS Update",
        "body": "Your emergency request {alert_ref} is {status}.",
    },
}


async def dispatch_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    notification_type: NotificationType,
    template_vars: Optional[dict] = None,
    booking_id: Optional[uuid.UUID] = None,
) -> Notification:
    """Render a template and add the in-app row. The caller owns the commit."""
    template = TEMPLATES[notification_type]
    vars_ = template_vars or {}

    notif = Notification(
        user_id=user_id,
        booking_id=booking_id,
        type=notification_type,
        title=template["title"].format(**vars_),
        body=template["body"].format(**vars_),
        data={k: str(v) for k, v in vars_.items()},
    )
    db.add(notif)
    await db.flush()
    return notif


async def notify_safely(db: AsyncSession, *args, **kwargs) -> None:
    """dispatch_notification + commit; failures are logged and rolled back."""
    try:
        await dispatch_notification(db, *args, **kwargs)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Failed to record in-app notification")


# ── REST Endpoints ────────────────────────────────────────────

@router.get("", response_model=list[NotificationResponse])
async def get_my_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's in-app notifications."""
    query = (
        select(Notification)
        .where(Notification.user_id == current_user.id)
        .order_by(Notification.created_at.desc())
    )

    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [NotificationResponse.model_validate(n) for n in result.scalars()]


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return {"unread_count": count or 0}


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == current_user.id)
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return MessageResponse(message="Marked as read")
