"""
services/sos/router.py
Customer SOS endpoints. Admin handling lives under /admin/sos.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.sos.broadcaster import SOSBroadcaster, get_broadcaster
from services.sos.pipeline import cancel_sos, get_active_alert, get_sos_history, trigger_sos
from shared.middleware.auth import get_current_user
from shared.models.models import User, UserRole
from shared.schemas.schemas import SOSAlertResponse, SOSCancelRequest, SOSTriggerRequest

router = APIRouter(prefix="/sos", tags=["SOS"])


@router.post("/trigger", response_model=SOSAlertResponse, status_code=status.HTTP_201_CREATED)
async def trigger(
    data: SOSTriggerRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    """201 for a new emergency, 200 when an open one was updated in place."""
    if current_user.role != UserRole.USER:
        raise HTTPException(status_code=403, detail="Only customers can raise an SOS")

    alert, created = await trigger_sos(
        db,
        current_user,
        data.location.model_dump(),
        family_member_id=data.family_member_id,
        service_id=data.service_id,
        broadcaster=broadcaster,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return SOSAlertResponse.model_validate(alert)


@router.post("/cancel", response_model=SOSAlertResponse)
async def cancel(
    data: SOSCancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: SOSBroadcaster = Depends(get_broadcaster),
):
    alert = await cancel_sos(db, current_user, data.alert_id, broadcaster)
    return SOSAlertResponse.model_validate(alert)


@router.get("/active", response_model=SOSAlertResponse)
async def active(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    alert = await get_active_alert(db, current_user.id)
    if alert is None:
        raise HTTPException(status_code=404, detail="No active SOS alert")
    return SOSAlertResponse.model_validate(alert)


@router.get("/history", response_model=List[SOSAlertResponse])
async def history(
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    alerts = await get_sos_history(db, current_user, limit)
    return [SOSAlertResponse.model_validate(a) for a in alerts]
