"""
Persistence alerts for the UI to show (and dismiss), plus the notification
permission the UI obtained from the user.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from minipomodoro.coordinator import SessionCoordinator
from minipomodoro.dependencies import get_coordinator
from minipomodoro.notifications import NotificationPermission

router = APIRouter(prefix="/api", tags=["alerts"])


class AlertOut(BaseModel):
    id: str
    operation: str
    message: str
    created_at: datetime


class PermissionRequest(BaseModel):
    permission: NotificationPermission


@router.get("/alerts", response_model=list[AlertOut])
async def list_alerts(coordinator: SessionCoordinator = Depends(get_coordinator)):
    return [
        AlertOut(id=a.id, operation=a.operation, message=a.message, created_at=a.created_at)
        for a in coordinator.alerts.alerts
    ]


@router.delete("/alerts/{alert_id}", status_code=204)
async def dismiss_alert(alert_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)):
    try:
        coordinator.alerts.dismiss(alert_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Alert not found")


@router.put("/notifications/permission")
async def set_notification_permission(
    req: PermissionRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Record whether the user allowed "time is up" notifications."""
    coordinator.announcer.permission = req.permission
    return {"permission": req.permission.value}
