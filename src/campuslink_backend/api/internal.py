"""
Internal publish API.

Backend services (grading, attendance, messaging, ...) publish into the
realtime layer through these endpoints. They are not meant for browsers and
require the ``X-Internal-Secret`` header to match ``INTERNAL_SHARED_SECRET``.
"""

import hmac
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from campuslink_backend.exceptions import NotFoundError
from campuslink_backend.settings import settings
from campuslink_backend.websocket.hub import RealtimeHub
from campuslink_types.activities import Activity, ActivityType
from campuslink_types.notifications import Notification
from campuslink_types.presence import PresenceRecord, PresenceStatus

logger = logging.getLogger(__name__)

internal_router = APIRouter(prefix="/internal", tags=["internal"])
metrics_router = APIRouter(prefix="/realtime", tags=["realtime"])


class NotificationCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    type: str = "info"
    title: str = ""
    message: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ActivityCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    user_name: Optional[str] = None
    type: ActivityType = ActivityType.OTHER
    description: str = ""
    metadata: Optional[Dict[str, Any]] = None
    room: Optional[str] = Field(None, description="Push only to this room; omit to push to everyone")


class NotificationUpdate(BaseModel):
    """Fields to change; ``read`` can only become True."""
    type: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    read: Optional[bool] = None


class PresenceSeed(BaseModel):
    status: PresenceStatus = PresenceStatus.OFFLINE
    last_seen: Optional[datetime] = None


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


async def require_internal_secret(
    x_internal_secret: Optional[str] = Header(None, alias="X-Internal-Secret"),
):
    expected = settings.INTERNAL_SHARED_SECRET
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal API is not configured",
        )
    if not x_internal_secret or not hmac.compare_digest(x_internal_secret, expected):
        logger.warning("Rejected internal call with missing or invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal secret",
        )


@internal_router.post(
    "/notifications",
    status_code=status.HTTP_201_CREATED,
    response_model=Notification,
    dependencies=[Depends(require_internal_secret)],
)
async def create_notification(payload: NotificationCreate, hub: RealtimeHub = Depends(get_hub)):
    """Create a notification and push ``notification:new`` to the owner's sessions."""
    notification = Notification(**payload.model_dump())
    return await hub.notifications.create(notification)


@internal_router.patch(
    "/notifications/{user_id}/{notification_id}",
    response_model=Notification,
    dependencies=[Depends(require_internal_secret)],
)
async def update_notification(
    user_id: str,
    notification_id: str,
    payload: NotificationUpdate,
    hub: RealtimeHub = Depends(get_hub),
):
    """Change a notification and push ``notification:update`` to the owner's sessions."""
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    try:
        return await hub.notifications.update(user_id, notification_id, **changes)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@internal_router.delete(
    "/notifications/{user_id}/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_internal_secret)],
)
async def delete_notification(user_id: str, notification_id: str, hub: RealtimeHub = Depends(get_hub)):
    try:
        await hub.notifications.delete(user_id, notification_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@internal_router.post(
    "/activities",
    status_code=status.HTTP_201_CREATED,
    response_model=Activity,
    dependencies=[Depends(require_internal_secret)],
)
async def record_activity(payload: ActivityCreate, hub: RealtimeHub = Depends(get_hub)):
    data = payload.model_dump(exclude={"room"})
    activity = Activity(**data)
    return await hub.activities.record(activity, room=payload.room)


@internal_router.put(
    "/presence/{user_id}",
    response_model=PresenceRecord,
    dependencies=[Depends(require_internal_secret)],
)
async def seed_presence(user_id: str, payload: PresenceSeed, hub: RealtimeHub = Depends(get_hub)):
    """Store the persisted status of a user, e.g. the last_seen known from the user database."""
    record = PresenceRecord(user_id=user_id, status=payload.status, last_seen=payload.last_seen)
    return await hub.presence.seed(record)


@metrics_router.get("/metrics", dependencies=[Depends(require_internal_secret)])
async def get_metrics(hub: RealtimeHub = Depends(get_hub)) -> Dict[str, Any]:
    return hub.manager.get_metrics()
