"""
Notification DTOs.

A notification belongs to exactly one user and moves one way from unread to
read. The server is the source of truth; clients hold an ordered copy
(newest first) kept in sync by push events.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Notification(BaseModel):
    """A single user notification."""
    id: str = Field(default_factory=lambda: uuid4().hex, description="Notification identifier")
    user_id: str = Field("", description="Owning user")
    type: str = Field("info", description="Category, e.g. 'info', 'exam', 'result'")
    title: str = Field("", description="Short title")
    message: str = Field("", description="Message body")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")
    read: bool = Field(False, description="Whether the owner has read it")
    created_at: datetime = Field(default_factory=_utc_now, description="Creation timestamp")


class NotificationsGetRequest(BaseModel):
    """Payload of ``notifications:get``."""
    limit: int = Field(20, ge=1, le=1000, description="Maximum notifications to return")


class NotificationsGetResponse(BaseModel):
    """Ack data of ``notifications:get``."""
    notifications: List[Notification] = Field(default_factory=list)
    unread_count: int = Field(0, ge=0, description="Authoritative unread total for the user")


class NotificationReadRequest(BaseModel):
    """Payload of ``notification:read``."""
    notification_id: str = Field(..., min_length=1)


class NotificationReadResponse(BaseModel):
    """Ack data of ``notification:read``."""
    notification_id: str
    changed: bool = Field(..., description="False if the notification was already read")
    unread_count: int = Field(0, ge=0)


class NotificationsReadAllResponse(BaseModel):
    """Ack data of ``notifications:read-all``."""
    updated: int = Field(0, ge=0, description="How many notifications flipped to read")
    unread_count: int = Field(0, ge=0)


class NotificationDeleted(BaseModel):
    """Push data of ``notification:delete``."""
    notification_id: str
