"""Presence DTOs: one logical record per user."""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class PresenceRecord(BaseModel):
    """Current status of a user. Also the data of ``user:status-update``."""
    user_id: str
    status: PresenceStatus = PresenceStatus.OFFLINE
    last_seen: Optional[datetime] = Field(None, description="When the user was last connected")


class UserGetStatusRequest(BaseModel):
    """Payload of ``user:get-status``."""
    user_id: str = Field(..., min_length=1)


class UserSetStatusRequest(BaseModel):
    """Payload of ``user:set-status``. Offline is derived, never set."""
    status: Literal["online", "away"]


class UserUnwatchStatus(BaseModel):
    """Payload of ``user:unwatch-status``."""
    user_id: str = Field(..., min_length=1)
