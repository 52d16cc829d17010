"""
Activity feed DTOs.

Activities are append-only domain events (logins, submissions, published
results, ...) shown newest first. Stored activities of an unknown type coerce
to ``other``; a filter naming an unknown type is rejected.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class ActivityType(str, Enum):
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_REGISTER = "user_register"
    COURSE_CREATE = "course_create"
    COURSE_UPDATE = "course_update"
    ASSIGNMENT_SUBMIT = "assignment_submit"
    ATTENDANCE_MARK = "attendance_mark"
    EXAM_CREATE = "exam_create"
    RESULT_PUBLISH = "result_publish"
    MESSAGE_SEND = "message_send"
    NOTICE_CREATE = "notice_create"
    OTHER = "other"


def _coerce_activity_type(value: Any) -> Any:
    if isinstance(value, ActivityType) or value is None:
        return value
    try:
        return ActivityType(value)
    except ValueError:
        return ActivityType.OTHER


class Activity(BaseModel):
    """A single activity feed entry."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str = Field(..., description="Acting user")
    user_name: Optional[str] = Field(None, description="Display name of the acting user")
    type: ActivityType = Field(ActivityType.OTHER)
    description: str = Field("", description="Human-readable description")
    metadata: Optional[Dict[str, Any]] = Field(None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, value):
        return _coerce_activity_type(value)


class ActivityFilter(BaseModel):
    """Filter applied to paged fetches and to live pushes."""
    user_id: Optional[str] = None
    type: Optional[ActivityType] = None

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, value):
        # "all" is what feed widgets send for the unfiltered view
        if value == "all":
            return None
        return value

    def matches(self, activity: Activity) -> bool:
        if self.user_id is not None and activity.user_id != self.user_id:
            return False
        if self.type is not None and activity.type != self.type:
            return False
        return True


class ActivitiesGetRequest(ActivityFilter):
    """Payload of ``activities:get``."""
    limit: int = Field(20, ge=1, le=1000)
    offset: int = Field(0, ge=0)


class ActivitiesGetResponse(BaseModel):
    """Ack data of ``activities:get``."""
    activities: List[Activity] = Field(default_factory=list)
    has_more: bool = False
