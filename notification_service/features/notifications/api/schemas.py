"""Request/response models for the notification routes."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..domain.models import Notification


class NotificationResponse(BaseModel):
    """One reconciled notification."""

    key: str = Field(..., description="Canonical notification key")
    entity_type: str
    entity_id: str
    latest_state: str
    priority: int
    state_known: bool = Field(..., description="False when the state is not in the priority table")
    latest_occurred_at: datetime
    first_occurred_at: datetime
    display_payload: dict[str, Any] = Field(default_factory=dict)
    actor: str | None = None
    read: bool
    revision_count: int

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationResponse":
        return cls(**notification.to_dict())


class NotificationListResponse(BaseModel):
    """Response for GET /notifications"""

    items: list[NotificationResponse]
    total: int
    offset: int
    limit: int
    has_more: bool
    unread_count: int


class NotificationGroupsResponse(BaseModel):
    """Response for GET /notifications/grouped"""

    groups: dict[str, list[NotificationResponse]]
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class EventBatchRequest(BaseModel):
    """
    Raw events as delivered by the feed.

    Events stay loosely typed so one malformed event is reported in the
    response instead of rejecting the whole batch.
    """

    events: list[dict[str, Any]] = Field(..., min_length=1, max_length=500)


class EventOutcome(BaseModel):
    index: int
    outcome: Literal["created", "advanced", "refreshed", "stale", "duplicate", "malformed"]
    key: str | None = None
    resurfaced: bool = False
    error: str | None = None


class EventBatchResponse(BaseModel):
    results: list[EventOutcome]
    applied: int
    malformed: int
    unread_count: int


class MarkReadRequest(BaseModel):
    key: str = Field(..., min_length=1, description="Canonical notification key as returned by the feed")


class MarkReadResponse(BaseModel):
    key: str
    found: bool
    unread_count: int


class MarkAllReadResponse(BaseModel):
    marked: int
    unread_count: int


class SessionReleaseResponse(BaseModel):
    released: bool
