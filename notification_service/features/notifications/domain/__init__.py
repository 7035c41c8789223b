"""
Domain subpackage for the notification reconciliation feature.
"""

from .errors import (
    EngineClosedError,
    MalformedEventError,
    NotificationEngineError,
    PriorityTableError,
    ReadStateStoreError,
)
from .models import Notification, NotificationKey, RawEvent, StateTag, parse_timestamp

__all__ = [
    "EngineClosedError",
    "MalformedEventError",
    "Notification",
    "NotificationEngineError",
    "NotificationKey",
    "PriorityTableError",
    "RawEvent",
    "ReadStateStoreError",
    "StateTag",
    "parse_timestamp",
]
