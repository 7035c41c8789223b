"""
Live feed - ordered, derived views over reconciled notifications.

Every call builds a fresh list from the snapshots it is given; there is no
cursor or cached ordering to go stale.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from ..domain.models import Notification


class FeedSort(str, Enum):
    RECENT = "recent"
    PRIORITY = "priority"
    FIRST_SEEN = "first_seen"


@dataclass(frozen=True, slots=True)
class FeedFilter:
    unread_only: bool = False
    entity_types: frozenset[str] | None = None
    states: frozenset[str] | None = None
    since: datetime | None = None

    def matches(self, notification: Notification) -> bool:
        if self.unread_only and notification.read:
            return False
        if self.entity_types is not None and notification.entity_type not in self.entity_types:
            return False
        if self.states is not None and notification.latest_state not in self.states:
            return False
        if self.since is not None and notification.latest_occurred_at < self.since:
            return False
        return True


@dataclass(frozen=True, slots=True)
class FeedPage:
    items: list[Notification]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def _sort_key(sort: FeedSort):
    # Descending fields are negated; the key string is always the final ascending tie-break.
    if sort is FeedSort.PRIORITY:
        return lambda n: (-n.priority, -n.latest_occurred_at.timestamp(), str(n.key))
    if sort is FeedSort.FIRST_SEEN:
        return lambda n: (-n.first_occurred_at.timestamp(), str(n.key))
    return lambda n: (-n.latest_occurred_at.timestamp(), -n.priority, str(n.key))


def list_notifications(
    notifications: Iterable[Notification],
    sort: FeedSort = FeedSort.RECENT,
    filter: FeedFilter | None = None,
) -> list[Notification]:
    """
    Order and filter notifications.

    Default order: latest_occurred_at desc, priority desc, key asc.
    """
    criteria = filter or FeedFilter()
    selected = [n for n in notifications if criteria.matches(n)]
    selected.sort(key=_sort_key(FeedSort(sort)))
    return selected


def paginate(items: list[Notification], offset: int = 0, limit: int = 50) -> FeedPage:
    offset = max(0, offset)
    limit = max(1, limit)
    return FeedPage(items=items[offset : offset + limit], total=len(items), offset=offset, limit=limit)


def group_by_entity_type(items: Iterable[Notification]) -> dict[str, list[Notification]]:
    """Group preserving feed order; groups appear in order of their first item."""
    groups: dict[str, list[Notification]] = {}
    for notification in items:
        groups.setdefault(notification.entity_type, []).append(notification)
    return groups
