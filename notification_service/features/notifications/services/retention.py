"""
Retention policies for reconciled notifications.

The engine never drops entries on its own; a policy selects keys to evict
and NotificationEngine.sweep() removes them under the engine lock.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timedelta

from ..domain.models import Notification, NotificationKey


class RetentionPolicy(ABC):
    """Selects which notifications to evict at time `now`."""

    @abstractmethod
    def select(self, notifications: Sequence[Notification], now: datetime) -> set[NotificationKey]:
        """Keys to evict; must not mutate the snapshots."""


class MaxAgePolicy(RetentionPolicy):
    """Drop entries whose latest event is older than max_age."""

    def __init__(self, max_age: timedelta):
        if max_age <= timedelta(0):
            raise ValueError("max_age must be positive")
        self.max_age = max_age

    def select(self, notifications, now):
        cutoff = now - self.max_age
        return {n.key for n in notifications if n.latest_occurred_at < cutoff}


class MaxEntriesPolicy(RetentionPolicy):
    """Cap the map size, evicting lowest-priority then oldest entries first."""

    def __init__(self, max_entries: int):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries

    def select(self, notifications, now):
        excess = len(notifications) - self.max_entries
        if excess <= 0:
            return set()
        ranked = sorted(
            notifications,
            key=lambda n: (n.priority, n.latest_occurred_at, str(n.key)),
        )
        return {n.key for n in ranked[:excess]}


class CompositePolicy(RetentionPolicy):
    """Applies policies in order; later policies see what earlier ones kept."""

    def __init__(self, *policies: RetentionPolicy):
        self.policies = policies

    def select(self, notifications, now):
        selected: set[NotificationKey] = set()
        remaining = list(notifications)
        for policy in self.policies:
            chosen = policy.select(remaining, now)
            selected |= chosen
            remaining = [n for n in remaining if n.key not in chosen]
        return selected


def policy_from_config(max_age_days: int | None, max_entries: int | None) -> RetentionPolicy | None:
    """Build the configured policy; None when retention is disabled."""
    policies: list[RetentionPolicy] = []
    if max_age_days:
        policies.append(MaxAgePolicy(timedelta(days=max_age_days)))
    if max_entries:
        policies.append(MaxEntriesPolicy(max_entries))
    if not policies:
        return None
    if len(policies) == 1:
        return policies[0]
    return CompositePolicy(*policies)
