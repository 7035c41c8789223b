"""
Reconciliation reducer - folds raw events into one Notification per key.

Decision rule for an event against the stored entry:
    higher priority wins; equal priority is tie-broken by occurred_at, then
    by state tag; lower priority is a stale replay and only counted.

The decision depends only on values carried by the events, never on arrival
order, so replays and reordering after a feed reconnect converge to the same
result. Exact re-deliveries (same state, timestamp and actor) are no-ops.

The reducer performs no I/O and holds no lock; NotificationEngine owns the
critical section around it.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from notification_service.infrastructure.observability.logging import get_logger

from ..domain.models import Notification, NotificationKey, RawEvent, StateTag
from .key_resolver import KeyResolver, key_resolver
from .priority_table import PriorityTable, build_priority_table

logger = get_logger(__name__)


class ApplyOutcome(str, Enum):
    CREATED = "created"
    ADVANCED = "advanced"
    REFRESHED = "refreshed"
    STALE = "stale"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class _Entry:
    key: NotificationKey
    entity_type: str
    entity_id: str
    state: str
    priority: int
    state_known: bool
    latest_occurred_at: datetime
    first_occurred_at: datetime
    payload: Any
    actor: str | None
    read: bool
    revision_count: int = 1
    # Bumped whenever the read flag changes or the entry resurfaces
    read_version: int = 0
    # Fingerprints of every distinct event folded into this entry. Grows with the
    # number of distinct events for the key and is released when retention
    # evicts the entry; pruning lower-priority fingerprints would let their
    # re-delivery count as a new revision.
    seen: set = field(default_factory=set)

    def snapshot(self) -> Notification:
        return Notification(
            key=self.key,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            latest_state=self.state,
            priority=self.priority,
            state_known=self.state_known,
            latest_occurred_at=self.latest_occurred_at,
            first_occurred_at=self.first_occurred_at,
            display_payload=self.payload,
            actor=self.actor,
            read=self.read,
            revision_count=self.revision_count,
        )


@dataclass(frozen=True, slots=True)
class ApplyResult:
    key: NotificationKey
    outcome: ApplyOutcome
    tag: StateTag
    notification: Notification
    resurfaced: bool = False

    @property
    def changed(self) -> bool:
        return self.outcome is not ApplyOutcome.DUPLICATE


class ReconciliationReducer:
    """Owns the reconciled map: NotificationKey -> entry."""

    def __init__(
        self,
        priority_table: PriorityTable | None = None,
        resolver: KeyResolver | None = None,
    ):
        self.priority_table = priority_table or build_priority_table()
        self.resolver = resolver or key_resolver
        self._entries: dict[NotificationKey, _Entry] = {}
        self._unread = 0

    # ------------------------------------------------------------------
    # Fold
    # ------------------------------------------------------------------

    def apply(
        self,
        event: RawEvent,
        *,
        initial_read: bool = False,
    ) -> ApplyResult:
        """
        Fold one event into the reconciled map.

        Args:
            event: The raw event to fold
            initial_read: Read flag for a newly created entry (hydrated value)

        Returns:
            ApplyResult describing what happened to the entry
        """
        key = self.resolver.resolve(event)
        tag = self.priority_table.classify(event.entity_type, event.state)

        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(
                key=key,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                state=event.state,
                priority=tag.priority,
                state_known=tag.known,
                latest_occurred_at=event.occurred_at,
                first_occurred_at=event.occurred_at,
                payload=event.payload,
                actor=event.actor,
                read=initial_read,
            )
            entry.seen.add(event.fingerprint)
            self._entries[key] = entry
            if not entry.read:
                self._unread += 1
            return ApplyResult(key, ApplyOutcome.CREATED, tag, entry.snapshot())

        if event.fingerprint in entry.seen:
            return ApplyResult(key, ApplyOutcome.DUPLICATE, tag, entry.snapshot())

        entry.seen.add(event.fingerprint)
        entry.revision_count += 1
        if event.occurred_at < entry.first_occurred_at:
            entry.first_occurred_at = event.occurred_at

        if tag.priority > entry.priority:
            outcome = ApplyOutcome.ADVANCED
            state_changed = True
        elif tag.priority == entry.priority and self._is_newer(event, entry):
            state_changed = event.state != entry.state
            outcome = ApplyOutcome.ADVANCED if state_changed else ApplyOutcome.REFRESHED
        else:
            return ApplyResult(key, ApplyOutcome.STALE, tag, entry.snapshot())

        entry.state = event.state
        entry.priority = tag.priority
        entry.state_known = tag.known
        entry.latest_occurred_at = event.occurred_at
        entry.payload = event.payload
        entry.actor = event.actor

        resurfaced = False
        if state_changed:
            entry.read_version += 1
            if entry.read:
                self._set_read(entry, False)
                resurfaced = True

        return ApplyResult(key, outcome, tag, entry.snapshot(), resurfaced=resurfaced)

    @staticmethod
    def _is_newer(event: RawEvent, entry: _Entry) -> bool:
        if event.occurred_at != entry.latest_occurred_at:
            return event.occurred_at > entry.latest_occurred_at
        # Same priority, same instant: pick by tag so the result is order-independent
        return event.state > entry.state

    def apply_all(self, events: Iterable[RawEvent], **kwargs) -> list[ApplyResult]:
        return [self.apply(event, **kwargs) for event in events]

    # ------------------------------------------------------------------
    # Read projection
    # ------------------------------------------------------------------

    def _set_read(self, entry: _Entry, value: bool) -> bool:
        if entry.read == value:
            return False
        entry.read = value
        entry.read_version += 1
        self._unread += -1 if value else 1
        return True

    def set_read(self, key: NotificationKey, value: bool) -> bool:
        """Set the read flag; returns False for unknown keys or no change."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        return self._set_read(entry, value)

    def set_all_read(self) -> list[NotificationKey]:
        changed = [entry.key for entry in self._entries.values() if self._set_read(entry, True)]
        return changed

    def hydrate_read(self, key: NotificationKey, value: bool, read_version: int) -> bool:
        """Apply a stored read flag unless the entry moved on since hydration was requested."""
        entry = self._entries.get(key)
        if entry is None or entry.read_version != read_version:
            return False
        return self._set_read(entry, value)

    def read_version(self, key: NotificationKey) -> int | None:
        entry = self._entries.get(key)
        return entry.read_version if entry else None

    # ------------------------------------------------------------------
    # Queries and retention
    # ------------------------------------------------------------------

    @property
    def unread_count(self) -> int:
        return self._unread

    def recount(self) -> int:
        return sum(1 for entry in self._entries.values() if not entry.read)

    def get(self, key: NotificationKey) -> Notification | None:
        entry = self._entries.get(key)
        return entry.snapshot() if entry else None

    def snapshots(self) -> list[Notification]:
        return [entry.snapshot() for entry in self._entries.values()]

    def keys(self) -> Iterator[NotificationKey]:
        return iter(list(self._entries))

    def evict(self, keys: Iterable[NotificationKey]) -> list[Notification]:
        removed = []
        for key in keys:
            entry = self._entries.pop(key, None)
            if entry is None:
                continue
            if not entry.read:
                self._unread -= 1
            removed.append(entry.snapshot())
        if removed:
            logger.info("Evicted notifications", count=len(removed))
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: NotificationKey) -> bool:
        return key in self._entries
