"""
State priority table.

Priority encodes terminal-ness and importance, not recency: a stale
re-delivery of a low-priority state must never regress a notification that
already advanced. Higher number wins. The ordering among non-terminal states
is business policy, so the defaults below can be overridden per deployment
through NOTIFICATION_PRIORITY_OVERRIDES.
"""

from __future__ import annotations

from collections.abc import Mapping

from notification_service.config import settings
from notification_service.infrastructure.observability.logging import get_logger

from ..domain.errors import PriorityTableError
from ..domain.models import StateTag

logger = get_logger(__name__)

# Below every configured priority; configured priorities must be >= 1
UNKNOWN_PRIORITY = 0

DEFAULT_PRIORITIES: dict[str, dict[str, int]] = {
    "match_request": {
        "Pending": 40,
        "Submitted": 50,
        "Forwarded": 50,
        "Reopened": 55,
        "Updated": 60,
        "Measured": 70,
        "SentForApproval": 80,
        "Rejected": 90,
        "Approved": 100,
    },
    "job": {
        "New": 60,
        "Routed": 65,
        "PendingApproval": 70,
        "Working": 75,
        "Approved": 85,
        "Rejected": 90,
        "Completed": 100,
    },
    "routed_job": {
        "Routed": 78,
        "Working": 80,
        "Completed": 100,
    },
    "color": {
        "Shared": 60,
        "Updated": 70,
        "Rejected": 90,
        "Approved": 100,
    },
    "partner": {
        "Invited": 50,
        "Accepted": 80,
        "Declined": 80,
    },
}


class PriorityTable:
    """Static (entity_type, state) -> priority lookup with an explicit unknown variant."""

    def __init__(self, priorities: Mapping[str, Mapping[str, int]]):
        self._priorities = self._validate(priorities)
        self._reported: set[tuple[str, str]] = set()

    @staticmethod
    def _validate(priorities: Mapping[str, Mapping[str, int]]) -> dict[str, dict[str, int]]:
        if not isinstance(priorities, Mapping):
            raise PriorityTableError("Priority table must be a mapping of entity types")

        validated: dict[str, dict[str, int]] = {}
        for entity_type, states in priorities.items():
            if not isinstance(states, Mapping):
                raise PriorityTableError(f"States for '{entity_type}' must be a mapping")
            validated[entity_type] = {}
            for state, priority in states.items():
                if isinstance(priority, bool) or not isinstance(priority, int):
                    raise PriorityTableError(
                        f"Priority for {entity_type}.{state} must be an integer, got {priority!r}"
                    )
                if priority <= UNKNOWN_PRIORITY:
                    raise PriorityTableError(
                        f"Priority for {entity_type}.{state} must be greater than {UNKNOWN_PRIORITY}"
                    )
                validated[entity_type][state] = priority
        return validated

    @classmethod
    def from_mapping(
        cls,
        overrides: Mapping[str, Mapping[str, int]] | None = None,
        base: Mapping[str, Mapping[str, int]] = DEFAULT_PRIORITIES,
    ) -> PriorityTable:
        """Merge per-entity-type overrides over the base table."""
        merged = {entity_type: dict(states) for entity_type, states in base.items()}
        for entity_type, states in (overrides or {}).items():
            if not isinstance(states, Mapping):
                raise PriorityTableError(f"States for '{entity_type}' must be a mapping")
            merged.setdefault(entity_type, {}).update(states)
        return cls(merged)

    def classify(self, entity_type: str, state: str) -> StateTag:
        priority = self._priorities.get(entity_type, {}).get(state)
        if priority is None:
            if (entity_type, state) not in self._reported:
                self._reported.add((entity_type, state))
                logger.warning(
                    "Unknown notification state, folding at lowest priority",
                    entity_type=entity_type,
                    state=state,
                    known_entity_type=entity_type in self._priorities,
                )
            return StateTag(entity_type=entity_type, state=state, priority=UNKNOWN_PRIORITY, known=False)
        return StateTag(entity_type=entity_type, state=state, priority=priority, known=True)

    def priority_of(self, entity_type: str, state: str) -> int:
        return self.classify(entity_type, state).priority

    def states_for(self, entity_type: str) -> dict[str, int]:
        return dict(self._priorities.get(entity_type, {}))

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {entity_type: dict(states) for entity_type, states in self._priorities.items()}


def build_priority_table() -> PriorityTable:
    """Build the table for this deployment from settings."""
    table = PriorityTable.from_mapping(settings.NOTIFICATION_PRIORITY_OVERRIDES)
    if settings.NOTIFICATION_PRIORITY_OVERRIDES:
        logger.info(
            "Priority table overrides applied",
            entity_types=sorted(settings.NOTIFICATION_PRIORITY_OVERRIDES),
        )
    return table
