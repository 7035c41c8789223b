"""
Diagnostic channel for the notification engine.

Counts what the fold dropped, tolerated or failed to persist, and keeps a
bounded list of recent problems for the diagnostics endpoint.
"""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime

from notification_service.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_RECENT_ERRORS = 50


class EngineDiagnostics:
    """Diagnostic counters for one engine instance."""

    def __init__(self, user_id: str | None = None):
        self.user_id = user_id
        self.reset()

    def reset(self):
        """Reset all counters."""
        self.started_at = datetime.now(UTC)
        self.events_applied = 0
        self.malformed_events = 0
        self.unknown_states = 0
        self.duplicate_events = 0
        self.stale_events = 0
        self.resurfaced = 0
        self.persistence_failures = 0
        self.hydration_failures = 0
        self.observer_errors = 0
        self.evicted = 0
        self.errors: deque[dict] = deque(maxlen=MAX_RECENT_ERRORS)

    def _record_error(self, error_type: str, **details):
        self.errors.append(
            {"error_type": error_type, "timestamp": datetime.now(UTC).isoformat(), **details}
        )

    def record_malformed(self, error: str, field: str | None = None):
        self.malformed_events += 1
        self._record_error("malformed_event", error=error, field=field)
        logger.warning("Malformed notification event dropped", user_id=self.user_id, error=error, field=field)

    def record_unknown_state(self, entity_type: str, state: str):
        self.unknown_states += 1
        self._record_error("unknown_state", entity_type=entity_type, state=state)

    def record_persistence_failure(self, operation: str, keys: int):
        self.persistence_failures += 1
        self._record_error("persistence_failure", operation=operation, keys=keys)
        logger.error(
            "Read-state persistence failed, in-memory flag kept",
            user_id=self.user_id,
            operation=operation,
            keys=keys,
        )

    def record_hydration_failure(self, key: str, error: str):
        self.hydration_failures += 1
        self._record_error("hydration_failure", key=key, error=error)

    def record_observer_error(self, error: str):
        self.observer_errors += 1
        self._record_error("observer_error", error=error)
        logger.error("Notification observer raised", user_id=self.user_id, error=error)

    def to_dict(self) -> dict:
        """Convert counters to dictionary for logging and the diagnostics endpoint."""
        return {
            "user_id": self.user_id,
            "started_at": self.started_at.isoformat(),
            "events_applied": self.events_applied,
            "malformed_events": self.malformed_events,
            "unknown_states": self.unknown_states,
            "duplicate_events": self.duplicate_events,
            "stale_events": self.stale_events,
            "resurfaced": self.resurfaced,
            "persistence_failures": self.persistence_failures,
            "hydration_failures": self.hydration_failures,
            "observer_errors": self.observer_errors,
            "evicted": self.evicted,
            "recent_errors": list(self.errors),
        }
