"""
Domain models for the notification reconciliation feature.

RawEvent is what the change feed delivers, Notification is what the
consuming surface renders. Both are immutable; the reducer keeps its own
mutable bookkeeping and hands out Notification snapshots only.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any
from urllib.parse import quote, unquote

from .errors import MalformedEventError

REQUIRED_EVENT_FIELDS = ("entity_type", "entity_id", "state")


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Accept datetimes, ISO-8601 strings and epoch seconds; always return aware UTC."""
    if isinstance(value, datetime):
        return _ensure_utc(value)
    if isinstance(value, bool):
        raise MalformedEventError("occurred_at must be a timestamp", field="occurred_at")
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _ensure_utc(datetime.fromisoformat(text))
        except ValueError as e:
            raise MalformedEventError(
                f"occurred_at is not an ISO-8601 timestamp: {value!r}", field="occurred_at"
            ) from e
    raise MalformedEventError("occurred_at is missing", field="occurred_at")


@dataclass(frozen=True, slots=True)
class RawEvent:
    """One delivered change notification from the external feed."""

    entity_type: str
    entity_id: str
    state: str
    occurred_at: datetime
    actor: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False)
    refs: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in REQUIRED_EVENT_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise MalformedEventError(f"RawEvent.{name} is required", field=name)
        if not isinstance(self.occurred_at, datetime):
            raise MalformedEventError("RawEvent.occurred_at must be a datetime", field="occurred_at")
        object.__setattr__(self, "occurred_at", _ensure_utc(self.occurred_at))
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload or {})))
        object.__setattr__(
            self,
            "refs",
            MappingProxyType({str(k): str(v) for k, v in (self.refs or {}).items() if v is not None}),
        )

    def __hash__(self) -> int:
        return hash(self.fingerprint + (self.entity_type, self.entity_id))

    @property
    def fingerprint(self) -> tuple[str, datetime, str | None]:
        """Identity of this delivery within its notification stream."""
        return (self.state, self.occurred_at, self.actor)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RawEvent:
        """
        Build a RawEvent from a loosely-typed feed record.

        Raises:
            MalformedEventError: if a required field is missing or blank.
        """
        if not isinstance(data, Mapping):
            raise MalformedEventError(f"Event must be a mapping, got {type(data).__name__}")

        values: dict[str, Any] = {}
        for name in REQUIRED_EVENT_FIELDS:
            raw = data.get(name)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                raise MalformedEventError(f"Event is missing required field '{name}'", field=name)
            values[name] = str(raw).strip()

        actor = data.get("actor")
        payload = data.get("payload") or {}
        refs = data.get("refs") or {}
        if not isinstance(payload, Mapping):
            raise MalformedEventError("Event payload must be an object", field="payload")
        if not isinstance(refs, Mapping):
            raise MalformedEventError("Event refs must be an object", field="refs")

        return cls(
            occurred_at=parse_timestamp(data.get("occurred_at")),
            actor=str(actor) if actor is not None else None,
            payload=payload,
            refs=refs,
            **values,
        )


@dataclass(frozen=True, slots=True, order=True)
class NotificationKey:
    """Canonical deduplication identity for one logical notification stream."""

    entity_type: str
    entity_id: str
    scope: tuple[str, ...] = ()

    def __str__(self) -> str:
        parts = (self.entity_type, self.entity_id, *self.scope)
        return ":".join(quote(part, safe="") for part in parts)

    @classmethod
    def parse(cls, text: str) -> NotificationKey:
        parts = [unquote(part) for part in text.split(":")]
        if len(parts) < 2 or len(parts) % 2 != 0 or not all(parts[:2]):
            raise ValueError(f"Not a notification key: {text!r}")
        return cls(entity_type=parts[0], entity_id=parts[1], scope=tuple(parts[2:]))


@dataclass(frozen=True, slots=True)
class StateTag:
    """A state classified against the priority table; unknown states carry the sentinel priority."""

    entity_type: str
    state: str
    priority: int
    known: bool


@dataclass(frozen=True, slots=True)
class Notification:
    """Reconciled, displayable record. One per NotificationKey."""

    key: NotificationKey
    entity_type: str
    entity_id: str
    latest_state: str
    priority: int
    state_known: bool
    latest_occurred_at: datetime
    first_occurred_at: datetime
    display_payload: Mapping[str, Any]
    actor: str | None
    read: bool
    revision_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": str(self.key),
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "latest_state": self.latest_state,
            "priority": self.priority,
            "state_known": self.state_known,
            "latest_occurred_at": self.latest_occurred_at.isoformat(),
            "first_occurred_at": self.first_occurred_at.isoformat(),
            "display_payload": dict(self.display_payload),
            "actor": self.actor,
            "read": self.read,
            "revision_count": self.revision_count,
        }
