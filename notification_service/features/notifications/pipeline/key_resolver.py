"""
Entity key resolver - maps a raw event to its canonical deduplication key.

Most entity types dedupe on (entity_type, entity_id). A few compose a richer
key from sub-resource refs so that logically distinct notifications on the
same parent entity (one per color of a match request, one per receiving org
of a routed job) are not merged.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

from notification_service.infrastructure.observability.logging import get_logger

from ..domain.models import NotificationKey, RawEvent

logger = get_logger(__name__)

ScopeComposer = Callable[[RawEvent], tuple[str, ...]]


def _first_ref(*names: str) -> ScopeComposer:
    """Scope on the first ref present, in preference order."""

    def compose(event: RawEvent) -> tuple[str, ...]:
        for name in names:
            value = event.refs.get(name, "").strip()
            if value:
                return (name, value)
        return ()

    return compose


DEFAULT_COMPOSERS: dict[str, ScopeComposer] = {
    "match_request": _first_ref("color", "measurement"),
    "job": _first_ref("color", "measurement"),
    "routed_job": _first_ref("receiver_org"),
    "partner": _first_ref("partner_org"),
}


class KeyResolver:
    """Resolves NotificationKeys; total and deterministic across restarts."""

    def __init__(self, composers: Mapping[str, ScopeComposer] | None = None):
        self._composers = dict(DEFAULT_COMPOSERS if composers is None else composers)

    def resolve(self, event: RawEvent) -> NotificationKey:
        composer = self._composers.get(event.entity_type)
        scope: tuple[str, ...] = ()
        if composer is not None:
            try:
                scope = tuple(str(part) for part in composer(event))
            except Exception as e:
                # Fall back to the default composition so the event stays deduplicable
                logger.warning(
                    "Key composer failed, using default key",
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    error=str(e),
                )
                scope = ()
            if len(scope) % 2 != 0:
                logger.warning(
                    "Key composer returned unpaired scope, using default key",
                    entity_type=event.entity_type,
                    scope=scope,
                )
                scope = ()
        return NotificationKey(entity_type=event.entity_type, entity_id=event.entity_id, scope=scope)

    @property
    def entity_types(self) -> list[str]:
        return sorted(self._composers)


key_resolver = KeyResolver()


def resolve_key(event: RawEvent) -> NotificationKey:
    return key_resolver.resolve(event)
