"""
Reconciliation pipeline.

Pure building blocks of the engine: key resolution, state priorities, the
reducer that folds events into notifications, and the derived feed views.
"""

from .feed import FeedFilter, FeedPage, FeedSort, group_by_entity_type, list_notifications, paginate
from .key_resolver import KeyResolver, key_resolver, resolve_key
from .priority_table import UNKNOWN_PRIORITY, PriorityTable, build_priority_table
from .reducer import ApplyOutcome, ApplyResult, ReconciliationReducer

__all__ = [
    "ApplyOutcome",
    "ApplyResult",
    "FeedFilter",
    "FeedPage",
    "FeedSort",
    "KeyResolver",
    "PriorityTable",
    "ReconciliationReducer",
    "UNKNOWN_PRIORITY",
    "build_priority_table",
    "group_by_entity_type",
    "key_resolver",
    "list_notifications",
    "paginate",
    "resolve_key",
]
