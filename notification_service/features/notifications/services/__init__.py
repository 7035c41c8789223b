"""
Notification engine services.

Stateful pieces built on the pipeline: the per-user engine, its registry,
feed subscription glue, retention policies and diagnostics.
"""

from .diagnostics import EngineDiagnostics
from .engine import EngineChange, NotificationEngine
from .registry import EngineRegistry
from .retention import CompositePolicy, MaxAgePolicy, MaxEntriesPolicy, RetentionPolicy, policy_from_config
from .subscription import QueueSubscription

__all__ = [
    "CompositePolicy",
    "EngineChange",
    "EngineDiagnostics",
    "EngineRegistry",
    "MaxAgePolicy",
    "MaxEntriesPolicy",
    "NotificationEngine",
    "QueueSubscription",
    "RetentionPolicy",
    "policy_from_config",
]
