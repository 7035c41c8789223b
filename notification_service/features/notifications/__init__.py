"""
Notification reconciliation feature package.

Turns a stream of raw, possibly duplicated and reordered domain change
events into a deduplicated, priority-ordered notification feed with an
accurate unread count. Domain models, the reconciliation pipeline, the
per-user engine, jobs and the HTTP router live together here.
"""

from .domain.models import Notification, NotificationKey, RawEvent  # noqa: F401
from .pipeline.feed import FeedFilter, FeedSort  # noqa: F401
