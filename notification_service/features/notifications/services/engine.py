"""
Notification engine - the single owner of one user's reconciled notifications.

Every mutation of the reconciled map (feed applies, read mutations, hydration
results, retention sweeps) happens inside one lock per engine, so a burst of
feed events can never interleave with a concurrent mark_read. Store I/O runs
as background tasks on the engine's event loop and never blocks the fold;
the in-memory read flag is updated optimistically before the write lands.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from collections.abc import AsyncIterable, Callable, Coroutine, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from notification_service.infrastructure.observability.logging import get_logger
from notification_service.services.read_state_store import ReadStateStore

from ..domain.errors import EngineClosedError, MalformedEventError
from ..domain.models import Notification, NotificationKey, RawEvent
from ..pipeline.feed import FeedFilter, FeedSort, list_notifications
from ..pipeline.key_resolver import KeyResolver
from ..pipeline.priority_table import PriorityTable
from ..pipeline.reducer import ApplyOutcome, ApplyResult, ReconciliationReducer
from .diagnostics import EngineDiagnostics
from .retention import RetentionPolicy
from .subscription import FeedItem

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class EngineChange:
    """Delivered to observers after every visible change."""

    kind: str  # "applied" | "read" | "hydrated" | "evicted"
    keys: tuple[NotificationKey, ...]
    unread_count: int


Observer = Callable[[EngineChange], None]


class NotificationEngine:
    """
    Reconciles a raw event feed into a deduplicated notification feed.

    Lifecycle: await start() on the event loop, attach() a feed (or call
    on_event directly), and await close() on logout/detach.
    """

    def __init__(
        self,
        store: ReadStateStore | None = None,
        *,
        user_id: str | None = None,
        priority_table: PriorityTable | None = None,
        resolver: KeyResolver | None = None,
    ):
        self.user_id = user_id
        self.store = store
        self.diagnostics = EngineDiagnostics(user_id=user_id)
        self._reducer = ReconciliationReducer(priority_table=priority_table, resolver=resolver)
        self._lock = threading.Lock()
        self._observers: dict[int, Observer] = {}
        self._next_observer_id = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[concurrent.futures.Future] = set()
        self._consumer: asyncio.Task | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bind the engine to the running loop; store I/O is scheduled there."""
        if self._closed:
            raise EngineClosedError()
        self._loop = asyncio.get_running_loop()
        logger.info("Notification engine started", user_id=self.user_id)

    def attach(self, source: AsyncIterable[FeedItem]) -> asyncio.Task:
        """Start consuming a feed. Only one feed may be attached at a time."""
        if self._closed:
            raise EngineClosedError()
        if self._consumer is not None and not self._consumer.done():
            raise RuntimeError("A feed is already attached to this engine")
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._consumer = self._loop.create_task(self._consume(source))
        return self._consumer

    async def _consume(self, source: AsyncIterable[FeedItem]) -> None:
        logger.info("Feed attached", user_id=self.user_id)
        async for item in source:
            try:
                self.on_event(item)
            except EngineClosedError:
                return
            except Exception as e:
                # One bad event must not stop the feed
                logger.error(
                    "Unexpected error folding event",
                    user_id=self.user_id,
                    error=f"{type(e).__name__}: {e}",
                )
        logger.info("Feed ended", user_id=self.user_id)

    async def detach(self) -> None:
        """Stop consuming the feed; reconciled state and pending writes are kept."""
        consumer, self._consumer = self._consumer, None
        if consumer is None or consumer.done():
            return
        consumer.cancel()
        try:
            await consumer
        except asyncio.CancelledError:
            pass
        logger.info("Feed detached", user_id=self.user_id)

    async def close(self) -> None:
        """Detach, then wait for in-flight store writes to complete or fail."""
        if self._closed:
            return
        await self.detach()
        self._closed = True
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*(asyncio.wrap_future(f) for f in pending), return_exceptions=True)
        with self._lock:
            self._observers.clear()
        logger.info(
            "Notification engine closed",
            user_id=self.user_id,
            notifications=len(self._reducer),
            diagnostics=self.diagnostics.to_dict(),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def attached(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    # ------------------------------------------------------------------
    # Feed input
    # ------------------------------------------------------------------

    def on_event(self, item: FeedItem) -> ApplyResult | None:
        """
        Fold one delivered event.

        Malformed events are dropped and reported; returns None for them.
        """
        if self._closed:
            raise EngineClosedError()

        if isinstance(item, RawEvent):
            event = item
        else:
            try:
                event = RawEvent.from_mapping(item)
            except MalformedEventError as e:
                self.report_malformed(e)
                return None

        with self._lock:
            result = self._reducer.apply(event)
            self._record(result, event)
            hydrate_version = None
            if result.outcome is ApplyOutcome.CREATED and not result.notification.read:
                hydrate_version = self._reducer.read_version(result.key)
            unread = self._reducer.unread_count

        if hydrate_version is not None and self.store is not None:
            self._spawn(self._hydrate(result.key, hydrate_version))
        if result.resurfaced:
            self._persist([result.key], False, "resurface")
        if result.changed:
            self._notify(EngineChange("applied", (result.key,), unread))
        return result

    def report_malformed(self, error: MalformedEventError) -> None:
        """Record an event dropped before it reached the fold."""
        with self._lock:
            self.diagnostics.record_malformed(str(error), error.field)

    def apply_many(self, items: Iterable[FeedItem]) -> list[ApplyResult | None]:
        return [self.on_event(item) for item in items]

    def _record(self, result: ApplyResult, event: RawEvent) -> None:
        diag = self.diagnostics
        if result.outcome is ApplyOutcome.DUPLICATE:
            diag.duplicate_events += 1
            return
        diag.events_applied += 1
        if not result.tag.known:
            diag.record_unknown_state(event.entity_type, event.state)
        if result.outcome is ApplyOutcome.STALE:
            diag.stale_events += 1
        if result.resurfaced:
            diag.resurfaced += 1

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def list_notifications(
        self, sort: FeedSort = FeedSort.RECENT, filter: FeedFilter | None = None
    ) -> list[Notification]:
        with self._lock:
            snapshots = self._reducer.snapshots()
        return list_notifications(snapshots, sort=sort, filter=filter)

    def get(self, key: NotificationKey) -> Notification | None:
        with self._lock:
            return self._reducer.get(key)

    def unread_count(self) -> int:
        with self._lock:
            return self._reducer.unread_count

    def recount(self) -> int:
        """Unread count recomputed from scratch."""
        with self._lock:
            return self._reducer.recount()

    def __len__(self) -> int:
        with self._lock:
            return len(self._reducer)

    # ------------------------------------------------------------------
    # Read mutations
    # ------------------------------------------------------------------

    def mark_read(self, key: NotificationKey) -> bool:
        """Mark one notification read; False (no-op) for unknown keys."""
        with self._lock:
            if key not in self._reducer:
                return False
            changed = self._reducer.set_read(key, True)
            unread = self._reducer.unread_count

        if changed:
            self._persist([key], True, "mark_read")
            self._notify(EngineChange("read", (key,), unread))
        return True

    def mark_all_read(self) -> int:
        """Mark every current notification read; returns how many changed."""
        with self._lock:
            changed = self._reducer.set_all_read()
            keys = list(self._reducer.keys())
            unread = self._reducer.unread_count

        if keys:
            self._persist(keys, True, "mark_all_read")
        if changed:
            self._notify(EngineChange("read", tuple(changed), unread))
        return len(changed)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def sweep(self, policy: RetentionPolicy, now: datetime | None = None) -> list[Notification]:
        """Evict the entries the policy selects."""
        now = now or datetime.now(UTC)
        with self._lock:
            selected = policy.select(self._reducer.snapshots(), now)
            removed = self._reducer.evict(selected)
            self.diagnostics.evicted += len(removed)
            unread = self._reducer.unread_count

        if removed:
            self._notify(EngineChange("evicted", tuple(n.key for n in removed), unread))
        return removed

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register a change observer; returns a callable that unsubscribes it."""
        with self._lock:
            observer_id = self._next_observer_id
            self._next_observer_id += 1
            self._observers[observer_id] = observer

        def unsubscribe() -> None:
            with self._lock:
                self._observers.pop(observer_id, None)

        return unsubscribe

    def _notify(self, change: EngineChange) -> None:
        with self._lock:
            observers = list(self._observers.values())
        for observer in observers:
            try:
                observer(change)
            except Exception as e:
                with self._lock:
                    self.diagnostics.record_observer_error(f"{type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # Store I/O
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        loop = self._loop
        if loop is None:
            try:
                loop = self._loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("Engine not started, read-state I/O skipped", user_id=self.user_id)
                coro.close()
                return
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _persist(self, keys: list[NotificationKey], value: bool, operation: str) -> None:
        if self.store is None:
            return
        self._spawn(self._write(keys, value, operation))

    async def _write(self, keys: list[NotificationKey], value: bool, operation: str) -> None:
        try:
            ok = await self.store.set_many(keys, value)
        except Exception as e:
            logger.error("Read-state store raised", operation=operation, error=str(e))
            ok = False
        if not ok:
            with self._lock:
                self.diagnostics.record_persistence_failure(operation, len(keys))

    async def _hydrate(self, key: NotificationKey, read_version: int) -> None:
        try:
            stored = await self.store.get(key)
        except Exception as e:
            with self._lock:
                self.diagnostics.record_hydration_failure(str(key), str(e))
            return
        if stored is None:
            return

        with self._lock:
            changed = self._reducer.hydrate_read(key, stored, read_version)
            unread = self._reducer.unread_count
        if changed:
            self._notify(EngineChange("hydrated", (key,), unread))

    async def flush(self) -> None:
        """Wait for store I/O scheduled so far."""
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*(asyncio.wrap_future(f) for f in pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def diagnostics_snapshot(self) -> dict:
        with self._lock:
            data = self.diagnostics.to_dict()
            data["notifications"] = len(self._reducer)
            data["unread_count"] = self._reducer.unread_count
            data["unread_recount"] = self._reducer.recount()
        data["attached"] = self.attached
        data["pending_writes"] = len(self._pending)
        return data
