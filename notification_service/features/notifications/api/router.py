"""
Notification routes.

The consuming surface (notification dropdown, dashboard badge) reads the
reconciled feed and unread count here and sends read mutations back. The
feed bridge posts raw change events to /notifications/events.

Requests are scoped per user by the X-User-Id header.
"""

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from notification_service.config import settings
from notification_service.infrastructure.observability.logging import get_logger

from ..domain.errors import EngineClosedError, MalformedEventError
from ..domain.models import NotificationKey, RawEvent
from ..pipeline.feed import FeedFilter, FeedSort, group_by_entity_type, paginate
from ..services.engine import NotificationEngine
from ..services.registry import EngineRegistry
from .schemas import (
    EventBatchRequest,
    EventBatchResponse,
    EventOutcome,
    MarkAllReadResponse,
    MarkReadRequest,
    MarkReadResponse,
    NotificationGroupsResponse,
    NotificationListResponse,
    NotificationResponse,
    SessionReleaseResponse,
    UnreadCountResponse,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = get_logger(__name__)


async def current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id is required")
    structlog.contextvars.bind_contextvars(user_id=user_id)
    return user_id


def get_registry(request: Request) -> EngineRegistry:
    registry = getattr(request.app.state, "engine_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification engine not initialized",
        )
    return registry


async def get_engine(
    user_id: str = Depends(current_user_id),
    registry: EngineRegistry = Depends(get_registry),
) -> NotificationEngine:
    return await registry.get_or_create(user_id)


def _build_filter(
    unread_only: bool,
    entity_type: list[str] | None,
    state: list[str] | None,
) -> FeedFilter:
    return FeedFilter(
        unread_only=unread_only,
        entity_types=frozenset(entity_type) if entity_type else None,
        states=frozenset(state) if state else None,
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    sort: FeedSort = FeedSort.RECENT,
    unread_only: bool = False,
    entity_type: list[str] | None = Query(None),
    state: list[str] | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int | None = Query(None, ge=1),
    engine: NotificationEngine = Depends(get_engine),
):
    page_size = min(limit or settings.FEED_DEFAULT_PAGE_SIZE, settings.FEED_MAX_PAGE_SIZE)
    items = engine.list_notifications(sort=sort, filter=_build_filter(unread_only, entity_type, state))
    page = paginate(items, offset=offset, limit=page_size)

    return NotificationListResponse(
        items=[NotificationResponse.from_domain(n) for n in page.items],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        has_more=page.has_more,
        unread_count=engine.unread_count(),
    )


@router.get("/grouped", response_model=NotificationGroupsResponse)
async def list_grouped_notifications(
    sort: FeedSort = FeedSort.RECENT,
    unread_only: bool = False,
    engine: NotificationEngine = Depends(get_engine),
):
    items = engine.list_notifications(sort=sort, filter=FeedFilter(unread_only=unread_only))
    groups = group_by_entity_type(items)
    return NotificationGroupsResponse(
        groups={
            entity_type: [NotificationResponse.from_domain(n) for n in members]
            for entity_type, members in groups.items()
        },
        unread_count=engine.unread_count(),
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(engine: NotificationEngine = Depends(get_engine)):
    return UnreadCountResponse(unread_count=engine.unread_count())


@router.post("/events", response_model=EventBatchResponse)
async def ingest_events(body: EventBatchRequest, engine: NotificationEngine = Depends(get_engine)):
    results: list[EventOutcome] = []
    malformed = 0

    for index, data in enumerate(body.events):
        try:
            event = RawEvent.from_mapping(data)
        except MalformedEventError as e:
            engine.report_malformed(e)
            malformed += 1
            results.append(EventOutcome(index=index, outcome="malformed", error=str(e)))
            continue

        try:
            result = engine.on_event(event)
        except EngineClosedError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

        results.append(
            EventOutcome(
                index=index,
                outcome=result.outcome.value,
                key=str(result.key),
                resurfaced=result.resurfaced,
            )
        )

    logger.info("Notification events ingested", received=len(body.events), malformed=malformed)
    return EventBatchResponse(
        results=results,
        applied=len(results) - malformed,
        malformed=malformed,
        unread_count=engine.unread_count(),
    )


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(engine: NotificationEngine = Depends(get_engine)):
    marked = engine.mark_all_read()
    return MarkAllReadResponse(marked=marked, unread_count=engine.unread_count())


@router.post("/read", response_model=MarkReadResponse)
async def mark_read(body: MarkReadRequest, engine: NotificationEngine = Depends(get_engine)):
    # Keys travel in the body: their canonical form is percent-encoded and would
    # be decoded once more if sent as a path segment
    try:
        notification_key = NotificationKey.parse(body.key)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    found = engine.mark_read(notification_key)
    return MarkReadResponse(key=str(notification_key), found=found, unread_count=engine.unread_count())


@router.get("/diagnostics")
async def diagnostics(engine: NotificationEngine = Depends(get_engine)) -> dict:
    return engine.diagnostics_snapshot()


@router.delete("/session", response_model=SessionReleaseResponse)
async def release_session(
    user_id: str = Depends(current_user_id),
    registry: EngineRegistry = Depends(get_registry),
):
    released = await registry.release(user_id)
    return SessionReleaseResponse(released=released)
