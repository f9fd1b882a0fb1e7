"""
Tracking Session — one live map view.

Owns the entity store, the assignment matcher, the animation scheduler, the
stream ingestor and the REST client, with an explicit create() / dispose()
lifecycle. Nothing here is module-global, so several sessions can run side
by side.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple, Union

from guard_tracking.geometry.engine import (
    check_geofence,
    has_coordinates,
    proximity_stats,
)
from guard_tracking.ingest.ingestor import StreamIngestor
from guard_tracking.matching.client import AssignmentClient, AssignmentFetchError
from guard_tracking.matching.matcher import AssignmentMatcher
from guard_tracking.models.assignment import AssignmentRecord, SupervisorGroup
from guard_tracking.models.position import EntityRole, TrackedEntity, TrackingStats
from guard_tracking.models.scope import EventScope, GeofenceCheck
from guard_tracking.models.session import ProximityStats, Subject, TrackingConfig
from guard_tracking.state.animation import AnimationScheduler
from guard_tracking.state.store import EntityStateStore

logger = logging.getLogger(__name__)


def _located(entity: TrackedEntity) -> Optional[Tuple[float, float]]:
    lat, lon = entity.current_position.coordinates
    if not has_coordinates(lat, lon):
        return None
    return (lat, lon)


class TrackingSession:
    """Composition root for live tracking of one selected event."""

    def __init__(
        self,
        config: TrackingConfig,
        subject: Subject,
        store: EntityStateStore,
        matcher: AssignmentMatcher,
        animator: AnimationScheduler,
        ingestor: StreamIngestor,
        client: Optional[AssignmentClient] = None,
    ):
        self.config = config
        self.subject = subject
        self.store = store
        self.matcher = matcher
        self.animator = animator
        self.ingestor = ingestor
        self.client = client

        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._disposed = False

    @classmethod
    def create(
        cls,
        config: Optional[TrackingConfig] = None,
        subject: Optional[Subject] = None,
        transport=None,
        client: Optional[AssignmentClient] = None,
    ) -> "TrackingSession":
        """Build a session with fresh components."""
        config = config or TrackingConfig()
        subject = subject or Subject(subject_id="dashboard", token=config.api_token)

        if transport is None:
            from guard_tracking.ingest.transport import SocketIOTransport
            transport = SocketIOTransport(config)

        animator = AnimationScheduler(duration_ms=config.animation_duration_ms)
        store = EntityStateStore(
            animator=animator,
            trail_limit=config.trail_limit,
            moving_speed_threshold=config.moving_speed_threshold,
            low_battery_threshold=config.low_battery_threshold,
        )
        matcher = AssignmentMatcher(active_statuses=config.active_statuses)
        ingestor = StreamIngestor(
            transport=transport,
            store=store,
            matcher=matcher,
            subject=subject,
        )
        return cls(
            config=config,
            subject=subject,
            store=store,
            matcher=matcher,
            animator=animator,
            ingestor=ingestor,
            client=client,
        )

    @property
    def scope(self) -> Optional[EventScope]:
        return self.matcher.scope

    @property
    def disposed(self) -> bool:
        return self._disposed

    # --- Lifecycle ---

    async def start(self) -> bool:
        """Launch the frame loop and open the stream."""
        if self._disposed:
            raise RuntimeError("Tracking session has been disposed")
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
            self._tasks.append(asyncio.ensure_future(
                self.animator.run_async(
                    stop_event=self._stop_event,
                    frame_interval_seconds=self.config.frame_interval_seconds,
                )
            ))
            if self.config.stale_after_seconds:
                self._tasks.append(asyncio.ensure_future(self._evict_stale_loop()))
        return await self.ingestor.connect()

    async def _evict_stale_loop(self) -> None:
        interval = max(1.0, self.config.stale_after_seconds / 4)
        while not self._stop_event.is_set():
            self.store.evict_stale(self.config.stale_after_seconds)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def dispose(self) -> None:
        """Stop animations, close the stream and forget all state."""
        if self._disposed:
            return
        self._disposed = True
        if self._stop_event is not None:
            self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.ingestor.disconnect()
        self.animator.cancel_all()
        self.matcher.reset()
        if self.client is not None:
            self.client.close()
        logger.info("Tracking session disposed")

    # --- Scope ---

    async def select_event(
        self,
        scope: Union[EventScope, str],
        assignments: Optional[List[AssignmentRecord]] = None,
    ) -> EventScope:
        """
        Make an event the active scope.

        The roster is emptied and the store cleared before anything is
        awaited; until the new roster is loaded every message is dropped.
        """
        if isinstance(scope, str):
            scope = EventScope(event_id=scope)
        self.matcher.load(scope, [])
        self.store.clear()

        if assignments is None:
            assignments = await self._fetch_assignments(scope.event_id)
        if scope.latitude is None and self.client is not None:
            scope = await self._fetch_event(scope)

        await self.ingestor.change_scope(scope, assignments)
        return scope

    async def _fetch_assignments(self, event_id: str) -> List[AssignmentRecord]:
        if self.client is None:
            return []
        try:
            return await asyncio.to_thread(self.client.fetch_assignments, event_id)
        except AssignmentFetchError as e:
            logger.warning("Cannot load assignments for %s: %s", event_id, e)
            self.ingestor.report_error("assignments", str(e))
            return []

    async def _fetch_event(self, scope: EventScope) -> EventScope:
        try:
            fetched = await asyncio.to_thread(self.client.fetch_event, scope.event_id)
        except AssignmentFetchError as e:
            logger.debug("No metadata for event %s: %s", scope.event_id, e)
            return scope
        return fetched.model_copy(update={"event_id": scope.event_id})

    # --- Feeding and reading ---

    def ingest(self, raw: dict) -> Optional[TrackedEntity]:
        """Feed a position by hand, exactly as if it came off the stream."""
        return self.ingestor.handle_position(raw)

    def snapshot(self) -> Dict[str, TrackedEntity]:
        return self.store.snapshot()

    def stats(self, role: Optional[EntityRole] = None) -> TrackingStats:
        return self.store.compute_stats(role)

    def groups(self) -> List[SupervisorGroup]:
        return self.matcher.group_by_supervisor()

    def rendered_positions(self) -> Dict[str, Tuple[float, float]]:
        return self.store.rendered_positions(
            tolerance=self.config.co_location_tolerance,
            radius=self.config.co_location_radius,
        )

    def frames(self) -> Dict[str, Tuple[float, float]]:
        """Displayed position of every entity that is currently animating."""
        frames = {}
        for entity_id in self.store.ids():
            point = self.animator.displayed(entity_id)
            if point is not None:
                frames[entity_id] = point
        return frames

    def geofence(self, entity_id: str) -> Optional[GeofenceCheck]:
        entity = self.store.get(entity_id)
        if entity is None or self.scope is None:
            return None
        return check_geofence(
            entity.current_position.latitude,
            entity.current_position.longitude,
            self.scope,
            self.config.default_geofence_radius_meters,
        )

    def proximity(self, radius_meters: Optional[float] = None) -> Optional[ProximityStats]:
        """Distance bands of tracked entities around the event centre."""
        scope = self.scope
        if scope is None or scope.latitude is None or scope.longitude is None:
            return None
        entities = list(self.store.snapshot().values())
        return proximity_stats(
            (scope.latitude, scope.longitude),
            entities,
            bands=self.config.proximity_bands,
            radius_meters=radius_meters,
            locate=_located,
        )
