"""
Entity State Store — who is currently visible on the map, and where.

Written by: Stream Ingestor message handlers (only)
Read by: rendering adapters, stats, the HTTP surface

Behavioral Contract:
- An entity is created on its first accepted position and updated on each
  later one. Entities are removed only by clear() or stale eviction.
- The trail holds the previous positions, oldest first, capped at the
  configured limit (FIFO eviction).
- clear() drops every entity, trail and in-flight animation at once.
- Observers are notified after every mutation; stats are always derived
  from the current entities, never cached.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from guard_tracking.geometry.engine import compute_co_location_offset
from guard_tracking.models.assignment import PersonRef
from guard_tracking.models.position import (
    EntityRole,
    LivePosition,
    TrackedEntity,
    TrackingStats,
)
from guard_tracking.state.animation import AnimationScheduler

logger = logging.getLogger(__name__)

StoreListener = Callable[[str, Optional[str]], None]

DEFAULT_TRAIL_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityStateStore:
    """In-memory store of tracked entities for one event scope."""

    def __init__(
        self,
        animator: Optional[AnimationScheduler] = None,
        trail_limit: int = DEFAULT_TRAIL_LIMIT,
        moving_speed_threshold: float = 0.5,
        low_battery_threshold: int = 20,
    ):
        self.animator = animator
        self.trail_limit = trail_limit
        self.moving_speed_threshold = moving_speed_threshold
        self.low_battery_threshold = low_battery_threshold
        self._entities: Dict[str, TrackedEntity] = {}
        self._listeners: List[StoreListener] = []

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    # --- Observers ---

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, entity_id: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            listener(kind, entity_id)

    # --- Mutation ---

    def is_moving(self, speed: Optional[float]) -> bool:
        return speed is not None and speed > self.moving_speed_threshold

    def upsert(
        self,
        entity_id: str,
        role: EntityRole,
        position: LivePosition,
        display_name: Optional[str] = None,
        person: Optional[PersonRef] = None,
        assignment_id: Optional[str] = None,
    ) -> TrackedEntity:
        """Insert or update an entity from an accepted position report."""
        now = _utcnow()
        entity = self._entities.get(entity_id)

        if entity is None:
            entity = TrackedEntity(
                entity_id=entity_id,
                role=role,
                display_name=display_name or (person.display_name if person else entity_id),
                person=person,
                assignment_id=assignment_id,
                current_position=position,
                is_moving=self.is_moving(position.speed),
                trail=[],
                first_seen_at=now,
                last_update_at=now,
            )
            self._entities[entity_id] = entity
            logger.debug("Tracking new %s %s", role.value, entity_id)
        else:
            previous = entity.current_position.coordinates
            if previous != position.coordinates:
                self._push_trail(entity, previous)
                if self.animator is not None:
                    self.animator.start(entity_id, previous, position.coordinates)

            entity.role = role
            if display_name:
                entity.display_name = display_name
            if person is not None:
                entity.person = person
            if assignment_id is not None:
                entity.assignment_id = assignment_id
            entity.current_position = position
            entity.is_moving = self.is_moving(position.speed)
            entity.last_update_at = now

        self._notify("upsert", entity_id)
        return entity

    def _push_trail(self, entity: TrackedEntity, point: Tuple[float, float]) -> None:
        if self.trail_limit <= 0:
            return
        entity.trail.append(point)
        overflow = len(entity.trail) - self.trail_limit
        if overflow > 0:
            del entity.trail[:overflow]

    def clear(self) -> None:
        """Drop every entity, trail and animation."""
        count = len(self._entities)
        self._entities.clear()
        if self.animator is not None:
            self.animator.cancel_all()
        if count:
            logger.info("Cleared %d tracked entities", count)
        self._notify("clear")

    def evict_stale(
        self, max_silence_seconds: float, now: Optional[datetime] = None
    ) -> List[str]:
        """Remove entities that have not reported for longer than the given silence."""
        if now is None:
            now = _utcnow()
        cutoff = now - timedelta(seconds=max_silence_seconds)
        stale = [
            entity_id
            for entity_id, entity in self._entities.items()
            if entity.last_update_at < cutoff
        ]
        for entity_id in stale:
            del self._entities[entity_id]
            if self.animator is not None:
                self.animator.cancel(entity_id)
            self._notify("evict", entity_id)
        if stale:
            logger.info("Evicted %d stale entities", len(stale))
        return stale

    # --- Queries ---

    def get(self, entity_id: str) -> Optional[TrackedEntity]:
        return self._entities.get(entity_id)

    def ids(self) -> List[str]:
        return list(self._entities)

    def snapshot(self) -> Dict[str, TrackedEntity]:
        """Copy of the current entity map, safe to hand to a renderer."""
        return {k: v.model_copy(deep=True) for k, v in self._entities.items()}

    def entities_by_role(self, role: EntityRole) -> List[TrackedEntity]:
        return [e for e in self._entities.values() if e.role == role]

    def trail(self, entity_id: str) -> List[Tuple[float, float]]:
        entity = self._entities.get(entity_id)
        return list(entity.trail) if entity else []

    def compute_stats(self, role: Optional[EntityRole] = None) -> TrackingStats:
        """Counts over current entities, optionally restricted to one role."""
        entities = [
            e for e in self._entities.values()
            if role is None or e.role == role
        ]
        moving = sum(1 for e in entities if e.is_moving)
        low_battery = sum(
            1 for e in entities
            if e.current_position.battery_level is not None
            and e.current_position.battery_level < self.low_battery_threshold
        )
        return TrackingStats(
            total=len(entities),
            moving=moving,
            stopped=len(entities) - moving,
            low_battery=low_battery,
        )

    def displayed_position(self, entity_id: str) -> Optional[Tuple[float, float]]:
        """Animated position if a move is in flight, else the raw position."""
        entity = self._entities.get(entity_id)
        if entity is None:
            return None
        if self.animator is not None:
            frame = self.animator.displayed(entity_id)
            if frame is not None:
                return frame
        return entity.current_position.coordinates

    def rendered_positions(
        self, tolerance: float = 1e-5, radius: float = 5e-5
    ) -> Dict[str, Tuple[float, float]]:
        """Displayed position of every entity with co-located markers spread apart."""
        displayed = [
            (entity_id, *self.displayed_position(entity_id))
            for entity_id in self._entities
        ]
        rendered = {}
        for entity_id, lat, lng in displayed:
            dlat, dlng = compute_co_location_offset(
                entity_id, (lat, lng), displayed, tolerance, radius
            )
            rendered[entity_id] = (lat + dlat, lng + dlng)
        return rendered
