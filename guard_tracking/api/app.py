"""
Guard Tracking API — FastAPI endpoints for the rendering layer.

Exposes the live tracking session for:
- Stream status
- Entity snapshot, trails and rendered marker positions
- Stats and proximity bands
- Supervisor / agent grouping
- Scope selection and manual position ingest
"""

from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from guard_tracking.matching.client import AssignmentClient
from guard_tracking.models.assignment import AssignmentRecord
from guard_tracking.models.position import EntityRole
from guard_tracking.models.scope import EventScope
from guard_tracking.models.session import Subject, TrackingConfig
from guard_tracking.session.tracking import TrackingSession


# --- Request/Response Models ---

class ScopeSelectRequest(BaseModel):
    event_id: str
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geofence_radius_meters: Optional[float] = None
    assignments: Optional[List[dict]] = None


class PositionIngestRequest(BaseModel):
    userId: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    batteryLevel: Optional[int] = None
    timestamp: Optional[str] = None
    eventId: Optional[str] = None
    user: Optional[dict] = None


# --- Application Factory ---

def create_app(
    session: Optional[TrackingSession] = None,
    config: Optional[TrackingConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Guard Tracking API",
        description="Live position tracking and proximity matching",
        version="0.1.0",
    )

    config = config or (session.config if session else TrackingConfig())
    ts = session or TrackingSession.create(
        config=config,
        subject=Subject(subject_id="api", token=config.api_token),
        client=AssignmentClient(
            config.api_base_url,
            token=config.api_token,
            timeout=config.request_timeout_seconds,
        ),
    )
    app.state.session = ts

    # === STATUS ===

    @app.get("/tracking/status")
    def tracking_status():
        """Stream connection and scope status."""
        ingestor = ts.ingestor
        return {
            "state": ingestor.state.value,
            "subscribed_event_id": ingestor.subscribed_event_id,
            "scope": ts.scope.model_dump(mode="json") if ts.scope else None,
            "auth_error": ingestor.auth_error,
            "gave_up": ingestor.gave_up,
            "connect_failures": ingestor.connect_failures,
            "tracked_entities": len(ts.store),
            "accepted_messages": ingestor.accepted_count,
            "dropped_messages": ingestor.dropped_count,
        }

    @app.get("/tracking/config")
    def get_tracking_config():
        """Current session configuration (token redacted)."""
        return ts.config.model_dump(mode="json", exclude={"api_token"})

    @app.post("/tracking/connect")
    async def connect_stream():
        """Open the live stream."""
        connected = await ts.start()
        return {"connected": connected, "state": ts.ingestor.state.value}

    # === ENTITIES ===

    @app.get("/tracking/entities")
    def list_entities(role: Optional[EntityRole] = None):
        """Current entity snapshot with rendered marker positions."""
        rendered = ts.rendered_positions()
        entities = []
        for entity_id, entity in ts.snapshot().items():
            if role is not None and entity.role != role:
                continue
            data = entity.model_dump(mode="json")
            lat, lng = rendered.get(entity_id, entity.current_position.coordinates)
            data["rendered"] = {"latitude": lat, "longitude": lng}
            entities.append(data)
        return entities

    @app.get("/tracking/entities/{entity_id}")
    def get_entity(entity_id: str):
        """One tracked entity with its geofence status."""
        entity = ts.store.get(entity_id)
        if not entity:
            raise HTTPException(404, "Entity not tracked")
        data = entity.model_dump(mode="json")
        geofence = ts.geofence(entity_id)
        data["geofence"] = geofence.model_dump(mode="json") if geofence else None
        return data

    @app.get("/tracking/frames")
    def get_frames():
        """Displayed positions of entities currently animating."""
        return {
            entity_id: {"latitude": lat, "longitude": lng}
            for entity_id, (lat, lng) in ts.frames().items()
        }

    @app.post("/tracking/positions")
    def ingest_position(req: PositionIngestRequest):
        """Manual position feed (for testing)."""
        entity = ts.ingest(req.model_dump(exclude_none=True))
        if entity is None:
            return {"status": "dropped", "entity_id": req.userId}
        return {"status": "accepted", "entity_id": entity.entity_id}

    # === STATS ===

    @app.get("/tracking/stats")
    def get_stats(role: Optional[EntityRole] = None):
        """Moving / stopped / low-battery counts."""
        return ts.stats(role).model_dump()

    @app.get("/tracking/proximity")
    def get_proximity(radius: Optional[float] = None):
        """Distance bands around the event centre."""
        stats = ts.proximity(radius)
        if stats is None:
            raise HTTPException(404, "Active event has no coordinates")
        return stats.model_dump(mode="json")

    # === ROSTER ===

    @app.get("/tracking/groups")
    def get_groups():
        """Supervisors with their agents, orphans last."""
        return [g.model_dump(mode="json") for g in ts.groups()]

    @app.post("/tracking/scope")
    async def select_scope(req: ScopeSelectRequest):
        """Switch the active event."""
        scope = EventScope(
            event_id=req.event_id,
            name=req.name,
            latitude=req.latitude,
            longitude=req.longitude,
            geofence_radius_meters=req.geofence_radius_meters,
        )
        assignments = None
        if req.assignments is not None:
            try:
                assignments = [
                    AssignmentRecord.model_validate({"eventId": req.event_id, **a})
                    for a in req.assignments
                ]
            except ValidationError as e:
                raise HTTPException(422, f"Invalid assignment: {e.errors()[0]['msg']}")
        selected = await ts.select_event(scope, assignments)
        return {
            "scope": selected.model_dump(mode="json"),
            "active_assignments": len(ts.matcher.roster),
        }

    return app


# Default application instance
app = create_app()
