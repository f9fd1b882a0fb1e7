"""Guard tracking data models."""

from guard_tracking.models.assignment import (
    AssignmentRecord,
    AssignmentRole,
    PersonRef,
    SupervisorGroup,
    ZoneAssignmentRef,
    ZoneRef,
)
from guard_tracking.models.position import (
    EntityRole,
    LivePosition,
    TrackedEntity,
    TrackingStats,
)
from guard_tracking.models.scope import CoordinateCheck, EventScope, GeofenceCheck
from guard_tracking.models.session import (
    IngestorState,
    ProximityStats,
    Subject,
    TrackingConfig,
)

__all__ = [
    "AssignmentRecord",
    "AssignmentRole",
    "CoordinateCheck",
    "EntityRole",
    "EventScope",
    "GeofenceCheck",
    "IngestorState",
    "LivePosition",
    "PersonRef",
    "ProximityStats",
    "Subject",
    "SupervisorGroup",
    "TrackedEntity",
    "TrackingConfig",
    "TrackingStats",
    "ZoneAssignmentRef",
    "ZoneRef",
]
