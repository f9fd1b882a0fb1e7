"""Live positions and the tracked entities derived from them."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from guard_tracking.models.assignment import PersonRef


class EntityRole(str, Enum):
    AGENT = "agent"
    SUPERVISOR = "supervisor"


class LivePosition(BaseModel):
    """A single inbound position report. Superseded by the next one for the same entity."""

    entity_id: str
    latitude: float = Field(ge=-90, le=90, allow_inf_nan=False)
    longitude: float = Field(ge=-180, le=180, allow_inf_nan=False)
    accuracy: Optional[float] = None         # metres
    speed: Optional[float] = None            # m/s
    heading: Optional[float] = None          # degrees from north
    battery_level: Optional[int] = Field(default=None, ge=0, le=100)
    timestamp: datetime
    event_id: Optional[str] = None           # Scope named by the feed, if any
    alternate_ids: List[str] = []            # Other identifiers of the same person

    @property
    def coordinates(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


class TrackedEntity(BaseModel):
    """An agent or supervisor currently visible in the active event scope."""

    entity_id: str
    role: EntityRole
    display_name: str
    person: Optional[PersonRef] = None
    assignment_id: Optional[str] = None
    current_position: LivePosition
    is_moving: bool = False
    trail: List[Tuple[float, float]] = []    # Previous positions, oldest first
    first_seen_at: datetime
    last_update_at: datetime


class TrackingStats(BaseModel):
    """Counts derived from the entity store on demand."""

    total: int = 0
    moving: int = 0
    stopped: int = 0
    low_battery: int = 0
