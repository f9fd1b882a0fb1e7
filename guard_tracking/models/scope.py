"""Event scope — the event whose roster and positions are currently on screen."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EventScope(BaseModel):
    """
    The currently selected event.

    Every tracked entity belongs to exactly one scope at a time. Coordinates
    and radius are optional; without them geofence and proximity features
    report "unknown" rather than a distance.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_id: str = Field(alias="id")
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geofence_radius_meters: Optional[float] = Field(default=None, alias="geoRadius")


class GeofenceCheck(BaseModel):
    """Result of testing a point against an event geofence."""

    within: Optional[bool] = None            # None: scope or point has no coordinates
    distance_meters: Optional[float] = None
    radius_meters: Optional[float] = None


class CoordinateCheck(BaseModel):
    valid: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    error: Optional[str] = None
