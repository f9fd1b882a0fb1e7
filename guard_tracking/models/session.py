"""Session configuration, identity claim and stream connection state."""

import os
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class IngestorState(str, Enum):
    """
    Stream connection lifecycle:
      DISCONNECTED → CONNECTING → CONNECTED → AUTHENTICATING → SUBSCRIBED
    SUBSCRIBED falls back to CONNECTED (auth rejected / no scope) or
    DISCONNECTED (transport lost).
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    SUBSCRIBED = "subscribed"


class Subject(BaseModel):
    """Identity claim sent to the stream server after connecting."""

    subject_id: str
    role: str = "admin"                     # "admin" | "supervisor" | "responsable"
    token: Optional[str] = None


class ProximityStats(BaseModel):
    """Candidate counts per distance band around an event centre."""

    total_with_coordinates: int = 0
    without_coordinates: int = 0
    bands: Dict[float, int] = {}                     # band radius (m) -> count within it
    within_radius: Optional[int] = None


class TrackingConfig(BaseModel):
    """Configuration for a tracking session."""

    # Stream transport
    server_url: str = "http://localhost:5000"
    socket_path: str = "socket.io"
    transports: List[str] = ["websocket", "polling"]
    reconnection_attempts: int = Field(ge=0, default=10)
    reconnection_delay: float = 1.0
    reconnection_delay_max: float = 5.0

    # REST collaborator
    api_base_url: str = "http://localhost:5000/api"
    api_token: Optional[str] = None
    request_timeout_seconds: float = 10.0

    # Entity state
    trail_limit: int = Field(ge=0, default=50)
    moving_speed_threshold: float = 0.5     # m/s, strictly greater means moving
    low_battery_threshold: int = 20         # percent, strictly lower means low
    stale_after_seconds: Optional[float] = None
    active_statuses: List[str] = ["confirmed", "pending"]

    # Rendering aids
    animation_duration_ms: float = 1000.0
    frame_interval_seconds: float = 1 / 60
    co_location_tolerance: float = 1e-5     # degrees
    co_location_radius: float = 5e-5        # degrees, roughly 5 m
    default_geofence_radius_meters: float = 100.0
    proximity_bands: List[float] = [5000.0, 50000.0, 100000.0]

    @classmethod
    def from_env(cls, prefix: str = "GUARD_TRACKING_") -> "TrackingConfig":
        """Build a config from environment variables, e.g. GUARD_TRACKING_SERVER_URL."""
        values = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            if name in ("transports", "active_statuses", "proximity_bands"):
                values[name] = [v.strip() for v in raw.split(",") if v.strip()]
            else:
                values[name] = raw
        return cls.model_validate(values)
