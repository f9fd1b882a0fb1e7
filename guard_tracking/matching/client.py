"""
Assignment Client — REST access to the backend's event and assignment data.

The backend wraps payloads as {"success": ..., "data": {...}}. Records are
validated into models here so nothing downstream sees raw JSON.
"""

import logging
from typing import List, Optional

import requests
from pydantic import ValidationError

from guard_tracking.models.assignment import AssignmentRecord
from guard_tracking.models.scope import EventScope

logger = logging.getLogger(__name__)


class AssignmentFetchError(Exception):
    """Raised when assignments or event metadata cannot be fetched."""
    pass


class AssignmentClient:
    """Thin requests wrapper around the assignment and event endpoints."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise AssignmentFetchError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise AssignmentFetchError(f"GET {url} returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise AssignmentFetchError(f"GET {url} returned an unexpected payload")
        data = payload.get("data", payload)
        return data if isinstance(data, dict) else {"items": data}

    def fetch_assignments(self, event_id: str) -> List[AssignmentRecord]:
        """All assignments of an event. Malformed records are skipped."""
        data = self._get("/assignments", params={"eventId": event_id})
        raw_items = data.get("assignments", data.get("items", []))

        records = []
        for raw in raw_items or []:
            if isinstance(raw, dict):
                raw = {"eventId": event_id, **raw}
                if "agentId" not in raw and isinstance(raw.get("agent"), dict):
                    raw["agentId"] = raw["agent"].get("id")
            try:
                records.append(AssignmentRecord.model_validate(raw))
            except ValidationError as e:
                logger.debug("Skipping malformed assignment %r: %s", raw, e)
        logger.info("Fetched %d assignments for event %s", len(records), event_id)
        return records

    def fetch_event(self, event_id: str) -> EventScope:
        """Event metadata used for geofence and distance statistics."""
        data = self._get(f"/events/{event_id}")
        raw = data.get("event", data)
        try:
            return EventScope.model_validate(raw)
        except ValidationError as e:
            raise AssignmentFetchError(f"Event {event_id} payload is invalid") from e

    def close(self) -> None:
        self._session.close()
