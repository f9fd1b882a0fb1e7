"""
Stream Ingestor — consumes the live position feed for the active event.

States:
  DISCONNECTED → CONNECTING → CONNECTED → AUTHENTICATING → SUBSCRIBED
  SUBSCRIBED → CONNECTED (auth rejected) | DISCONNECTED (transport lost)

Wire events (Socket.IO):
  out: auth {userId, role, eventId, token}, tracking:subscribe <eventId>,
       tracking:unsubscribe <eventId>
  in:  auth:success, auth:error, tracking:current_positions [<position>...],
       tracking:position_update <position>, tracking:error,
       disconnect, connect_error

Behavioral Contract:
- Every accepted message goes normalize → match → upsert. Malformed,
  out-of-scope and unmatched messages are dropped without touching state.
- Entities are keyed by the matched person's user id, so a person reported
  under either identifier scheme maps to one marker.
- The store is cleared on disconnect and synchronously on scope change,
  before any further message can be processed.
- Auth failures are reported to error listeners and not retried. Transport
  failures are retried by the transport; after the bounded attempt count
  `gave_up` is set.
- No exception escapes a transport handler.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

from pydantic import ValidationError

from guard_tracking.matching.matcher import AssignmentMatcher
from guard_tracking.models.assignment import AssignmentRecord
from guard_tracking.models.position import LivePosition, TrackedEntity
from guard_tracking.models.scope import EventScope
from guard_tracking.models.session import IngestorState, Subject
from guard_tracking.state.store import EntityStateStore

logger = logging.getLogger(__name__)

ErrorListener = Callable[[str, str], None]

UNAUTHENTICATED_MESSAGES = {"non authentifié", "not authenticated", "unauthenticated"}


class TrackingError(Exception):
    """Base error for the tracking engine."""
    pass


def _parse_timestamp(value: Any) -> Any:
    """Epoch milliseconds or ISO-8601; anything else is left to validation."""
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    return value


def normalize_position(raw: Any) -> Optional[LivePosition]:
    """
    Turn an inbound message into a LivePosition, or None if it is malformed.

    Accepts the feed's camelCase shape:
      {userId|entityId, latitude, longitude, accuracy?, speed?, heading?,
       batteryLevel?, timestamp?, eventId?, user?: {id, cin}}
    """
    if not isinstance(raw, dict):
        return None

    user = raw.get("user") if isinstance(raw.get("user"), dict) else {}
    alternate_ids = [
        str(v) for v in (user.get("id"), user.get("cin")) if v not in (None, "")
    ]
    entity_id = raw.get("entityId") or raw.get("userId")
    if not entity_id and alternate_ids:
        entity_id = alternate_ids[0]
    if not entity_id:
        return None

    battery = raw.get("batteryLevel", raw.get("battery"))
    if isinstance(battery, float):
        battery = round(battery)

    try:
        return LivePosition(
            entity_id=str(entity_id),
            latitude=raw.get("latitude"),
            longitude=raw.get("longitude"),
            accuracy=raw.get("accuracy"),
            speed=raw.get("speed"),
            heading=raw.get("heading"),
            battery_level=battery,
            timestamp=_parse_timestamp(raw.get("timestamp")),
            event_id=raw.get("eventId"),
            alternate_ids=[i for i in alternate_ids if i != str(entity_id)],
        )
    except (ValidationError, TypeError, ValueError, OverflowError, OSError):
        return None


class StreamIngestor:
    """Drives the stream connection and feeds accepted positions to the store."""

    def __init__(
        self,
        transport,
        store: EntityStateStore,
        matcher: AssignmentMatcher,
        subject: Subject,
    ):
        self.transport = transport
        self.store = store
        self.matcher = matcher
        self.subject = subject

        self._state = IngestorState.DISCONNECTED
        self._authenticated = False
        self._subscribed_event_id: Optional[str] = None
        self._error_listeners: List[ErrorListener] = []

        self.auth_error: Optional[str] = None
        self.connect_failures = 0
        self.gave_up = False
        self.accepted_count = 0
        self.dropped_count = 0

        self._register_handlers()

    def _register_handlers(self) -> None:
        self.transport.on("connect", self._on_connect)
        self.transport.on("disconnect", self._on_disconnect)
        self.transport.on("connect_error", self._on_connect_error)
        self.transport.on("auth:success", self._on_auth_success)
        self.transport.on("auth:error", self._on_auth_error)
        self.transport.on("tracking:error", self._on_tracking_error)
        self.transport.on("tracking:position_update", self._on_position_update)
        self.transport.on("tracking:current_positions", self._on_current_positions)

    # --- Status ---

    @property
    def state(self) -> IngestorState:
        return self._state

    @property
    def scope(self) -> Optional[EventScope]:
        return self.matcher.scope

    @property
    def subscribed_event_id(self) -> Optional[str]:
        return self._subscribed_event_id

    def on_error(self, listener: ErrorListener) -> None:
        """Register a listener for user-visible errors: (kind, message)."""
        self._error_listeners.append(listener)

    def report_error(self, kind: str, message: str) -> None:
        for listener in list(self._error_listeners):
            listener(kind, message)

    def _set_state(self, state: IngestorState) -> None:
        if state != self._state:
            logger.info("Stream %s -> %s", self._state.value, state.value)
        self._state = state

    async def _emit(self, event: str, data: Any = None) -> bool:
        try:
            await self.transport.emit(event, data)
            return True
        except Exception:
            logger.exception("Failed to emit %s", event)
            return False

    # --- Lifecycle ---

    async def connect(self) -> bool:
        """Open the stream. Returns False if the transport gave up."""
        if self._state != IngestorState.DISCONNECTED:
            return True
        self._set_state(IngestorState.CONNECTING)
        try:
            await self.transport.connect()
        except Exception as e:
            self.connect_failures += 1
            self.gave_up = True
            self._set_state(IngestorState.DISCONNECTED)
            logger.warning("Stream connection failed: %s", e)
            self.report_error("transport", str(e))
            return False
        return True

    async def disconnect(self) -> None:
        """Close the stream and forget everything it delivered."""
        try:
            await self.transport.disconnect()
        except Exception:
            logger.exception("Error while closing the stream")
        self._mark_disconnected()

    def _mark_disconnected(self) -> None:
        self._authenticated = False
        self._subscribed_event_id = None
        self.store.clear()
        self._set_state(IngestorState.DISCONNECTED)

    async def change_scope(
        self,
        scope: Optional[EventScope],
        assignments: Iterable[AssignmentRecord] = (),
    ) -> None:
        """
        Switch the active event. Roster swap and store clear happen before
        the first await, so no late message from the old scope can land.
        """
        previous = self._subscribed_event_id
        self.matcher.load(scope, assignments)
        self.store.clear()

        if not self._authenticated:
            return

        if previous and (scope is None or previous != scope.event_id):
            await self._emit("tracking:unsubscribe", previous)
            self._subscribed_event_id = None
        await self._subscribe()

    async def _subscribe(self) -> None:
        scope = self.matcher.scope
        if scope is None:
            self._set_state(IngestorState.CONNECTED)
            return
        if await self._emit("tracking:subscribe", scope.event_id):
            self._subscribed_event_id = scope.event_id
            self._set_state(IngestorState.SUBSCRIBED)

    # --- Transport handlers ---

    async def _on_connect(self) -> None:
        self._set_state(IngestorState.CONNECTED)
        self.connect_failures = 0
        self.gave_up = False
        self.auth_error = None
        self._authenticated = False

        scope = self.matcher.scope
        claim = {
            "userId": self.subject.subject_id,
            "role": self.subject.role,
            "eventId": scope.event_id if scope else None,
        }
        if self.subject.token:
            claim["token"] = self.subject.token
        self._set_state(IngestorState.AUTHENTICATING)
        if not await self._emit("auth", claim):
            self._set_state(IngestorState.CONNECTED)

    async def _on_auth_success(self, data: Any = None) -> None:
        self._authenticated = True
        self.auth_error = None
        logger.info("Stream authenticated as %s", self.subject.subject_id)
        await self._subscribe()

    async def _on_auth_error(self, data: Any = None) -> None:
        message = data.get("message") if isinstance(data, dict) else None
        self.auth_error = message or "Real-time authentication failed"
        self._authenticated = False
        self._set_state(IngestorState.CONNECTED)
        logger.warning("Stream authentication rejected: %s", self.auth_error)
        self.report_error("auth", self.auth_error)

    async def _on_tracking_error(self, data: Any = None) -> None:
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
        else:
            message = data
        message = str(message) if message else "Real-time tracking error"
        logger.warning("Stream error from server: %s", message)
        if message.lower() in UNAUTHENTICATED_MESSAGES:
            # Server no longer holds our session; subscription is gone
            self._authenticated = False
            self._subscribed_event_id = None
            self._set_state(IngestorState.CONNECTED)
        self.report_error("tracking", message)

    async def _on_disconnect(self, *args: Any) -> None:
        logger.info("Stream disconnected")
        self._mark_disconnected()

    async def _on_connect_error(self, data: Any = None) -> None:
        self.connect_failures += 1
        self._authenticated = False
        self._subscribed_event_id = None
        self._set_state(IngestorState.DISCONNECTED)
        max_attempts = getattr(self.transport, "max_attempts", 0)
        if max_attempts and self.connect_failures >= max_attempts:
            self.gave_up = True
            logger.warning(
                "Stream unreachable after %d attempts", self.connect_failures
            )
            self.report_error("transport", "Real-time tracking disconnected")

    async def _on_position_update(self, data: Any = None) -> None:
        self.handle_position(data)

    async def _on_current_positions(self, data: Any = None) -> None:
        self.handle_snapshot(data)

    # --- Message processing ---

    def handle_snapshot(self, positions: Any) -> int:
        """Feed a batch of positions. Returns how many were accepted."""
        if not isinstance(positions, list):
            logger.debug("Ignoring non-list snapshot: %r", type(positions))
            return 0
        accepted = 0
        for raw in positions:
            if self.handle_position(raw) is not None:
                accepted += 1
        logger.debug("Snapshot: %d/%d positions accepted", accepted, len(positions))
        return accepted

    def handle_position(self, raw: Any) -> Optional[TrackedEntity]:
        """Normalize, match and store one position. None if it was dropped."""
        try:
            return self._handle_position(raw)
        except Exception:
            self.dropped_count += 1
            logger.exception("Unexpected error while handling a position")
            return None

    def _handle_position(self, raw: Any) -> Optional[TrackedEntity]:
        position = normalize_position(raw)
        if position is None:
            self.dropped_count += 1
            logger.debug("Dropping malformed position: %r", raw)
            return None

        scope = self.matcher.scope
        if scope is None:
            self.dropped_count += 1
            return None
        if position.event_id and position.event_id != scope.event_id:
            self.dropped_count += 1
            logger.debug(
                "Dropping %s: event %s is not the active scope",
                position.entity_id,
                position.event_id,
            )
            return None

        match = self.matcher.resolve(position.entity_id, position.alternate_ids)
        if not match.matched:
            self.dropped_count += 1
            logger.debug("Dropping %s: not assigned to %s", position.entity_id, scope.event_id)
            return None

        entity = self.store.upsert(
            match.assignment.person_id,
            match.role,
            position,
            display_name=match.person.display_name if match.person else None,
            person=match.person,
            assignment_id=match.assignment.assignment_id,
        )
        self.accepted_count += 1
        return entity
