"""
Animation Scheduler — smooths marker motion between position reports.

One scheduler tick advances every active interpolation; completed moves are
dropped from the active set. Starting a new move for an entity replaces the
one in flight (last writer wins), so two moves never fight over the same
marker. Cancelling is removal from the active set.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from guard_tracking.geometry.engine import interpolate

logger = logging.getLogger(__name__)

LatLng = Tuple[float, float]


class _Move:
    __slots__ = ("start", "end", "started_at")

    def __init__(self, start: LatLng, end: LatLng, started_at: float):
        self.start = start
        self.end = end
        self.started_at = started_at


class AnimationScheduler:
    """Per-entity eased interpolation driven by a single frame loop."""

    def __init__(
        self,
        duration_ms: float = 1000.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.duration_ms = duration_ms
        self._clock = clock
        self._active: Dict[str, _Move] = {}
        self._running = False

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def running(self) -> bool:
        return self._running

    def is_animating(self, entity_id: str) -> bool:
        return self.displayed(entity_id) is not None

    def start(
        self,
        entity_id: str,
        start: LatLng,
        end: LatLng,
        now: Optional[float] = None,
    ) -> None:
        """Begin a move, replacing any move already in flight for this entity."""
        if now is None:
            now = self._clock()
        # Continue from wherever the marker is drawn right now
        current = self.displayed(entity_id, now)
        if current is not None:
            start = current
        self._active[entity_id] = _Move(start, end, now)

    def cancel(self, entity_id: str) -> None:
        self._active.pop(entity_id, None)

    def cancel_all(self) -> None:
        self._active.clear()

    def _elapsed_ms(self, move: _Move, now: float) -> float:
        return (now - move.started_at) * 1000.0

    def displayed(self, entity_id: str, now: Optional[float] = None) -> Optional[LatLng]:
        """
        Position drawn right now for an animating entity, else None.
        Computed from the clock, so it reaches the target even when no
        frame loop is ticking. A finished move is dropped here.
        """
        move = self._active.get(entity_id)
        if move is None:
            return None
        if now is None:
            now = self._clock()
        elapsed_ms = self._elapsed_ms(move, now)
        if elapsed_ms >= self.duration_ms:
            del self._active[entity_id]
            return None
        return interpolate(move.start, move.end, elapsed_ms, self.duration_ms)

    def tick(self, now: Optional[float] = None) -> Dict[str, LatLng]:
        """Advance every active move. Returns the frame for each entity touched."""
        if now is None:
            now = self._clock()

        frames = {}
        finished = []
        for entity_id, move in self._active.items():
            elapsed_ms = self._elapsed_ms(move, now)
            point = interpolate(move.start, move.end, elapsed_ms, self.duration_ms)
            frames[entity_id] = point
            if elapsed_ms >= self.duration_ms:
                finished.append(entity_id)

        for entity_id in finished:
            self._active.pop(entity_id, None)
        return frames

    async def run_async(
        self,
        stop_event: Optional[asyncio.Event] = None,
        frame_interval_seconds: float = 1 / 60,
        on_frame: Optional[Callable[[Dict[str, LatLng]], None]] = None,
    ) -> None:
        """Tick until the stop event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                if self._active:
                    frames = self.tick()
                    if frames and on_frame is not None:
                        on_frame(frames)
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=frame_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
            logger.debug("Animation loop stopped with %d moves pending", len(self._active))
