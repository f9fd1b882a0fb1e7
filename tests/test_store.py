"""Tests for the Entity State Store."""

from datetime import datetime, timedelta, timezone

import pytest

from guard_tracking.models.assignment import PersonRef
from guard_tracking.models.position import EntityRole, LivePosition
from guard_tracking.state.animation import AnimationScheduler
from guard_tracking.state.store import EntityStateStore


def _make_position(
    entity_id="user_1",
    latitude=33.5731,
    longitude=-7.5898,
    speed=None,
    battery_level=None,
) -> LivePosition:
    return LivePosition(
        entity_id=entity_id,
        latitude=latitude,
        longitude=longitude,
        speed=speed,
        battery_level=battery_level,
        timestamp=datetime.now(timezone.utc),
    )


@pytest.fixture
def clock():
    now = [100.0]
    return now


@pytest.fixture
def store(clock):
    animator = AnimationScheduler(duration_ms=1000, clock=lambda: clock[0])
    return EntityStateStore(animator=animator)


class TestUpsert:
    def test_first_position_creates_entity(self, store):
        entity = store.upsert("user_1", EntityRole.AGENT, _make_position())
        assert entity.entity_id == "user_1"
        assert entity.trail == []
        assert "user_1" in store
        assert len(store) == 1
        # No previous position, nothing to animate
        assert not store.animator.is_animating("user_1")

    def test_display_name_from_person(self, store):
        person = PersonRef(id="user_1", firstName="Youssef", lastName="Alami")
        entity = store.upsert("user_1", EntityRole.AGENT, _make_position(), person=person)
        assert entity.display_name == "Youssef Alami"

    def test_display_name_falls_back_to_id(self, store):
        entity = store.upsert("user_9", EntityRole.AGENT, _make_position("user_9"))
        assert entity.display_name == "user_9"

    def test_move_pushes_previous_and_animates(self, store):
        store.upsert("user_1", EntityRole.AGENT, _make_position(latitude=33.0))
        store.upsert("user_1", EntityRole.AGENT, _make_position(latitude=33.001))

        assert store.trail("user_1") == [(33.0, -7.5898)]
        assert store.animator.is_animating("user_1")

    def test_single_axis_change_counts_as_move(self, store):
        store.upsert("user_1", EntityRole.AGENT, _make_position(longitude=-7.0))
        store.upsert("user_1", EntityRole.AGENT, _make_position(longitude=-7.001))
        assert len(store.trail("user_1")) == 1

    def test_same_position_does_not_grow_trail(self, store):
        store.upsert("user_1", EntityRole.AGENT, _make_position())
        store.upsert("user_1", EntityRole.AGENT, _make_position(speed=0.2))
        assert store.trail("user_1") == []
        assert not store.animator.is_animating("user_1")

    def test_trail_cap_keeps_most_recent_previous(self, store):
        for i in range(1000):
            store.upsert(
                "user_1",
                EntityRole.AGENT,
                _make_position(latitude=10.0 + i * 0.001),
            )

        trail = store.trail("user_1")
        assert len(trail) == 50
        expected = [(10.0 + i * 0.001, -7.5898) for i in range(949, 999)]
        assert trail == expected
        # Current position is never part of its own trail
        assert store.get("user_1").current_position.latitude == 10.0 + 999 * 0.001

    def test_zero_trail_limit(self):
        store = EntityStateStore(trail_limit=0)
        store.upsert("user_1", EntityRole.AGENT, _make_position(latitude=1.0))
        store.upsert("user_1", EntityRole.AGENT, _make_position(latitude=2.0))
        assert store.trail("user_1") == []


class TestMoving:
    def test_threshold_is_strict(self, store):
        assert store.is_moving(0.51)
        assert not store.is_moving(0.5)
        assert not store.is_moving(0.0)
        assert not store.is_moving(None)

    def test_entity_flag_follows_speed(self, store):
        store.upsert("user_1", EntityRole.AGENT, _make_position(speed=0.5))
        assert store.get("user_1").is_moving is False
        store.upsert("user_1", EntityRole.AGENT, _make_position(speed=3.2))
        assert store.get("user_1").is_moving is True


class TestStats:
    def test_low_battery_counted(self, store):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", battery_level=80))
        store.upsert("a2", EntityRole.AGENT, _make_position("a2", battery_level=15, speed=1.0))
        store.upsert("a3", EntityRole.AGENT, _make_position("a3"))

        stats = store.compute_stats()
        assert stats.total == 3
        assert stats.moving == 1
        assert stats.stopped == 2
        assert stats.low_battery == 1

    def test_zero_battery_is_low(self, store):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", battery_level=0))
        assert store.compute_stats().low_battery == 1

    def test_role_filter(self, store):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1"))
        store.upsert("s1", EntityRole.SUPERVISOR, _make_position("s1"))
        assert store.compute_stats(EntityRole.AGENT).total == 1
        assert store.compute_stats(EntityRole.SUPERVISOR).total == 1
        assert store.compute_stats().total == 2
        assert [e.entity_id for e in store.entities_by_role(EntityRole.SUPERVISOR)] == ["s1"]

    def test_stats_recomputed_after_update(self, store):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", battery_level=15))
        assert store.compute_stats().low_battery == 1
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", battery_level=90))
        assert store.compute_stats().low_battery == 0


class TestClearAndEvict:
    def test_clear_drops_entities_and_animations(self, store):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", latitude=1.0))
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", latitude=2.0))
        assert store.animator.active_count == 1

        store.clear()
        assert len(store) == 0
        assert store.snapshot() == {}
        assert store.trail("a1") == []
        assert store.animator.active_count == 0

    def test_evict_stale(self, store):
        store.upsert("old", EntityRole.AGENT, _make_position("old"))
        store.upsert("new", EntityRole.AGENT, _make_position("new"))
        store.get("old").last_update_at -= timedelta(minutes=10)

        evicted = store.evict_stale(300)
        assert evicted == ["old"]
        assert store.ids() == ["new"]

    def test_evict_nothing_recent(self, store):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1"))
        assert store.evict_stale(300) == []


class TestObservers:
    def test_notified_on_mutations(self, store):
        events = []
        store.subscribe(lambda kind, entity_id: events.append((kind, entity_id)))

        store.upsert("a1", EntityRole.AGENT, _make_position("a1"))
        store.clear()

        assert events == [("upsert", "a1"), ("clear", None)]

    def test_unsubscribe(self, store):
        events = []
        unsubscribe = store.subscribe(lambda kind, entity_id: events.append(kind))
        unsubscribe()
        store.upsert("a1", EntityRole.AGENT, _make_position("a1"))
        assert events == []

    def test_eviction_notifies(self, store):
        events = []
        store.upsert("a1", EntityRole.AGENT, _make_position("a1"))
        store.subscribe(lambda kind, entity_id: events.append((kind, entity_id)))
        store.evict_stale(60, now=datetime.now(timezone.utc) + timedelta(hours=1))
        assert events == [("evict", "a1")]


class TestSnapshotAndRendering:
    def test_snapshot_is_a_copy(self, store):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1"))
        snapshot = store.snapshot()
        snapshot["a1"].trail.append((0.0, 0.0))
        assert store.trail("a1") == []

    def test_displayed_position_follows_animation(self, store, clock):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", latitude=33.0))
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", latitude=34.0))

        assert store.displayed_position("a1") == (33.0, -7.5898)
        clock[0] += 0.5
        store.animator.tick()
        lat, _ = store.displayed_position("a1")
        assert 33.0 < lat < 34.0

        clock[0] += 1.0
        store.animator.tick()
        assert store.displayed_position("a1") == (34.0, -7.5898)
        assert store.displayed_position("missing") is None

    def test_rendered_position_settles_without_frame_loop(self, store, clock):
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", latitude=33.58))
        store.upsert("a1", EntityRole.AGENT, _make_position("a1", latitude=33.59))

        clock[0] += 1.2
        assert store.rendered_positions()["a1"] == (33.59, -7.5898)
        assert not store.animator.is_animating("a1")

    def test_co_located_entities_rendered_apart(self, store):
        for entity_id in ("a1", "a2", "s1"):
            role = EntityRole.SUPERVISOR if entity_id == "s1" else EntityRole.AGENT
            store.upsert(entity_id, role, _make_position(entity_id))

        rendered = store.rendered_positions()
        assert len(set(rendered.values())) == 3
        for lat, lng in rendered.values():
            assert abs(lat - 33.5731) <= 5e-5 + 1e-12
            assert abs(lng + 7.5898) <= 5e-5 + 1e-12
