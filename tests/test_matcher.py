"""Tests for the Assignment Matcher and supervisor grouping."""

import pytest

from guard_tracking.matching.matcher import (
    ORPHAN_GROUP_ID,
    SUPERVISOR_LINK_POLICY,
    AssignmentMatcher,
)
from guard_tracking.models.assignment import AssignmentRecord
from guard_tracking.models.position import EntityRole
from guard_tracking.models.scope import EventScope


def _make_assignment(
    assignment_id,
    person_id,
    role="primary",
    status="confirmed",
    event_id="evt_1",
    cin=None,
    **extra,
) -> AssignmentRecord:
    return AssignmentRecord.model_validate({
        "id": assignment_id,
        "eventId": event_id,
        "agentId": person_id,
        "role": role,
        "status": status,
        "agent": {
            "id": person_id,
            "cin": cin,
            "firstName": person_id.title(),
            "lastName": "Guard",
        },
        **extra,
    })


@pytest.fixture
def scope():
    return EventScope(event_id="evt_1", name="Festival Mawazine")


@pytest.fixture
def matcher():
    return AssignmentMatcher()


class TestLoad:
    def test_only_active_statuses_for_scope(self, matcher, scope):
        count = matcher.load(scope, [
            _make_assignment("as_1", "ali", status="confirmed"),
            _make_assignment("as_2", "omar", status="pending"),
            _make_assignment("as_3", "sara", status="cancelled"),
            _make_assignment("as_4", "hind", event_id="evt_2"),
        ])
        assert count == 2
        assert [a.assignment_id for a in matcher.roster] == ["as_1", "as_2"]

    def test_status_case_insensitive(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali", status="CONFIRMED")])
        assert len(matcher.roster) == 1

    def test_no_scope_empties_roster(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali")])
        matcher.load(None, [_make_assignment("as_1", "ali")])
        assert matcher.roster == []
        assert matcher.scope is None

    def test_reset(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali")])
        matcher.reset()
        assert matcher.scope is None
        assert not matcher.resolve("ali").matched


class TestResolve:
    def test_supervisor_role(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "karim", role="supervisor")])
        match = matcher.resolve("karim")
        assert match.matched
        assert match.role == EntityRole.SUPERVISOR

    @pytest.mark.parametrize("role", ["primary", "backup"])
    def test_agent_roles(self, matcher, scope, role):
        matcher.load(scope, [_make_assignment("as_1", "ali", role=role)])
        assert matcher.resolve("ali").role == EntityRole.AGENT

    def test_match_by_national_id(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali", cin="BE123456")])
        match = matcher.resolve("BE123456")
        assert match.matched
        assert match.assignment.person_id == "ali"
        assert match.matched_on == "person.national_id"

    def test_match_through_alternate_id(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali", cin="BE123456")])
        match = matcher.resolve("unknown-device", alternate_ids=["BE123456"])
        assert match.matched
        assert match.person.display_name == "Ali Guard"

    def test_user_id_tried_first(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali")])
        assert matcher.resolve("ali").matched_on == "person_id"

    def test_unknown_entity(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali")])
        match = matcher.resolve("stranger")
        assert not match.matched
        assert match.role is None

    def test_cancelled_assignment_not_matched(self, matcher, scope):
        matcher.load(scope, [_make_assignment("as_1", "ali", status="cancelled")])
        assert not matcher.resolve("ali").matched


class TestGrouping:
    def test_group_by_explicit_supervisor(self, matcher, scope):
        matcher.load(scope, [
            _make_assignment("as_s", "karim", role="supervisor"),
            _make_assignment("as_1", "ali", supervisorId="karim"),
            _make_assignment("as_2", "omar"),
        ])
        groups = matcher.group_by_supervisor()

        assert [g.group_id for g in groups] == ["as_s", ORPHAN_GROUP_ID]
        assert [a.person_id for a in groups[0].agents] == ["ali"]
        assert groups[0].linked_by == {"as_1": "supervisor_id"}
        assert groups[1].is_orphan_bucket
        assert [a.person_id for a in matcher.orphans()] == ["omar"]

    def test_no_orphan_group_when_all_linked(self, matcher, scope):
        matcher.load(scope, [
            _make_assignment("as_s", "karim", role="supervisor"),
            _make_assignment("as_1", "ali", assignedTo="karim"),
        ])
        groups = matcher.group_by_supervisor()
        assert len(groups) == 1
        assert groups[0].linked_by["as_1"] == "assigned_to"

    def test_zone_supervisor_beats_explicit_supervisor(self, matcher, scope):
        matcher.load(scope, [
            _make_assignment("as_s1", "karim", role="supervisor"),
            _make_assignment("as_s2", "nadia", role="supervisor"),
            _make_assignment(
                "as_1", "ali",
                supervisorId="karim",
                zone={"id": "z1", "supervisorId": "nadia"},
            ),
        ])
        groups = {g.group_id: g for g in matcher.group_by_supervisor()}
        assert [a.person_id for a in groups["as_s2"].agents] == ["ali"]
        assert groups["as_s2"].linked_by["as_1"] == "zone.supervisor_id"
        assert groups["as_s1"].agents == []

    def test_managed_zone(self, matcher, scope):
        matcher.load(scope, [
            _make_assignment("as_s", "karim", role="supervisor", zones=[{"id": "z7"}]),
            _make_assignment("as_1", "ali", zoneId="z7"),
        ])
        group = matcher.group_by_supervisor()[0]
        assert group.linked_by["as_1"] == "managed_zone"

    def test_shared_zone(self, matcher, scope):
        matcher.load(scope, [
            _make_assignment("as_s", "karim", role="supervisor", zoneId="z3"),
            _make_assignment("as_1", "ali", zoneId="z3"),
        ])
        assert matcher.group_by_supervisor()[0].linked_by["as_1"] == "shared_zone_id"

    def test_managed_zone_roster(self, matcher, scope):
        matcher.load(scope, [
            _make_assignment(
                "as_s", "karim", role="supervisor",
                zones=[{"id": "z9", "assignments": [{"agentId": "ali"}]}],
            ),
            _make_assignment("as_1", "ali"),
        ])
        assert matcher.group_by_supervisor()[0].linked_by["as_1"] == "managed_zone_roster"

    def test_supervisor_never_under_themselves(self, matcher, scope):
        matcher.load(scope, [
            _make_assignment("as_s", "karim", role="supervisor", supervisorId="karim"),
        ])
        groups = matcher.group_by_supervisor()
        assert len(groups) == 1
        assert groups[0].agents == []

    def test_policy_order(self):
        assert [name for name, _ in SUPERVISOR_LINK_POLICY] == [
            "zone.supervisor_id",
            "zone.agent_id",
            "zone.user_id",
            "assigned_to",
            "supervisor_id",
            "managed_zone",
            "shared_zone_id",
            "managed_zone_roster",
        ]

    def test_custom_policy(self, scope):
        matcher = AssignmentMatcher(link_policy=[("never", lambda agent, sup: False)])
        matcher.load(scope, [
            _make_assignment("as_s", "karim", role="supervisor"),
            _make_assignment("as_1", "ali", supervisorId="karim"),
        ])
        assert [g.group_id for g in matcher.group_by_supervisor()] == ["as_s", ORPHAN_GROUP_ID]
