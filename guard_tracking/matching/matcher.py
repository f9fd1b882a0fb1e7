"""
Assignment Matcher — gates and classifies inbound positions against the
active event's roster.

Behavioral Contract:
- Only records for the active event with an active status (confirmed or
  pending by default) are considered.
- The feed may identify a person by user id or by national id. Both schemes
  are tried, in the order of IDENTIFIER_POLICY, before declaring no match.
- Role is SUPERVISOR iff the assignment role is "supervisor", else AGENT.
- No match means the message is dropped; the matcher never mutates state
  outside its own roster.

Supervisor grouping links each agent to a supervisor through
SUPERVISOR_LINK_POLICY. The rules are heuristic: backends populate
different linking fields and they can disagree. Rules are tried in order,
each across every supervisor, and the first rule that links wins.
"""

import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from guard_tracking.models.assignment import (
    AssignmentRecord,
    PersonRef,
    SupervisorGroup,
)
from guard_tracking.models.position import EntityRole
from guard_tracking.models.scope import EventScope

logger = logging.getLogger(__name__)

ORPHAN_GROUP_ID = "no-supervisor"
DEFAULT_ACTIVE_STATUSES = ("confirmed", "pending")


class MatchResult(BaseModel):
    """Outcome of resolving an entity id against the roster."""

    matched: bool
    role: Optional[EntityRole] = None
    assignment: Optional[AssignmentRecord] = None
    person: Optional[PersonRef] = None
    matched_on: Optional[str] = None        # Name of the identifier extractor that hit


# --- Identifier policy ---

IdentifierExtractor = Callable[[AssignmentRecord], Optional[str]]

IDENTIFIER_POLICY: List[Tuple[str, IdentifierExtractor]] = [
    ("person_id", lambda a: a.person_id),
    ("person.id", lambda a: a.person.id if a.person else None),
    ("person.national_id", lambda a: a.person.national_id if a.person else None),
]


# --- Supervisor link policy ---

LinkRule = Callable[[AssignmentRecord, AssignmentRecord], bool]


def _supervisor_person_id(supervisor: AssignmentRecord) -> Optional[str]:
    if supervisor.person is not None:
        return supervisor.person.id
    return supervisor.person_id


def _zone_supervisor(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    sid = _supervisor_person_id(supervisor)
    return bool(agent.zone and sid and agent.zone.supervisor_id == sid)


def _zone_agent(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    sid = _supervisor_person_id(supervisor)
    return bool(agent.zone and sid and agent.zone.agent_id == sid)


def _zone_user(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    sid = _supervisor_person_id(supervisor)
    return bool(agent.zone and sid and agent.zone.user_id == sid)


def _assigned_to(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    sid = _supervisor_person_id(supervisor)
    return bool(sid and agent.assigned_to == sid)


def _explicit_supervisor(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    sid = _supervisor_person_id(supervisor)
    if not sid:
        return False
    if agent.supervisor_id == sid:
        return True
    return agent.supervisor is not None and agent.supervisor.id == sid


def _managed_zone(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    return bool(agent.zone_id) and any(
        z.id == agent.zone_id for z in supervisor.managed_zones
    )


def _shared_zone(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    return bool(agent.zone_id and supervisor.zone_id) and agent.zone_id == supervisor.zone_id


def _managed_zone_roster(agent: AssignmentRecord, supervisor: AssignmentRecord) -> bool:
    for zone in supervisor.managed_zones:
        for entry in zone.assignments:
            if entry.agent_id and entry.agent_id == agent.person_id:
                return True
            if entry.id and entry.id == agent.assignment_id:
                return True
    return False


SUPERVISOR_LINK_POLICY: List[Tuple[str, LinkRule]] = [
    ("zone.supervisor_id", _zone_supervisor),
    ("zone.agent_id", _zone_agent),
    ("zone.user_id", _zone_user),
    ("assigned_to", _assigned_to),
    ("supervisor_id", _explicit_supervisor),
    ("managed_zone", _managed_zone),
    ("shared_zone_id", _shared_zone),
    ("managed_zone_roster", _managed_zone_roster),
]


class AssignmentMatcher:
    """Holds the active scope's roster and answers "who is this?"."""

    def __init__(
        self,
        active_statuses: Iterable[str] = DEFAULT_ACTIVE_STATUSES,
        identifier_policy: Optional[Sequence[Tuple[str, IdentifierExtractor]]] = None,
        link_policy: Optional[Sequence[Tuple[str, LinkRule]]] = None,
    ):
        self.active_statuses = {s.lower() for s in active_statuses}
        self.identifier_policy = list(identifier_policy or IDENTIFIER_POLICY)
        self.link_policy = list(link_policy or SUPERVISOR_LINK_POLICY)
        self._scope: Optional[EventScope] = None
        self._roster: List[AssignmentRecord] = []

    @property
    def scope(self) -> Optional[EventScope]:
        return self._scope

    @property
    def roster(self) -> List[AssignmentRecord]:
        return list(self._roster)

    def load(
        self, scope: Optional[EventScope], assignments: Iterable[AssignmentRecord]
    ) -> int:
        """Replace the roster with the active assignments of the given scope."""
        self._scope = scope
        if scope is None:
            self._roster = []
            return 0
        self._roster = [
            a for a in assignments
            if a.event_id == scope.event_id
            and a.status.lower() in self.active_statuses
        ]
        logger.info(
            "Loaded %d active assignments for event %s",
            len(self._roster),
            scope.event_id,
        )
        return len(self._roster)

    def reset(self) -> None:
        self._scope = None
        self._roster = []

    # --- Resolution ---

    def resolve(
        self, entity_id: str, alternate_ids: Iterable[str] = ()
    ) -> MatchResult:
        """Find the assignment for an entity id, trying every identifier scheme."""
        candidates = [entity_id] + [i for i in alternate_ids if i and i != entity_id]
        for candidate in candidates:
            for name, extract in self.identifier_policy:
                for assignment in self._roster:
                    if extract(assignment) == candidate:
                        return MatchResult(
                            matched=True,
                            role=(
                                EntityRole.SUPERVISOR
                                if assignment.is_supervisor
                                else EntityRole.AGENT
                            ),
                            assignment=assignment,
                            person=assignment.person,
                            matched_on=name,
                        )
        return MatchResult(matched=False)

    # --- Grouping ---

    def supervisors(self) -> List[AssignmentRecord]:
        return [a for a in self._roster if a.is_supervisor]

    def agents(self) -> List[AssignmentRecord]:
        return [a for a in self._roster if not a.is_supervisor]

    def link_supervisor(
        self, agent: AssignmentRecord, supervisors: Sequence[AssignmentRecord]
    ) -> Optional[Tuple[AssignmentRecord, str]]:
        """The supervisor an agent reports to, with the rule that linked them."""
        for rule_name, rule in self.link_policy:
            for supervisor in supervisors:
                if _supervisor_person_id(supervisor) == agent.person_id:
                    continue  # Never under oneself
                if rule(agent, supervisor):
                    return supervisor, rule_name
        return None

    def group_by_supervisor(self) -> List[SupervisorGroup]:
        """
        One group per supervisor (in roster order) with their agents, plus a
        trailing orphan group when some agents link to nobody.
        """
        supervisors = self.supervisors()
        groups = {
            s.assignment_id: SupervisorGroup(group_id=s.assignment_id, supervisor=s)
            for s in supervisors
        }
        orphans = SupervisorGroup(group_id=ORPHAN_GROUP_ID)

        for agent in self.agents():
            link = self.link_supervisor(agent, supervisors)
            if link is None:
                orphans.agents.append(agent)
                continue
            supervisor, rule_name = link
            group = groups[supervisor.assignment_id]
            group.agents.append(agent)
            group.linked_by[agent.assignment_id] = rule_name

        result = list(groups.values())
        if orphans.agents:
            result.append(orphans)
        return result

    def orphans(self) -> List[AssignmentRecord]:
        """Agents assigned to the event but linked to no supervisor."""
        supervisors = self.supervisors()
        return [
            a for a in self.agents()
            if self.link_supervisor(a, supervisors) is None
        ]
