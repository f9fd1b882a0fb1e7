"""
Assignment roster — who is posted to an event, in which role and zone.

These records come from the REST backend and are read-only here. Field
aliases follow the backend's camelCase payloads so records can be validated
straight from the response body.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AssignmentRole(str, Enum):
    PRIMARY = "primary"
    BACKUP = "backup"
    SUPERVISOR = "supervisor"


class PersonRef(BaseModel):
    """A guard or supervisor as embedded in assignment payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    national_id: Optional[str] = Field(default=None, alias="cin")
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    employee_id: Optional[str] = Field(default=None, alias="employeeId")
    role: Optional[str] = None
    current_latitude: Optional[float] = Field(default=None, alias="currentLatitude")
    current_longitude: Optional[float] = Field(default=None, alias="currentLongitude")

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else (self.employee_id or self.id)


class ZoneAssignmentRef(BaseModel):
    """An assignment as listed inside a zone's own roster."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    agent_id: Optional[str] = Field(default=None, alias="agentId")


class ZoneRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: Optional[str] = None
    supervisor_id: Optional[str] = Field(default=None, alias="supervisorId")
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    assignments: List[ZoneAssignmentRef] = []


class AssignmentRecord(BaseModel):
    """One person posted to one event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assignment_id: str = Field(alias="id")
    event_id: str = Field(alias="eventId")
    person_id: str = Field(alias="agentId")
    person: Optional[PersonRef] = Field(default=None, alias="agent")
    role: AssignmentRole = AssignmentRole.PRIMARY
    status: str = "pending"                  # "pending" | "confirmed" | "cancelled" ...
    zone_id: Optional[str] = Field(default=None, alias="zoneId")
    zone: Optional[ZoneRef] = None
    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")
    supervisor_id: Optional[str] = Field(default=None, alias="supervisorId")
    supervisor: Optional[PersonRef] = None
    managed_zones: List[ZoneRef] = Field(default=[], alias="zones")

    @property
    def is_supervisor(self) -> bool:
        return self.role == AssignmentRole.SUPERVISOR


class SupervisorGroup(BaseModel):
    """A supervisor with the agents linked to them, or the orphan bucket."""

    group_id: str
    supervisor: Optional[AssignmentRecord] = None
    agents: List[AssignmentRecord] = []
    linked_by: Dict[str, str] = {}           # agent assignment_id -> link rule name

    @property
    def is_orphan_bucket(self) -> bool:
        return self.supervisor is None
