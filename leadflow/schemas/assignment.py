from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

from leadflow.models.enums import AssignmentPriority, AssignmentStatus
from leadflow.schemas.common import Priority, UtcDatetime


# --- Requests ---
class AssignmentCreateRequest(BaseModel):
    lead_id: UUID
    agent_id: UUID
    priority: Priority = AssignmentPriority.NORMAL
    notes: Optional[str] = None
    expected_close_date: Optional[UtcDatetime] = None


class AssignmentListParams(BaseModel):
    agent_id: Optional[UUID] = None
    lead_id: Optional[UUID] = None
    status: Optional[AssignmentStatus] = None
    limit: Optional[int] = None
    offset: int = 0


class StatusUpdateRequest(BaseModel):
    status: AssignmentStatus


class PriorityUpdateRequest(BaseModel):
    priority: Priority


class ReassignRequest(BaseModel):
    assignment_ids: List[UUID] = Field(..., min_length=1)
    new_agent_id: UUID
    priority: Optional[Priority] = None
    notes: Optional[str] = None
    expected_close_date: Optional[UtcDatetime] = None


# --- Responses ---
class AssignmentOut(BaseModel):
    assignment_id: UUID
    lead_id: UUID
    agent_id: UUID
    status: AssignmentStatus
    priority: AssignmentPriority
    assigned_at: datetime
    expected_close_date: Optional[datetime] = None
    notes: Optional[str] = None
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class ReassignResult(BaseModel):
    reassigned: Dict[UUID, UUID]  # old assignment id -> resulting assignment id
    duplicates: List[UUID] = []   # leads already bound to the new agent


class AgentWorkload(BaseModel):
    agent_id: UUID
    full_name: str
    email: str
    territory: Optional[str] = None
    active_assignments: int


class AssignmentStats(BaseModel):
    status_stats: Dict[str, int]
    priority_stats: Dict[str, int]
    agent_workload: List[AgentWorkload]
