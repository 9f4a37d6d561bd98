from typing import List, Optional
from decimal import Decimal
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

from leadflow.models.enums import PipelineActivityType, PipelineStageName
from leadflow.schemas.agent import AgentOut
from leadflow.schemas.assignment import AssignmentOut
from leadflow.schemas.common import UtcDatetime
from leadflow.schemas.lead import LeadOut


# --- Requests ---
class PipelineInitRequest(BaseModel):
    assignment_id: UUID
    agent_id: UUID


class TransitionRequest(BaseModel):
    stage: PipelineStageName
    probability: Optional[int] = Field(None, ge=0, le=100)
    estimated_value: Optional[Decimal] = Field(None, ge=0)
    next_action: Optional[str] = Field(None, max_length=255)
    next_action_date: Optional[UtcDatetime] = None
    notes: Optional[str] = None
    agent_id: Optional[UUID] = None


class PipelineActivityCreate(BaseModel):
    activity_type: PipelineActivityType
    description: str = Field(..., min_length=1)
    outcome: Optional[str] = Field(None, max_length=255)
    scheduled_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    created_by: Optional[UUID] = None


# --- Responses ---
class PipelineActivityOut(BaseModel):
    activity_id: UUID
    stage_id: UUID
    activity_type: PipelineActivityType
    description: str
    outcome: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PipelineStageOut(BaseModel):
    stage_id: UUID
    assignment_id: UUID
    stage: PipelineStageName
    entered_at: datetime
    exited_at: Optional[datetime] = None
    duration_hours: Optional[int] = None
    probability: Optional[int] = None
    estimated_value: Optional[float] = None
    next_action: Optional[str] = None
    next_action_date: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class PipelineStageDetail(PipelineStageOut):
    is_current: bool
    activities: List[PipelineActivityOut] = []


class PipelineDetail(BaseModel):
    assignment: AssignmentOut
    lead: LeadOut
    agent: AgentOut
    current_stage: Optional[PipelineStageName] = None
    stages: List[PipelineStageDetail]
