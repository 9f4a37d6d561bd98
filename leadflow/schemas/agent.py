from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

from leadflow.models.enums import AgentStatus, PipelineStageName

# --- Query params ---
class AgentPerformanceParams(BaseModel):
    timeframe_days: int = Field(30, ge=1, le=365)

    model_config = {"from_attributes": True}


class UpcomingActionsParams(BaseModel):
    days: int = Field(7, ge=1, le=90)


# --- Response models ---
class AgentOut(BaseModel):
    agent_id: UUID
    full_name: str
    email: str
    phone: Optional[str] = None
    territory: Optional[str] = None
    commission: Optional[float] = None
    status: AgentStatus

    model_config = {"from_attributes": True}


class AgentPerformanceResponse(BaseModel):
    agent_id: UUID
    timeframe_days: int
    total_value: float
    weighted_value: float
    average_deal_size: float
    win_rate: float
    average_cycle_time_days: float
    stage_distribution: Dict[str, int]
    velocity_by_stage: Dict[str, float]


class UpcomingAction(BaseModel):
    stage_id: UUID
    assignment_id: UUID
    stage: PipelineStageName
    next_action: Optional[str] = None
    next_action_date: datetime
    probability: Optional[int] = None
    estimated_value: Optional[float] = None
    lead_id: UUID
    lead_name: str
    lead_email: str
    lead_phone: Optional[str] = None


class UpcomingActionsResponse(BaseModel):
    agent_id: UUID
    actions: List[UpcomingAction]
