from typing import Any, Dict, List, Optional, Annotated
from pydantic import BaseModel, EmailStr, StringConstraints
from uuid import UUID
from datetime import datetime

from leadflow.models.enums import ActivityType, LeadGrade, LeadStatus
from leadflow.schemas.common import ItemFailure

# --- Requests ---
class LeadCreateRequest(BaseModel):
    full_name: Annotated[str, StringConstraints(min_length=1, max_length=200)]
    email: EmailStr
    phone: Optional[Annotated[str, StringConstraints(min_length=7, max_length=20)]] = None
    preferred_areas: List[str] = []


class LeadUploadRequest(LeadCreateRequest):
    # Candidate agents for the post-upload distribution; all ACTIVE agents when omitted
    agent_ids: Optional[List[UUID]] = None


class ActivityCreateRequest(BaseModel):
    activity_type: ActivityType
    property_id: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = None


# Bounds are clamped server-side instead of being rejected
class LeadListParams(BaseModel):
    grade: Optional[LeadGrade] = None
    min_score: Optional[int] = None
    max_score: Optional[int] = None
    limit: Optional[int] = None


class BulkRecalculateRequest(BaseModel):
    lead_ids: Optional[List[UUID]] = None


# --- Responses ---
class LeadOut(BaseModel):
    lead_id: UUID
    full_name: str
    email: str
    phone: Optional[str] = None
    status: LeadStatus
    preferred_areas: List[str] = []
    score: int
    grade: LeadGrade
    last_activity: Optional[datetime] = None
    serious_buyer_indicator: bool
    budget_estimate: Optional[float] = None

    model_config = {"from_attributes": True}


class ActivityOut(BaseModel):
    activity_id: UUID
    lead_id: UUID
    activity_type: ActivityType
    property_id: Optional[UUID] = None
    points: int
    created_at: datetime

    model_config = {"from_attributes": True}


class ScoreResult(BaseModel):
    lead_id: UUID
    score: int
    grade: LeadGrade
    last_activity: Optional[datetime] = None
    serious_buyer_indicator: bool = False
    budget_estimate: Optional[float] = None


class ActivityRecordedResponse(BaseModel):
    activity: ActivityOut
    score: Optional[ScoreResult] = None


class BulkRecalculateResponse(BaseModel):
    recalculated: List[ScoreResult]
    failures: List[ItemFailure]
