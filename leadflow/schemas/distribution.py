from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator
from uuid import UUID
from datetime import datetime, time

from leadflow.core.exceptions import CapacityExhaustedError
from leadflow.models.enums import AssignmentPriority
from leadflow.schemas.common import Priority, UtcDatetime
from leadflow.schemas.lead import LeadOut


class WorkingHours(BaseModel):
    """Window in UTC; `end` earlier than `start` means the window spans midnight."""
    start: time
    end: time

    def contains(self, moment: time) -> bool:
        if self.start <= self.end:
            return self.start <= moment <= self.end
        return moment >= self.start or moment <= self.end


# --- Distribution rules (tagged by `type`) ---
class _RuleBase(BaseModel):
    max_leads_per_manager: Optional[int] = Field(None, ge=1)
    min_lead_score: Optional[int] = Field(None, ge=0)
    prioritize_high_scorers: bool = False
    respect_working_hours: bool = False
    working_hours: Optional[WorkingHours] = None


class RoundRobinRule(_RuleBase):
    type: Literal["ROUND_ROBIN"] = "ROUND_ROBIN"


class LoadBalancedRule(_RuleBase):
    type: Literal["LOAD_BALANCED"] = "LOAD_BALANCED"


class TerritoryBasedRule(_RuleBase):
    type: Literal["TERRITORY_BASED"] = "TERRITORY_BASED"
    territory_mapping: Dict[str, List[UUID]]

    @model_validator(mode="after")
    def _mapping_not_empty(self):
        if not self.territory_mapping or not any(self.territory_mapping.values()):
            raise ValueError("territory_mapping must map at least one territory to an agent")
        return self


class ScorePrioritizedRule(_RuleBase):
    type: Literal["SCORE_PRIORITIZED"] = "SCORE_PRIORITIZED"


DistributionRule = Annotated[
    Union[RoundRobinRule, LoadBalancedRule, TerritoryBasedRule, ScorePrioritizedRule],
    Field(discriminator="type"),
]


# --- Request ---
class DistributeRequest(BaseModel):
    rule: DistributionRule
    agent_ids: List[UUID] = Field(..., min_length=1)
    lead_ids: Optional[List[UUID]] = None
    priority: Priority = AssignmentPriority.NORMAL
    notes: Optional[str] = None
    expected_close_date: Optional[UtcDatetime] = None


# --- Result ---
class AssignmentDecision(BaseModel):
    lead_id: UUID
    agent_id: UUID
    reason: str
    assignment_id: Optional[UUID] = None


class LeadAgentPair(BaseModel):
    lead_id: UUID
    agent_id: UUID


class DistributionStats(BaseModel):
    distribution_method: str
    total_leads: int = 0
    total_assigned: int = 0
    unassigned: List[UUID] = []
    below_min_score: List[UUID] = []
    duplicates: List[LeadAgentPair] = []
    not_found: List[UUID] = []
    ineligible_agents: List[UUID] = []
    agents_at_capacity: List[UUID] = []


class DistributionResult(BaseModel):
    outcome: Literal["ASSIGNED", "NO_ASSIGNMENTS_POSSIBLE"]
    reason: Optional[str] = None
    assignments: List[AssignmentDecision] = []
    stats: DistributionStats

    @property
    def success(self) -> bool:
        return self.outcome == "ASSIGNED"

    def raise_if_empty(self) -> "DistributionResult":
        if not self.success:
            raise CapacityExhaustedError(
                f"No assignments possible: {self.reason}", stats=self.stats.model_dump(mode="json")
            )
        return self


class LeadUploadResponse(BaseModel):
    lead: LeadOut
    distribution: DistributionResult
