from .lead import Lead
from .lead_activities import LeadActivity
from .lead_assignment import LeadAssignment
from .pipeline import PipelineStage, PipelineActivity
from .agent import Agent

__all__ = ["Lead", "LeadActivity", "LeadAssignment", "PipelineStage", "PipelineActivity", "Agent"]
