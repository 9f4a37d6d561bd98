# models/pipeline.py
from sqlalchemy import Column, String, Text, Integer, DateTime, Numeric, ForeignKey, Index, CheckConstraint, Uuid, text
from sqlalchemy.orm import relationship
from uuid import uuid4

from leadflow.db.base_class import Base, utcnow
from leadflow.models.enums import PipelineActivityType, PipelineStageName, sql_in

class PipelineStage(Base):
    """
    One row per period an assignment spent in a funnel stage.

    The row with exited_at IS NULL is the current stage; at most one exists per
    assignment (partial unique index below). Exited rows are history and are
    never modified again.
    """
    __tablename__ = "pipeline_stages"

    stage_id = Column(Uuid, primary_key=True, default=uuid4)
    assignment_id = Column(Uuid, ForeignKey("lead_assignments.assignment_id", ondelete="CASCADE"), nullable=False)
    stage = Column(String(30), nullable=False)
    entered_at = Column(DateTime, default=utcnow, nullable=False)
    exited_at = Column(DateTime, nullable=True)
    duration_hours = Column(Integer, nullable=True)
    probability = Column(Integer, nullable=True)
    estimated_value = Column(Numeric(15, 2), nullable=True)
    next_action = Column(String(255), nullable=True)
    next_action_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, nullable=True)

    __table_args__ = (
        CheckConstraint(sql_in("stage", PipelineStageName), name="chk_pipeline_stage"),
        CheckConstraint("probability BETWEEN 0 AND 100", name="chk_pipeline_probability"),
        Index(
            "uq_pipeline_open_stage",
            "assignment_id",
            unique=True,
            postgresql_where=text("exited_at IS NULL"),
            sqlite_where=text("exited_at IS NULL"),
        ),
        Index("idx_pipeline_assignment_entered", "assignment_id", "entered_at"),
        Index("idx_pipeline_next_action", "next_action_date"),
    )

    # Relationships
    assignment = relationship("LeadAssignment", back_populates="pipeline_stages")
    stage_activities = relationship(
        "PipelineActivity",
        back_populates="stage",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PipelineActivity.created_at",
    )


class PipelineActivity(Base):
    __tablename__ = "pipeline_activities"

    activity_id = Column(Uuid, primary_key=True, default=uuid4)
    stage_id = Column(Uuid, ForeignKey("pipeline_stages.stage_id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    outcome = Column(String(255), nullable=True)
    scheduled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(sql_in("activity_type", PipelineActivityType), name="chk_pipeline_activity_type"),
        Index("idx_pipeline_activity_stage", "stage_id"),
    )

    # Relationships
    stage = relationship("PipelineStage", back_populates="stage_activities")
