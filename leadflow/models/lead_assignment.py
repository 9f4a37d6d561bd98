# models/lead_assignment.py
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint, Index, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4

from leadflow.db.base_class import Base, utcnow
from leadflow.models.enums import AssignmentPriority, AssignmentStatus, sql_in

class LeadAssignment(Base):
    __tablename__ = "lead_assignments"

    assignment_id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.lead_id", ondelete="CASCADE"), nullable=False)
    agent_id = Column(Uuid, ForeignKey("agents.agent_id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=AssignmentStatus.ACTIVE.value)
    priority = Column(String(10), nullable=False, default=AssignmentPriority.NORMAL.value)
    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    expected_close_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    reason = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("lead_id", "agent_id", name="unique_lead_agent_assignment"),
        CheckConstraint(sql_in("status", AssignmentStatus), name="chk_assignment_status"),
        CheckConstraint(sql_in("priority", AssignmentPriority), name="chk_assignment_priority"),
        Index("idx_assignment_agent_status", "agent_id", "status"),
        Index("idx_assignment_lead", "lead_id"),
        Index("idx_assignment_time", "assigned_at"),
    )

    # Relationships
    lead = relationship("Lead", back_populates="assignments")
    agent = relationship("Agent", back_populates="lead_assignments")
    pipeline_stages = relationship(
        "PipelineStage",
        back_populates="assignment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PipelineStage.entered_at",
    )
