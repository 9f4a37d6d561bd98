# models/lead_activity.py
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, CheckConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4

from leadflow.db.base_class import Base, utcnow
from leadflow.models.enums import ActivityType, sql_in

class LeadActivity(Base):
    """Append-only behavioural event. Rows are never updated after insert."""
    __tablename__ = "lead_activities"

    activity_id = Column(Uuid, primary_key=True, default=uuid4)
    lead_id = Column(Uuid, ForeignKey("leads.lead_id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(30), nullable=False)
    property_id = Column(Uuid, nullable=True)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=True)
    points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(sql_in("activity_type", ActivityType), name="chk_activity_type"),
        Index("idx_activity_lead", "lead_id"),
        Index("idx_activity_type", "activity_type"),
        Index("idx_activity_time", "created_at"),
    )

    # Relationships
    lead = relationship("Lead", back_populates="activities")
