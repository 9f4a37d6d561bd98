# models/lead.py
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric, JSON, CheckConstraint, Index, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4

from leadflow.db.base_class import Base, utcnow
from leadflow.models.enums import LeadGrade, LeadStatus, sql_in

class Lead(Base):
    __tablename__ = "leads"

    lead_id = Column(Uuid, primary_key=True, default=uuid4)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=LeadStatus.ACTIVE.value)
    preferred_areas = Column(JSON, nullable=False, default=list)  # location strings, used for territory routing

    # Written only by LeadScoringEngine
    score = Column(Integer, nullable=False, default=0)
    grade = Column(String(20), nullable=False, default=LeadGrade.COLD.value)
    last_activity = Column(DateTime, nullable=True)
    serious_buyer_indicator = Column(Boolean, nullable=False, default=False)
    budget_estimate = Column(Numeric(15, 2), nullable=True)
    last_calculated = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(sql_in("status", LeadStatus), name="chk_lead_status"),
        CheckConstraint(sql_in("grade", LeadGrade), name="chk_lead_grade"),
        CheckConstraint("score >= 0", name="chk_lead_score"),
        Index("idx_lead_score", "score"),
        Index("idx_lead_grade", "grade"),
    )

    # Relationships
    activities = relationship("LeadActivity", back_populates="lead", cascade="all, delete-orphan", passive_deletes=True)
    assignments = relationship("LeadAssignment", back_populates="lead", cascade="all, delete-orphan", passive_deletes=True)
