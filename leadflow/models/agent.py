# models/agent.py
from sqlalchemy import Column, String, DateTime, Numeric, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4

from leadflow.db.base_class import Base, utcnow
from leadflow.models.enums import AgentStatus, sql_in

class Agent(Base):
    """Sales manager. Workload is derived from ACTIVE assignments and never stored."""
    __tablename__ = "agents"

    agent_id = Column(Uuid, primary_key=True, default=uuid4)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20), nullable=True)
    territory = Column(String(100), nullable=True)
    commission = Column(Numeric(5, 2), nullable=True)
    status = Column(String(20), nullable=False, default=AgentStatus.ACTIVE.value)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(sql_in("status", AgentStatus), name="chk_agent_status"),
    )

    # Relationships
    lead_assignments = relationship("LeadAssignment", back_populates="agent", cascade="all, delete-orphan", passive_deletes=True)
