# leadflow/crud/lead.py
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, exists

from leadflow.db.store import Store
from leadflow.models import Lead, LeadAssignment
from leadflow.models.enums import AssignmentStatus, LeadStatus


# --- Insert Lead ---
async def create_lead(store: Store, lead_data: dict) -> Lead:
    lead = Lead(**lead_data)
    return await store.create(lead)


# --- Fetch Lead by ID ---
async def get_lead_by_id(store: Store, lead_id: UUID) -> Optional[Lead]:
    return await store.get(Lead, lead_id)


async def get_lead_by_email(store: Store, email: str) -> Optional[Lead]:
    result = await store.execute(select(Lead).where(Lead.email == email))
    return result.scalar_one_or_none()


async def get_leads_by_ids(store: Store, lead_ids: Sequence[UUID], active_only: bool = True) -> List[Lead]:
    stmt = select(Lead).where(Lead.lead_id.in_(list(lead_ids)))
    if active_only:
        stmt = stmt.where(Lead.status == LeadStatus.ACTIVE.value)
    return await store.scalars(stmt)


async def get_active_lead_ids(store: Store) -> List[UUID]:
    result = await store.execute(
        select(Lead.lead_id).where(Lead.status == LeadStatus.ACTIVE.value).order_by(Lead.created_at)
    )
    return list(result.scalars().all())


# --- Unassigned pool: ACTIVE leads without an ACTIVE assignment, best first ---
async def get_unassigned_leads(store: Store, limit: int, min_score: Optional[int] = None) -> List[Lead]:
    has_active_assignment = exists().where(
        LeadAssignment.lead_id == Lead.lead_id,
        LeadAssignment.status == AssignmentStatus.ACTIVE.value,
    )
    stmt = select(Lead).where(Lead.status == LeadStatus.ACTIVE.value, ~has_active_assignment)
    if min_score is not None:
        stmt = stmt.where(Lead.score >= min_score)
    stmt = stmt.order_by(Lead.score.desc(), Lead.last_calculated.desc(), Lead.created_at).limit(limit)
    return await store.scalars(stmt)


# --- Filtered listing (bounds are sanitised by the caller) ---
async def list_leads(
    store: Store,
    limit: int,
    grade: Optional[str] = None,
    min_score: Optional[int] = None,
    max_score: Optional[int] = None,
) -> List[Lead]:
    stmt = select(Lead)
    if grade:
        stmt = stmt.where(Lead.grade == grade)
    if min_score is not None:
        stmt = stmt.where(Lead.score >= min_score)
    if max_score is not None:
        stmt = stmt.where(Lead.score <= max_score)
    stmt = stmt.order_by(Lead.score.desc(), Lead.created_at).limit(limit)
    return await store.scalars(stmt)


async def has_active_assignment(store: Store, lead_id: UUID) -> bool:
    stmt = select(
        exists().where(
            LeadAssignment.lead_id == lead_id,
            LeadAssignment.status == AssignmentStatus.ACTIVE.value,
        )
    )
    return bool(await store.scalar(stmt))


async def update_lead_scoring(store: Store, lead_id: UUID, values: dict) -> int:
    return await store.update_atomic(Lead, [Lead.lead_id == lead_id], values)
