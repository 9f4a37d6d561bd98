# leadflow/crud/lead_assignment.py
from typing import List, Optional, Sequence, Set, Tuple
from uuid import UUID
from datetime import datetime

from sqlalchemy import select, func

from leadflow.db.store import Store
from leadflow.models import Agent, LeadAssignment
from leadflow.models.enums import AssignmentStatus


# --- Insert Assignment (flushes, so uniqueness violations surface here) ---
async def insert_assignment(
    store: Store,
    lead_id: UUID,
    agent_id: UUID,
    priority: str,
    notes: Optional[str] = None,
    reason: Optional[str] = None,
    expected_close_date: Optional[datetime] = None,
) -> LeadAssignment:
    assignment = LeadAssignment(
        lead_id=lead_id,
        agent_id=agent_id,
        status=AssignmentStatus.ACTIVE.value,
        priority=priority,
        notes=notes,
        reason=reason,
        expected_close_date=expected_close_date,
    )
    return await store.create(assignment)


async def get_assignment(store: Store, assignment_id: UUID) -> Optional[LeadAssignment]:
    return await store.get(LeadAssignment, assignment_id)


async def get_assignments_by_ids(store: Store, assignment_ids: Sequence[UUID]) -> List[LeadAssignment]:
    stmt = select(LeadAssignment).where(LeadAssignment.assignment_id.in_(list(assignment_ids)))
    return await store.scalars(stmt)


async def get_assignment_by_pair(store: Store, lead_id: UUID, agent_id: UUID) -> Optional[LeadAssignment]:
    result = await store.execute(
        select(LeadAssignment).where(
            LeadAssignment.lead_id == lead_id,
            LeadAssignment.agent_id == agent_id,
        )
    )
    return result.scalar_one_or_none()


# --- Existing (lead, agent) pairs among the candidates ---
async def get_existing_pairs(
    store: Store,
    lead_ids: Sequence[UUID],
    agent_ids: Sequence[UUID],
) -> Set[Tuple[UUID, UUID]]:
    if not lead_ids or not agent_ids:
        return set()
    stmt = select(LeadAssignment.lead_id, LeadAssignment.agent_id).where(
        LeadAssignment.lead_id.in_(list(lead_ids)),
        LeadAssignment.agent_id.in_(list(agent_ids)),
    )
    result = await store.execute(stmt)
    return {(lead_id, agent_id) for lead_id, agent_id in result.all()}


# --- Get Assignments by Agent / Status ---
async def list_assignments(
    store: Store,
    limit: int,
    offset: int = 0,
    agent_id: Optional[UUID] = None,
    lead_id: Optional[UUID] = None,
    status: Optional[str] = None,
) -> List[LeadAssignment]:
    stmt = select(LeadAssignment)
    if agent_id:
        stmt = stmt.where(LeadAssignment.agent_id == agent_id)
    if lead_id:
        stmt = stmt.where(LeadAssignment.lead_id == lead_id)
    if status:
        stmt = stmt.where(LeadAssignment.status == status)
    stmt = stmt.order_by(LeadAssignment.assigned_at.desc()).limit(limit).offset(offset)
    return await store.scalars(stmt)


# --- Guarded status update: only changes the row if it still has `expected` ---
async def update_status(store: Store, assignment_id: UUID, expected: str, new_status: str) -> int:
    return await store.update_atomic(
        LeadAssignment,
        [LeadAssignment.assignment_id == assignment_id, LeadAssignment.status == expected],
        {"status": new_status},
    )


async def update_priority(store: Store, assignment_ids: Sequence[UUID], priority: str) -> int:
    """ Rows whose priority actually changed """
    return await store.update_atomic(
        LeadAssignment,
        [LeadAssignment.assignment_id.in_(list(assignment_ids)), LeadAssignment.priority != priority],
        {"priority": priority},
    )


# --- Delete Assignments ---
async def delete_assignments(store: Store, assignment_ids: Sequence[UUID]) -> int:
    return await store.delete_where(
        LeadAssignment, [LeadAssignment.assignment_id.in_(list(assignment_ids))]
    )


# --- Aggregates for the bulk operations screen ---
async def count_by_status(store: Store) -> dict:
    result = await store.execute(
        select(LeadAssignment.status, func.count(LeadAssignment.assignment_id)).group_by(LeadAssignment.status)
    )
    return {status: count for status, count in result.all()}


async def count_by_priority(store: Store) -> dict:
    result = await store.execute(
        select(LeadAssignment.priority, func.count(LeadAssignment.assignment_id)).group_by(LeadAssignment.priority)
    )
    return {priority: count for priority, count in result.all()}


async def active_workload_by_agent(store: Store) -> list:
    stmt = (
        select(
            Agent.agent_id,
            Agent.full_name,
            Agent.email,
            Agent.territory,
            func.count(LeadAssignment.assignment_id).label("active_assignments"),
        )
        .join(LeadAssignment, LeadAssignment.agent_id == Agent.agent_id)
        .where(LeadAssignment.status == AssignmentStatus.ACTIVE.value)
        .group_by(Agent.agent_id, Agent.full_name, Agent.email, Agent.territory)
        .order_by(func.count(LeadAssignment.assignment_id).desc())
    )
    result = await store.execute(stmt)
    return [dict(row) for row in result.mappings().all()]
