# leadflow/crud/agent.py
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, func

from leadflow.db.store import Store
from leadflow.models import Agent, LeadAssignment
from leadflow.models.enums import AgentStatus, AssignmentStatus


async def get_agent_by_id(store: Store, agent_id: UUID) -> Optional[Agent]:
    return await store.get(Agent, agent_id)


async def get_active_agents(store: Store, agent_ids: Optional[Sequence[UUID]] = None) -> List[Agent]:
    """ ACTIVE agents, optionally restricted to the given ids """
    stmt = select(Agent).where(Agent.status == AgentStatus.ACTIVE.value)
    if agent_ids is not None:
        stmt = stmt.where(Agent.agent_id.in_(list(agent_ids)))
    stmt = stmt.order_by(Agent.created_at, Agent.full_name)
    return await store.scalars(stmt)


async def get_workloads(store: Store, agent_ids: Sequence[UUID]) -> Dict[UUID, int]:
    """ Number of ACTIVE assignments per agent; agents without any map to 0 """
    stmt = (
        select(LeadAssignment.agent_id, func.count(LeadAssignment.assignment_id))
        .where(
            LeadAssignment.agent_id.in_(list(agent_ids)),
            LeadAssignment.status == AssignmentStatus.ACTIVE.value,
        )
        .group_by(LeadAssignment.agent_id)
    )
    result = await store.execute(stmt)
    counts = {agent_id: count for agent_id, count in result.all()}
    return {agent_id: counts.get(agent_id, 0) for agent_id in agent_ids}
