import logging
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from leadflow.core.config import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from leadflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from leadflow.crud import lead_assignment as crud
from leadflow.crud.agent import get_agent_by_id
from leadflow.crud.lead import get_lead_by_id
from leadflow.db.store import Store
from leadflow.models.agent import Agent
from leadflow.models.enums import AgentStatus, AssignmentPriority, AssignmentStatus
from leadflow.models.lead_assignment import LeadAssignment
from leadflow.schemas.assignment import AgentWorkload, AssignmentStats, ReassignResult
from leadflow.schemas.common import normalize_priority

logger = logging.getLogger(__name__)


ASSIGNMENT_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.ACTIVE: frozenset({
        AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED, AssignmentStatus.ON_HOLD,
    }),
    AssignmentStatus.ON_HOLD: frozenset({
        AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED,
    }),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
}


TERMINAL_STATUSES = frozenset({AssignmentStatus.COMPLETED.value, AssignmentStatus.CANCELLED.value})


def parse_priority(value) -> AssignmentPriority:
    """Accepts enum members or strings in any case; MEDIUM maps to NORMAL."""
    try:
        return AssignmentPriority(normalize_priority(value))
    except ValueError as e:
        raise ValidationError(f"Unknown priority: {value}", priority=str(value)) from e


def parse_status(value) -> AssignmentStatus:
    if isinstance(value, str):
        value = value.strip().upper()
    try:
        return AssignmentStatus(value)
    except ValueError as e:
        raise ValidationError(f"Unknown assignment status: {value}", status=str(value)) from e


def check_transition(current: str, new: str) -> None:
    current, new = AssignmentStatus(current), AssignmentStatus(new)
    if new not in ASSIGNMENT_TRANSITIONS[current]:
        raise ConflictError(
            f"Cannot move assignment from {current.value} to {new.value}",
            current=current.value,
            requested=new.value,
        )


class AssignmentStore:
    """
        Owns every write to `lead_assignments`.

        - A (lead, agent) pair exists at most once, whatever its status.
        - Status moves follow ASSIGNMENT_TRANSITIONS; COMPLETED and CANCELLED
          are terminal.
        - Reassignment replaces rows for the same leads inside one transaction.
    """

    def __init__(self, store: Store):
        self.store = store

    # --- Lookups ---
    async def get(self, assignment_id: UUID) -> LeadAssignment:
        assignment = await crud.get_assignment(self.store, assignment_id)
        if not assignment:
            raise NotFoundError("Assignment not found", assignment_id=str(assignment_id))
        return assignment

    async def get_active_agent(self, agent_id: UUID) -> Agent:
        agent = await get_agent_by_id(self.store, agent_id)
        if not agent:
            raise NotFoundError("Agent not found", agent_id=str(agent_id))
        if agent.status != AgentStatus.ACTIVE.value:
            raise ValidationError("Agent is not active", agent_id=str(agent_id))
        return agent

    async def list_assignments(
        self,
        agent_id: Optional[UUID] = None,
        lead_id: Optional[UUID] = None,
        status: Optional[AssignmentStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[LeadAssignment]:
        if not limit or limit < 1:
            limit = DEFAULT_LIST_LIMIT
        limit = min(limit, MAX_LIST_LIMIT)
        status_value = parse_status(status).value if status else None
        return await crud.list_assignments(self.store, limit, max(0, offset), agent_id, lead_id, status_value)

    # --- Creation ---
    async def insert_unless_duplicate(
        self,
        lead_id: UUID,
        agent_id: UUID,
        priority: AssignmentPriority = AssignmentPriority.NORMAL,
        notes: Optional[str] = None,
        reason: Optional[str] = None,
        expected_close_date: Optional[datetime] = None,
    ) -> Optional[LeadAssignment]:
        """Insert inside a savepoint; a concurrent insert of the same pair yields None."""
        try:
            async with self.store.transaction():
                return await crud.insert_assignment(
                    self.store,
                    lead_id=lead_id,
                    agent_id=agent_id,
                    priority=parse_priority(priority).value,
                    notes=notes,
                    reason=reason,
                    expected_close_date=expected_close_date,
                )
        except IntegrityError:
            logger.info("Pair (%s, %s) inserted concurrently; skipped", lead_id, agent_id)
            return None

    async def create(
        self,
        lead_id: UUID,
        agent_id: UUID,
        priority: AssignmentPriority = AssignmentPriority.NORMAL,
        notes: Optional[str] = None,
        expected_close_date: Optional[datetime] = None,
        reason: Optional[str] = "manual",
    ) -> LeadAssignment:
        async with self.store.transaction():
            if not await get_lead_by_id(self.store, lead_id):
                raise NotFoundError("Lead not found", lead_id=str(lead_id))
            await self.get_active_agent(agent_id)
            if await crud.get_assignment_by_pair(self.store, lead_id, agent_id):
                raise ConflictError("Lead is already assigned to this agent", lead_id=str(lead_id), agent_id=str(agent_id))

            assignment = await self.insert_unless_duplicate(
                lead_id, agent_id, priority, notes=notes, reason=reason, expected_close_date=expected_close_date,
            )
            if assignment is None:
                raise ConflictError("Lead is already assigned to this agent", lead_id=str(lead_id), agent_id=str(agent_id))
        logger.info("Assigned lead %s to agent %s", lead_id, agent_id)
        return assignment

    async def bulk_create(
        self,
        pairs: Iterable[Tuple[UUID, UUID]],
        priority: AssignmentPriority = AssignmentPriority.NORMAL,
        notes: Optional[str] = None,
        reason: Optional[str] = None,
        expected_close_date: Optional[datetime] = None,
    ) -> Tuple[List[LeadAssignment], List[Tuple[UUID, UUID]]]:
        """Create every new pair; pairs that already exist are returned as duplicates."""
        pairs = list(dict.fromkeys(pairs))
        created: List[LeadAssignment] = []
        duplicates: List[Tuple[UUID, UUID]] = []

        async with self.store.transaction():
            existing = await crud.get_existing_pairs(
                self.store, {lead for lead, _ in pairs}, {agent for _, agent in pairs},
            )
            for lead_id, agent_id in pairs:
                if (lead_id, agent_id) in existing:
                    duplicates.append((lead_id, agent_id))
                    continue
                assignment = await self.insert_unless_duplicate(
                    lead_id, agent_id, priority, notes=notes, reason=reason, expected_close_date=expected_close_date,
                )
                if assignment is None:
                    duplicates.append((lead_id, agent_id))
                else:
                    created.append(assignment)
        return created, duplicates

    # --- Status / priority ---
    async def update_status(self, assignment_id: UUID, new_status: AssignmentStatus) -> Tuple[LeadAssignment, bool]:
        """Returns the assignment and whether its status actually changed."""
        new_status = parse_status(new_status)
        async with self.store.transaction():
            assignment = await self.get(assignment_id)
            current = assignment.status
            if current == new_status.value:
                return assignment, False
            check_transition(current, new_status)
            changed = await crud.update_status(self.store, assignment_id, current, new_status.value)
            if not changed:
                raise ConflictError("Assignment status changed concurrently", assignment_id=str(assignment_id))
        logger.info("Assignment %s: %s -> %s", assignment_id, current, new_status.value)
        return assignment, True

    async def update_priority(self, assignment_id: UUID, priority: AssignmentPriority) -> Tuple[LeadAssignment, bool]:
        priority = parse_priority(priority)
        async with self.store.transaction():
            assignment = await self.get(assignment_id)
            changed = await crud.update_priority(self.store, [assignment_id], priority.value)
        return assignment, bool(changed)

    # --- Reassignment ---
    async def reassign(
        self,
        assignment_ids: Sequence[UUID],
        new_agent_id: UUID,
        priority: Optional[AssignmentPriority] = None,
        notes: Optional[str] = None,
        expected_close_date: Optional[datetime] = None,
    ) -> ReassignResult:
        """
        Move the leads behind `assignment_ids` to `new_agent_id`.

        Old rows are deleted and new ACTIVE rows created for the same leads,
        all in one transaction: an unknown id aborts the whole call. A lead
        that already has an ACTIVE or ON_HOLD row for the new agent keeps that
        row and is reported as a duplicate; a COMPLETED or CANCELLED row for
        the new agent is a ConflictError and nothing is moved.
        """
        assignment_ids = list(dict.fromkeys(assignment_ids))
        if not assignment_ids:
            raise ValidationError("No assignments to reassign")

        reassigned: Dict[UUID, UUID] = {}
        duplicates: List[UUID] = []
        async with self.store.transaction():
            await self.get_active_agent(new_agent_id)
            assignments = await crud.get_assignments_by_ids(self.store, assignment_ids)
            found = {a.assignment_id: a for a in assignments}
            missing = [str(i) for i in assignment_ids if i not in found]
            if missing:
                raise NotFoundError("Assignments not found", assignment_ids=missing)

            # Lead ids and carried-over fields are read before any row is deleted
            plan = [
                (
                    a.assignment_id,
                    a.lead_id,
                    a.agent_id,
                    priority or a.priority,
                    notes if notes is not None else a.notes,
                    expected_close_date or a.expected_close_date,
                )
                for a in (found[i] for i in assignment_ids)
            ]

            for old_id, lead_id, agent_id, new_priority, new_notes, close_date in plan:
                if agent_id == new_agent_id:
                    reassigned[old_id] = old_id
                    duplicates.append(lead_id)
                    continue
                existing = await crud.get_assignment_by_pair(self.store, lead_id, new_agent_id)
                if existing and existing.status in TERMINAL_STATUSES:
                    # The pair cannot be re-created, so the old row must stay
                    raise ConflictError(
                        f"Lead already has a {existing.status} assignment with this agent",
                        lead_id=str(lead_id),
                        agent_id=str(new_agent_id),
                    )
                await crud.delete_assignments(self.store, [old_id])
                if existing:
                    reassigned[old_id] = existing.assignment_id
                    duplicates.append(lead_id)
                    continue
                created = await crud.insert_assignment(
                    self.store,
                    lead_id=lead_id,
                    agent_id=new_agent_id,
                    priority=parse_priority(new_priority).value,
                    notes=new_notes,
                    reason="reassigned",
                    expected_close_date=close_date,
                )
                reassigned[old_id] = created.assignment_id

        logger.info("Reassigned %d assignment(s) to agent %s", len(reassigned), new_agent_id)
        return ReassignResult(reassigned=reassigned, duplicates=duplicates)

    # --- Deletion ---
    async def delete(self, assignment_id: UUID) -> None:
        async with self.store.transaction():
            await self.get(assignment_id)
            await crud.delete_assignments(self.store, [assignment_id])
        logger.info("Deleted assignment %s", assignment_id)

    # --- Aggregates ---
    async def workload_stats(self) -> AssignmentStats:
        status_stats = await crud.count_by_status(self.store)
        priority_stats = await crud.count_by_priority(self.store)
        workload = await crud.active_workload_by_agent(self.store)
        return AssignmentStats(
            status_stats={s.value: status_stats.get(s.value, 0) for s in AssignmentStatus},
            priority_stats={p.value: priority_stats.get(p.value, 0) for p in AssignmentPriority},
            agent_workload=[AgentWorkload(**row) for row in workload],
        )
