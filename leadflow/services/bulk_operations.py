import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence
from uuid import UUID

import pydantic
from pydantic import TypeAdapter

from leadflow.core.exceptions import LeadFlowError, ValidationError
from leadflow.db.store import Store
from leadflow.models.enums import AssignmentPriority, AssignmentStatus
from leadflow.schemas.bulk import BulkCommand, BulkResult
from leadflow.schemas.common import ItemFailure
from leadflow.services.lead_assignment import AssignmentStore

logger = logging.getLogger(__name__)

_command_adapter = TypeAdapter(BulkCommand)


class BulkOperations:
    """
        Batch actions over assignments for the management screens.

        Every item runs in its own savepoint: a failing item is reported in
        `failures` and the rest of the batch still commits. `affected_count`
        only counts rows that actually changed.
    """

    def __init__(self, store: Store):
        self.store = store
        self.assignments = AssignmentStore(store)

    async def execute(self, command) -> BulkResult:
        if not isinstance(command, pydantic.BaseModel):
            try:
                command = _command_adapter.validate_python(command)
            except pydantic.ValidationError as e:
                raise ValidationError("Invalid bulk command", errors=e.errors(include_url=False)) from e

        if command.action == "update_status":
            return await self.bulk_update_status(command.assignment_ids, command.status)
        if command.action == "update_priority":
            return await self.bulk_update_priority(command.assignment_ids, command.priority)
        if command.action == "reassign":
            return await self.bulk_reassign(
                command.assignment_ids,
                command.new_agent_id,
                priority=command.priority,
                notes=command.notes,
                expected_close_date=command.expected_close_date,
            )
        if command.action == "delete":
            return await self.bulk_delete(command.assignment_ids)
        raise ValidationError(f"Unsupported bulk action: {command.action}")

    async def _run(
        self,
        action: str,
        assignment_ids: Sequence[UUID],
        apply: Callable[[UUID], Awaitable[Optional[UUID]]],
    ) -> BulkResult:
        """`apply` returns the id of the changed row, or None when nothing changed."""
        affected: List[UUID] = []
        failures: List[ItemFailure] = []

        async with self.store.transaction():
            for assignment_id in dict.fromkeys(assignment_ids):
                try:
                    async with self.store.transaction():
                        changed = await apply(assignment_id)
                except LeadFlowError as e:
                    logger.warning("Bulk %s failed for %s: %s", action, assignment_id, e.message)
                    failures.append(ItemFailure(id=assignment_id, error=e.message))
                    continue
                if changed is not None:
                    affected.append(changed)

        logger.info("Bulk %s: %d changed, %d failed", action, len(affected), len(failures))
        return BulkResult(action=action, affected_count=len(affected), assignment_ids=affected, failures=failures)

    async def bulk_update_status(self, assignment_ids: Sequence[UUID], status: AssignmentStatus) -> BulkResult:
        async def apply(assignment_id):
            _, changed = await self.assignments.update_status(assignment_id, status)
            return assignment_id if changed else None

        return await self._run("update_status", assignment_ids, apply)

    async def bulk_update_priority(self, assignment_ids: Sequence[UUID], priority: AssignmentPriority) -> BulkResult:
        async def apply(assignment_id):
            _, changed = await self.assignments.update_priority(assignment_id, priority)
            return assignment_id if changed else None

        return await self._run("update_priority", assignment_ids, apply)

    async def bulk_reassign(
        self,
        assignment_ids: Sequence[UUID],
        new_agent_id: UUID,
        priority: Optional[AssignmentPriority] = None,
        notes: Optional[str] = None,
        expected_close_date: Optional[datetime] = None,
    ) -> BulkResult:
        # A missing or inactive target agent fails the whole batch, not each item
        await self.assignments.get_active_agent(new_agent_id)

        async def apply(assignment_id):
            result = await self.assignments.reassign(
                [assignment_id], new_agent_id, priority=priority, notes=notes, expected_close_date=expected_close_date,
            )
            new_id = result.reassigned[assignment_id]
            return new_id if new_id != assignment_id else None

        return await self._run("reassign", assignment_ids, apply)

    async def bulk_delete(self, assignment_ids: Sequence[UUID]) -> BulkResult:
        async def apply(assignment_id):
            await self.assignments.delete(assignment_id)
            return assignment_id

        return await self._run("delete", assignment_ids, apply)
