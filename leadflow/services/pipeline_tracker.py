import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from leadflow.core.exceptions import ConflictError, NoActiveStageError, NotFoundError, ValidationError
from leadflow.crud import lead_assignment as assignment_crud
from leadflow.crud.agent import get_agent_by_id
from leadflow.crud.pipeline import (
    close_stage,
    get_assignment_with_pipeline,
    get_open_stage,
    get_stage,
    get_upcoming_actions,
    insert_activity,
    insert_stage,
    update_open_stage,
)
from leadflow.db.base_class import utcnow
from leadflow.db.store import Store
from leadflow.models.enums import AssignmentStatus, PipelineActivityType, PipelineStageName
from leadflow.models.lead_assignment import LeadAssignment
from leadflow.models.pipeline import PipelineActivity, PipelineStage
from leadflow.schemas.agent import AgentOut, UpcomingAction, UpcomingActionsResponse
from leadflow.schemas.assignment import AssignmentOut
from leadflow.schemas.lead import LeadOut
from leadflow.schemas.pipeline import PipelineActivityOut, PipelineDetail, PipelineStageDetail
from leadflow.services.lead_assignment import check_transition

logger = logging.getLogger(__name__)


DEFAULT_PROBABILITIES: Dict[PipelineStageName, int] = {
    PipelineStageName.NEW: 10,
    PipelineStageName.CONTACTED: 20,
    PipelineStageName.QUALIFIED: 35,
    PipelineStageName.PROPERTY_VIEWING: 60,
    PipelineStageName.PROPOSAL: 50,
    PipelineStageName.NEGOTIATION: 65,
    PipelineStageName.APPLICATION: 80,
    PipelineStageName.CLOSING: 90,
    PipelineStageName.ON_HOLD: 25,
    PipelineStageName.WON: 100,
    PipelineStageName.LOST: 0,
}

TERMINAL_STAGES = frozenset({PipelineStageName.WON.value, PipelineStageName.LOST.value})
_TERMINAL_STATUSES = frozenset({AssignmentStatus.COMPLETED.value, AssignmentStatus.CANCELLED.value})

# Assignment status implied by entering a stage; other stages reactivate an ON_HOLD assignment
_STAGE_STATUS = {
    PipelineStageName.WON: AssignmentStatus.COMPLETED,
    PipelineStageName.LOST: AssignmentStatus.CANCELLED,
    PipelineStageName.ON_HOLD: AssignmentStatus.ON_HOLD,
}


def _hours_between(start: datetime, end: datetime) -> int:
    return max(0, math.ceil((end - start).total_seconds() / 3600))


def stage_duration_hours(stage: PipelineStage, now: Optional[datetime] = None) -> int:
    """Stored duration once the stage is closed; elapsed hours so far while it is open."""
    if stage.exited_at is not None:
        if stage.duration_hours is not None:
            return stage.duration_hours
        return _hours_between(stage.entered_at, stage.exited_at)
    return _hours_between(stage.entered_at, now or utcnow())


class PipelineTracker:
    """
        Tracks an assignment through the sales funnel.

        Each stage period is one `pipeline_stages` row; the open row
        (exited_at IS NULL) is the current stage. Moving to another stage closes
        the open row with a compare-and-swap, so two concurrent moves cannot both
        win. Entering WON, LOST or ON_HOLD updates the assignment status.
    """

    def __init__(self, store: Store):
        self.store = store

    async def _get_assignment(self, assignment_id: UUID) -> LeadAssignment:
        assignment = await assignment_crud.get_assignment(self.store, assignment_id)
        if not assignment:
            raise NotFoundError("Assignment not found", assignment_id=str(assignment_id))
        return assignment

    # --- Initialization ---
    async def initialize_pipeline(self, assignment_id: UUID, agent_id: Optional[UUID] = None) -> PipelineStage:
        async with self.store.transaction():
            assignment = await self._get_assignment(assignment_id)
            current = await get_open_stage(self.store, assignment_id)
            if current:
                return current
            if assignment.status in _TERMINAL_STATUSES:
                raise ConflictError(
                    f"Assignment is {assignment.status}", assignment_id=str(assignment_id)
                )

            try:
                async with self.store.transaction():
                    stage = await insert_stage(
                        self.store,
                        assignment_id,
                        PipelineStageName.NEW.value,
                        entered_at=utcnow(),
                        probability=DEFAULT_PROBABILITIES[PipelineStageName.NEW],
                        created_by=agent_id,
                    )
                    await insert_activity(
                        self.store,
                        stage.stage_id,
                        PipelineActivityType.NOTE.value,
                        "Lead assigned to pipeline",
                        created_by=agent_id,
                    )
            except IntegrityError:
                # Initialized concurrently; the other writer's stage is the open one
                stage = await get_open_stage(self.store, assignment_id)
                if stage is None:
                    raise ConflictError("Pipeline initialization failed", assignment_id=str(assignment_id))
                return stage

        logger.info("Pipeline initialized for assignment %s", assignment_id)
        return stage

    # --- Transitions ---
    async def transition(
        self,
        assignment_id: UUID,
        new_stage: PipelineStageName,
        probability: Optional[int] = None,
        estimated_value: Optional[Decimal] = None,
        next_action: Optional[str] = None,
        next_action_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        agent_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PipelineStage:
        try:
            new_stage = PipelineStageName(new_stage)
        except ValueError as e:
            raise ValidationError(f"Unknown pipeline stage: {new_stage}") from e
        if probability is not None and not 0 <= probability <= 100:
            raise ValidationError("Probability must be between 0 and 100", probability=probability)
        now = now or utcnow()

        async with self.store.transaction():
            assignment = await self._get_assignment(assignment_id)
            if assignment.status in _TERMINAL_STATUSES:
                raise ConflictError(
                    f"Assignment is {assignment.status}; its pipeline is closed",
                    assignment_id=str(assignment_id),
                )

            current = await get_open_stage(self.store, assignment_id)

            if current and current.stage == new_stage.value:
                values = {
                    key: value
                    for key, value in {
                        "probability": probability,
                        "estimated_value": estimated_value,
                        "next_action": next_action,
                        "next_action_date": next_action_date,
                        "notes": notes,
                    }.items()
                    if value is not None
                }
                if values and not await update_open_stage(self.store, current.stage_id, values):
                    raise ConflictError("Stage was closed concurrently", stage_id=str(current.stage_id))
                return current

            if current and current.stage in TERMINAL_STAGES:
                raise ConflictError(
                    f"Cannot leave terminal stage {current.stage}", stage_id=str(current.stage_id)
                )

            if current:
                closed = await close_stage(
                    self.store, current.stage_id, now, _hours_between(current.entered_at, now)
                )
                if not closed:
                    raise ConflictError("Stage was closed concurrently", stage_id=str(current.stage_id))

            try:
                stage = await insert_stage(
                    self.store,
                    assignment_id,
                    new_stage.value,
                    entered_at=now,
                    probability=probability if probability is not None else DEFAULT_PROBABILITIES[new_stage],
                    estimated_value=estimated_value,
                    next_action=next_action,
                    next_action_date=next_action_date,
                    notes=notes,
                    created_by=agent_id,
                )
            except IntegrityError as e:
                raise ConflictError("Another stage was opened concurrently", assignment_id=str(assignment_id)) from e

            await insert_activity(
                self.store,
                stage.stage_id,
                PipelineActivityType.NOTE.value,
                f"Stage changed to {new_stage.value}" + (f": {notes}" if notes else ""),
                created_by=agent_id,
            )
            await self._sync_assignment_status(assignment, new_stage)

        logger.info(
            "Assignment %s moved %s -> %s",
            assignment_id,
            current.stage if current else "-",
            new_stage.value,
        )
        return stage

    async def _sync_assignment_status(self, assignment: LeadAssignment, stage: PipelineStageName) -> None:
        target = _STAGE_STATUS.get(stage)
        if target is None:
            if assignment.status != AssignmentStatus.ON_HOLD.value:
                return
            target = AssignmentStatus.ACTIVE
        if assignment.status == target.value:
            return
        check_transition(assignment.status, target)
        changed = await assignment_crud.update_status(
            self.store, assignment.assignment_id, assignment.status, target.value
        )
        if not changed:
            raise ConflictError(
                "Assignment status changed concurrently", assignment_id=str(assignment.assignment_id)
            )

    # --- Activities ---
    async def add_activity(
        self,
        activity_type: PipelineActivityType,
        description: str,
        assignment_id: Optional[UUID] = None,
        stage_id: Optional[UUID] = None,
        outcome: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        created_by: Optional[UUID] = None,
    ) -> PipelineActivity:
        try:
            activity_type = PipelineActivityType(activity_type)
        except ValueError as e:
            raise ValidationError(f"Unknown pipeline activity type: {activity_type}") from e
        if not description or not description.strip():
            raise ValidationError("Description is required")

        async with self.store.transaction():
            if stage_id is not None:
                stage = await get_stage(self.store, stage_id)
                if not stage:
                    raise NotFoundError("Pipeline stage not found", stage_id=str(stage_id))
            elif assignment_id is not None:
                await self._get_assignment(assignment_id)
                stage = await get_open_stage(self.store, assignment_id)
                if not stage:
                    raise NoActiveStageError(
                        "Assignment has no active pipeline stage", assignment_id=str(assignment_id)
                    )
            else:
                raise ValidationError("Either assignment_id or stage_id is required")

            activity = await insert_activity(
                self.store,
                stage.stage_id,
                activity_type.value,
                description,
                outcome=outcome,
                scheduled_at=scheduled_at,
                completed_at=completed_at,
                created_by=created_by,
            )
        return activity

    # --- Views ---
    async def get_pipeline_detail(self, assignment_id: UUID, now: Optional[datetime] = None) -> PipelineDetail:
        assignment = await get_assignment_with_pipeline(self.store, assignment_id)
        if not assignment:
            raise NotFoundError("Assignment not found", assignment_id=str(assignment_id))
        now = now or utcnow()

        stages = []
        current = None
        for stage in assignment.pipeline_stages:
            detail = PipelineStageDetail(
                stage_id=stage.stage_id,
                assignment_id=stage.assignment_id,
                stage=stage.stage,
                entered_at=stage.entered_at,
                exited_at=stage.exited_at,
                duration_hours=stage_duration_hours(stage, now),
                probability=stage.probability,
                estimated_value=stage.estimated_value,
                next_action=stage.next_action,
                next_action_date=stage.next_action_date,
                notes=stage.notes,
                is_current=stage.exited_at is None,
                activities=[PipelineActivityOut.model_validate(a) for a in stage.stage_activities],
            )
            if detail.is_current:
                current = detail.stage
            stages.append(detail)

        return PipelineDetail(
            assignment=AssignmentOut.model_validate(assignment),
            lead=LeadOut.model_validate(assignment.lead),
            agent=AgentOut.model_validate(assignment.agent),
            current_stage=current,
            stages=stages,
        )

    async def upcoming_actions(self, agent_id: UUID, days: int = 7, now: Optional[datetime] = None) -> UpcomingActionsResponse:
        if not await get_agent_by_id(self.store, agent_id):
            raise NotFoundError("Agent not found", agent_id=str(agent_id))
        start = now or utcnow()
        stages = await get_upcoming_actions(self.store, agent_id, start, start + timedelta(days=days))
        return UpcomingActionsResponse(
            agent_id=agent_id,
            actions=[
                UpcomingAction(
                    stage_id=stage.stage_id,
                    assignment_id=stage.assignment_id,
                    stage=stage.stage,
                    next_action=stage.next_action,
                    next_action_date=stage.next_action_date,
                    probability=stage.probability,
                    estimated_value=stage.estimated_value,
                    lead_id=stage.assignment.lead.lead_id,
                    lead_name=stage.assignment.lead.full_name,
                    lead_email=stage.assignment.lead.email,
                    lead_phone=stage.assignment.lead.phone,
                )
                for stage in stages
            ],
        )
