# leadflow/crud/pipeline.py
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from leadflow.db.store import Store
from leadflow.models import LeadAssignment, PipelineActivity, PipelineStage


async def get_open_stage(store: Store, assignment_id: UUID) -> Optional[PipelineStage]:
    stmt = (
        select(PipelineStage)
        .where(PipelineStage.assignment_id == assignment_id, PipelineStage.exited_at.is_(None))
        .order_by(PipelineStage.entered_at.desc())
        .limit(1)
    )
    result = await store.execute(stmt)
    return result.scalar_one_or_none()


async def get_stage(store: Store, stage_id: UUID) -> Optional[PipelineStage]:
    return await store.get(PipelineStage, stage_id)


async def insert_stage(store: Store, assignment_id: UUID, stage: str, entered_at: datetime, **fields) -> PipelineStage:
    row = PipelineStage(assignment_id=assignment_id, stage=stage, entered_at=entered_at, **fields)
    return await store.create(row)


# --- Compare-and-swap close: succeeds only while the stage is still open ---
async def close_stage(store: Store, stage_id: UUID, exited_at: datetime, duration_hours: int) -> int:
    return await store.update_atomic(
        PipelineStage,
        [PipelineStage.stage_id == stage_id, PipelineStage.exited_at.is_(None)],
        {"exited_at": exited_at, "duration_hours": duration_hours},
    )


async def update_open_stage(store: Store, stage_id: UUID, values: dict) -> int:
    return await store.update_atomic(
        PipelineStage,
        [PipelineStage.stage_id == stage_id, PipelineStage.exited_at.is_(None)],
        values,
    )


async def insert_activity(store: Store, stage_id: UUID, activity_type: str, description: str, **fields) -> PipelineActivity:
    row = PipelineActivity(stage_id=stage_id, activity_type=activity_type, description=description, **fields)
    return await store.create(row)


# --- Pipeline detail: assignment + lead + agent + stages + stage activities ---
async def get_assignment_with_pipeline(store: Store, assignment_id: UUID) -> Optional[LeadAssignment]:
    stmt = (
        select(LeadAssignment)
        .where(LeadAssignment.assignment_id == assignment_id)
        .options(
            selectinload(LeadAssignment.lead),
            selectinload(LeadAssignment.agent),
            selectinload(LeadAssignment.pipeline_stages).selectinload(PipelineStage.stage_activities),
        )
        .execution_options(populate_existing=True)
    )
    result = await store.execute(stmt)
    return result.scalar_one_or_none()


async def get_stages_for_agent(store: Store, agent_id: UUID, assigned_since: datetime) -> List[PipelineStage]:
    stmt = (
        select(PipelineStage)
        .join(LeadAssignment, LeadAssignment.assignment_id == PipelineStage.assignment_id)
        .where(LeadAssignment.agent_id == agent_id, LeadAssignment.assigned_at >= assigned_since)
        .order_by(PipelineStage.entered_at.asc())
    )
    return await store.scalars(stmt)


async def get_upcoming_actions(store: Store, agent_id: UUID, start: datetime, end: datetime) -> List[PipelineStage]:
    stmt = (
        select(PipelineStage)
        .join(LeadAssignment, LeadAssignment.assignment_id == PipelineStage.assignment_id)
        .where(
            LeadAssignment.agent_id == agent_id,
            PipelineStage.exited_at.is_(None),
            PipelineStage.next_action_date >= start,
            PipelineStage.next_action_date <= end,
        )
        .options(selectinload(PipelineStage.assignment).selectinload(LeadAssignment.lead))
        .order_by(PipelineStage.next_action_date.asc())
        .execution_options(populate_existing=True)
    )
    return await store.scalars(stmt)
