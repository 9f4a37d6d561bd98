from fastapi import APIRouter, Depends, HTTPException
from uuid import UUID
import logging
import traceback

from leadflow.core.exceptions import LeadFlowError
from leadflow.schemas.pipeline import (
    PipelineActivityCreate,
    PipelineActivityOut,
    PipelineDetail,
    PipelineInitRequest,
    PipelineStageOut,
    TransitionRequest,
)
from leadflow.db.store import Store, get_store
from leadflow.services.pipeline_tracker import PipelineTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/pipeline", tags=["Pipeline"])


@router.post(
    "/initialize",
    response_model=PipelineStageOut,
    status_code=201,
    summary="Open the pipeline for an assignment",
    description="Returns the current stage when the pipeline already exists.",
)
async def initialize_pipeline(
    request: PipelineInitRequest,
    store: Store = Depends(get_store),
):
    try:
        return await PipelineTracker(store).initialize_pipeline(request.assignment_id, request.agent_id)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in initialize_pipeline: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/{assignment_id}", response_model=PipelineDetail, summary="Stage history of an assignment")
async def get_pipeline(
    assignment_id: UUID,
    store: Store = Depends(get_store),
):
    try:
        return await PipelineTracker(store).get_pipeline_detail(assignment_id)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in get_pipeline: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post("/{assignment_id}/transition", response_model=PipelineStageOut, summary="Move to a stage")
async def transition(
    assignment_id: UUID,
    request: TransitionRequest,
    store: Store = Depends(get_store),
):
    try:
        return await PipelineTracker(store).transition(
            assignment_id,
            request.stage,
            probability=request.probability,
            estimated_value=request.estimated_value,
            next_action=request.next_action,
            next_action_date=request.next_action_date,
            notes=request.notes,
            agent_id=request.agent_id,
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in transition: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/{assignment_id}/activities",
    response_model=PipelineActivityOut,
    status_code=201,
    summary="Log an activity on the current stage",
)
async def add_activity(
    assignment_id: UUID,
    request: PipelineActivityCreate,
    store: Store = Depends(get_store),
):
    try:
        return await PipelineTracker(store).add_activity(
            request.activity_type,
            request.description,
            assignment_id=assignment_id,
            outcome=request.outcome,
            scheduled_at=request.scheduled_at,
            completed_at=request.completed_at,
            created_by=request.created_by,
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in add_activity: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/stages/{stage_id}/activities",
    response_model=PipelineActivityOut,
    status_code=201,
    summary="Log an activity on a specific stage",
)
async def add_stage_activity(
    stage_id: UUID,
    request: PipelineActivityCreate,
    store: Store = Depends(get_store),
):
    try:
        return await PipelineTracker(store).add_activity(
            request.activity_type,
            request.description,
            stage_id=stage_id,
            outcome=request.outcome,
            scheduled_at=request.scheduled_at,
            completed_at=request.completed_at,
            created_by=request.created_by,
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in add_stage_activity: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")
