from fastapi import APIRouter, Depends, HTTPException, Query
from redis.asyncio import Redis
from typing import List
from uuid import UUID
import logging
import traceback

from leadflow.core.exceptions import LeadFlowError
from leadflow.schemas.common import Message
from leadflow.schemas.distribution import DistributeRequest, DistributionResult, LeadUploadResponse
from leadflow.schemas.lead import (
    ActivityCreateRequest,
    ActivityOut,
    ActivityRecordedResponse,
    BulkRecalculateRequest,
    BulkRecalculateResponse,
    LeadCreateRequest,
    LeadListParams,
    LeadOut,
    LeadUploadRequest,
    ScoreResult,
)
from leadflow.db.store import Store, get_store
from leadflow.db.redis_client import get_redis
from leadflow.services.lead_distribution import LeadDistributionEngine
from leadflow.services.lead_scoring import LeadScoringEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/leads", tags=["Leads"])


@router.post(
    "",
    response_model=LeadOut,
    status_code=201,
    summary="Create a lead",
)
async def create_lead(
    request: LeadCreateRequest,
    store: Store = Depends(get_store),
):
    try:
        return await LeadScoringEngine(store).create_lead(
            request.full_name, request.email, request.phone, request.preferred_areas
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in create_lead: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/upload",
    response_model=LeadUploadResponse,
    status_code=201,
    summary="Create a lead and distribute it",
    description="Creates the lead, then assigns it to the least loaded of the given (or all ACTIVE) agents.",
)
async def upload_lead(
    request: LeadUploadRequest,
    store: Store = Depends(get_store),
    redis: Redis = Depends(get_redis),
):
    try:
        lead, result = await LeadDistributionEngine(store, redis).upload_lead(
            request.full_name, request.email, request.phone, request.preferred_areas, request.agent_ids
        )
        return LeadUploadResponse(lead=LeadOut.model_validate(lead), distribution=result)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in upload_lead: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get(
    "",
    response_model=List[LeadOut],
    summary="List leads by grade and score",
)
async def list_leads(
    params: LeadListParams = Depends(),
    store: Store = Depends(get_store),
):
    try:
        return await LeadScoringEngine(store).list_leads(
            params.grade, params.min_score, params.max_score, params.limit
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in list_leads: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.delete(
    "/{lead_id}",
    response_model=Message,
    summary="Delete a lead without active assignments",
)
async def delete_lead(
    lead_id: UUID,
    store: Store = Depends(get_store),
):
    try:
        await LeadScoringEngine(store).delete_lead(lead_id)
        return Message(detail="Lead deleted")
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in delete_lead: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/{lead_id}/activities",
    response_model=ActivityRecordedResponse,
    status_code=201,
    summary="Record a behavioural activity",
)
async def record_activity(
    lead_id: UUID,
    request: ActivityCreateRequest,
    recalculate: bool = Query(True, description="Recompute the score after recording"),
    store: Store = Depends(get_store),
):
    try:
        activity, score = await LeadScoringEngine(store).record_activity(
            lead_id, request.activity_type, request.property_id, request.metadata, recalculate
        )
        return ActivityRecordedResponse(activity=ActivityOut.model_validate(activity), score=score)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in record_activity: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/recalculate",
    response_model=BulkRecalculateResponse,
    summary="Recalculate scores for many leads",
    description="Recalculates the given leads, or every ACTIVE lead when none are given.",
)
async def bulk_recalculate(
    request: BulkRecalculateRequest,
    store: Store = Depends(get_store),
):
    try:
        return await LeadScoringEngine(store).bulk_recalculate(request.lead_ids)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in bulk_recalculate: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/{lead_id}/recalculate",
    response_model=ScoreResult,
    summary="Recalculate one lead's score",
)
async def recalculate_score(
    lead_id: UUID,
    store: Store = Depends(get_store),
):
    try:
        return await LeadScoringEngine(store).recalculate_score(lead_id)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in recalculate_score: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/distribute",
    response_model=DistributionResult,
    summary="Distribute leads to agents",
    description="Assigns the given leads (or the unassigned pool) to the given agents under a distribution rule.",
)
async def distribute_leads(
    request: DistributeRequest,
    store: Store = Depends(get_store),
    redis: Redis = Depends(get_redis),
):
    try:
        return await LeadDistributionEngine(store, redis).distribute(
            request.rule,
            request.agent_ids,
            lead_ids=request.lead_ids,
            priority=request.priority,
            notes=request.notes,
            expected_close_date=request.expected_close_date,
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in distribute_leads: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")
