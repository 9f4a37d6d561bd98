from fastapi import APIRouter, Depends, HTTPException
from redis.asyncio import Redis
from uuid import UUID
import logging
import traceback

from leadflow.core.exceptions import LeadFlowError
from leadflow.schemas.agent import (
    AgentPerformanceParams,
    AgentPerformanceResponse,
    UpcomingActionsParams,
    UpcomingActionsResponse,
)
from leadflow.db.store import Store, get_store
from leadflow.db.redis_client import get_redis
from leadflow.services.agent_services import AgentServices
from leadflow.services.pipeline_tracker import PipelineTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/agents", tags=["Agents"])


@router.get("/{agent_id}/performance", response_model=AgentPerformanceResponse)
async def get_agent_performance(
    agent_id: UUID,
    params: AgentPerformanceParams = Depends(),
    store: Store = Depends(get_store),
    redis: Redis = Depends(get_redis)
):
    try:
        return await AgentServices.get_agent_performance(agent_id, params, store, redis)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in get_agent_performance: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/{agent_id}/upcoming-actions", response_model=UpcomingActionsResponse)
async def get_upcoming_actions(
    agent_id: UUID,
    params: UpcomingActionsParams = Depends(),
    store: Store = Depends(get_store),
):
    try:
        return await PipelineTracker(store).upcoming_actions(agent_id, params.days)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in get_upcoming_actions: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")
