from fastapi import APIRouter, Body, Depends, HTTPException
from typing import Any, Dict, List
from uuid import UUID
import logging
import traceback

from leadflow.core.exceptions import LeadFlowError
from leadflow.schemas.assignment import (
    AssignmentCreateRequest,
    AssignmentListParams,
    AssignmentOut,
    AssignmentStats,
    PriorityUpdateRequest,
    ReassignRequest,
    ReassignResult,
    StatusUpdateRequest,
)
from leadflow.schemas.bulk import BulkResult
from leadflow.schemas.common import Message
from leadflow.db.store import Store, get_store
from leadflow.services.bulk_operations import BulkOperations
from leadflow.services.lead_assignment import AssignmentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/assignments", tags=["Assignments"])


@router.get("", response_model=List[AssignmentOut], summary="List assignments")
async def list_assignments(
    params: AssignmentListParams = Depends(),
    store: Store = Depends(get_store),
):
    try:
        return await AssignmentStore(store).list_assignments(
            params.agent_id, params.lead_id, params.status, params.limit, params.offset
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in list_assignments: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get(
    "/stats",
    response_model=AssignmentStats,
    summary="Assignment counts by status, priority and agent",
)
async def assignment_stats(store: Store = Depends(get_store)):
    try:
        return await AssignmentStore(store).workload_stats()
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in assignment_stats: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post("", response_model=AssignmentOut, status_code=201, summary="Assign a lead to an agent")
async def create_assignment(
    request: AssignmentCreateRequest,
    store: Store = Depends(get_store),
):
    try:
        return await AssignmentStore(store).create(
            request.lead_id,
            request.agent_id,
            request.priority,
            notes=request.notes,
            expected_close_date=request.expected_close_date,
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in create_assignment: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.patch("/{assignment_id}/status", response_model=AssignmentOut, summary="Change assignment status")
async def update_status(
    assignment_id: UUID,
    request: StatusUpdateRequest,
    store: Store = Depends(get_store),
):
    try:
        assignment, _ = await AssignmentStore(store).update_status(assignment_id, request.status)
        return assignment
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in update_status: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.patch("/{assignment_id}/priority", response_model=AssignmentOut, summary="Change assignment priority")
async def update_priority(
    assignment_id: UUID,
    request: PriorityUpdateRequest,
    store: Store = Depends(get_store),
):
    try:
        assignment, _ = await AssignmentStore(store).update_priority(assignment_id, request.priority)
        return assignment
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in update_priority: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/reassign",
    response_model=ReassignResult,
    summary="Move assignments to another agent",
    description="Replaces the given assignments with new ones for the same leads; all or nothing.",
)
async def reassign(
    request: ReassignRequest,
    store: Store = Depends(get_store),
):
    try:
        return await AssignmentStore(store).reassign(
            request.assignment_ids,
            request.new_agent_id,
            priority=request.priority,
            notes=request.notes,
            expected_close_date=request.expected_close_date,
        )
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in reassign: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post(
    "/bulk",
    response_model=BulkResult,
    summary="Run a bulk action",
    description="Body is tagged by `action`: update_status, update_priority, reassign or delete.",
)
async def bulk_action(
    command: Dict[str, Any] = Body(...),
    store: Store = Depends(get_store),
):
    try:
        return await BulkOperations(store).execute(command)
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in bulk_action: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.delete("/{assignment_id}", response_model=Message, summary="Delete an assignment")
async def delete_assignment(
    assignment_id: UUID,
    store: Store = Depends(get_store),
):
    try:
        await AssignmentStore(store).delete(assignment_id)
        return Message(detail="Assignment deleted")
    except LeadFlowError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Error in delete_assignment: %s\n%s", e, traceback.format_exc())
        raise HTTPException(status_code=500, detail="Internal Server Error")
