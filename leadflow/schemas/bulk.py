from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field
from uuid import UUID

from leadflow.models.enums import AssignmentStatus
from leadflow.schemas.common import ItemFailure, Priority, UtcDatetime


class _BulkBase(BaseModel):
    assignment_ids: List[UUID] = Field(..., min_length=1)


class BulkUpdateStatus(_BulkBase):
    action: Literal["update_status"]
    status: AssignmentStatus


class BulkUpdatePriority(_BulkBase):
    action: Literal["update_priority"]
    priority: Priority


class BulkReassign(_BulkBase):
    action: Literal["reassign"]
    new_agent_id: UUID
    priority: Optional[Priority] = None
    notes: Optional[str] = None
    expected_close_date: Optional[UtcDatetime] = None


class BulkDelete(_BulkBase):
    action: Literal["delete"]


BulkCommand = Annotated[
    Union[BulkUpdateStatus, BulkUpdatePriority, BulkReassign, BulkDelete],
    Field(discriminator="action"),
]


class BulkResult(BaseModel):
    action: str
    affected_count: int
    assignment_ids: List[UUID]
    failures: List[ItemFailure] = []
