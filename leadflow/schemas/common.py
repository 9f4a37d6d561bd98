from typing import Annotated, Optional
from uuid import UUID
from datetime import datetime, timezone

from pydantic import AfterValidator, BaseModel, BeforeValidator

from leadflow.models.enums import AssignmentPriority


def normalize_priority(value):
    # Older callers send NORMAL/MEDIUM interchangeably; MEDIUM is stored as NORMAL
    if isinstance(value, str):
        value = value.strip().upper()
        if value == "MEDIUM":
            return AssignmentPriority.NORMAL.value
    return value


Priority = Annotated[AssignmentPriority, BeforeValidator(normalize_priority)]


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Columns hold naive UTC
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_naive_utc)]


class ItemFailure(BaseModel):
    id: UUID
    error: str


class Message(BaseModel):
    success: bool = True
    detail: Optional[str] = None
