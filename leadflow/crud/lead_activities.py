# leadflow/crud/lead_activities.py
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from leadflow.db.store import Store
from leadflow.models.lead_activities import LeadActivity


# Append an activity to the ledger
async def create_activity(
    store: Store,
    lead_id: UUID,
    activity_type: str,
    points: int,
    property_id: Optional[UUID] = None,
    metadata: Optional[dict] = None,
) -> LeadActivity:
    activity = LeadActivity(
        lead_id=lead_id,
        activity_type=activity_type,
        property_id=property_id,
        event_metadata=metadata,
        points=points,
    )
    return await store.create(activity)


# Full history of a lead, oldest first
async def get_activities_by_lead(store: Store, lead_id: UUID) -> List[LeadActivity]:
    stmt = (
        select(LeadActivity)
        .where(LeadActivity.lead_id == lead_id)
        .order_by(LeadActivity.created_at.asc())
    )
    return await store.scalars(stmt)
