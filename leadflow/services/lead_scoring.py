import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from leadflow.core.config import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from leadflow.core.exceptions import ConflictError, LeadFlowError, NotFoundError, ValidationError
from leadflow.crud.lead import (
    create_lead,
    get_active_lead_ids,
    get_lead_by_email,
    get_lead_by_id,
    has_active_assignment,
    list_leads,
    update_lead_scoring,
)
from leadflow.crud.lead_activities import create_activity, get_activities_by_lead
from leadflow.db.base_class import utcnow
from leadflow.db.store import Store
from leadflow.models.enums import ActivityType, LeadGrade
from leadflow.models.lead import Lead
from leadflow.models.lead_activities import LeadActivity
from leadflow.schemas.common import ItemFailure
from leadflow.schemas.lead import BulkRecalculateResponse, ScoreResult

logger = logging.getLogger(__name__)


WEIGHTS: Dict[str, int] = {
    ActivityType.PROPERTY_INQUIRY.value: 15,
    ActivityType.CONTACT_FORM.value: 20,
    ActivityType.PHONE_CALL_MADE.value: 25,
    ActivityType.FAVORITE_ADDED.value: 5,
    ActivityType.PROPERTY_VIEW.value: 2,
    ActivityType.SEARCH_PERFORMED.value: 1,
    ActivityType.RETURN_VISIT.value: 3,
    ActivityType.EMAIL_OPENED.value: 3,
    ActivityType.BROCHURE_DOWNLOADED.value: 8,
}

# Lower bounds, checked highest first
GRADE_THRESHOLDS: List[Tuple[int, LeadGrade]] = [
    (81, LeadGrade.QUALIFIED),
    (61, LeadGrade.HOT),
    (31, LeadGrade.WARM),
    (0, LeadGrade.COLD),
]

_SERIOUS_INTENT = {ActivityType.PROPERTY_INQUIRY.value, ActivityType.CONTACT_FORM.value}
_PRICED = {ActivityType.PROPERTY_VIEW.value, ActivityType.PROPERTY_INQUIRY.value}


def grade_for(score: int) -> LeadGrade:
    """Bucket a score into a grade. Monotonic in `score`."""
    if score < 0:
        raise ValidationError("Score cannot be negative", score=score)
    for lower_bound, grade in GRADE_THRESHOLDS:
        if score >= lower_bound:
            return grade
    return LeadGrade.COLD


def _price(metadata: Optional[dict]) -> Optional[Decimal]:
    if not metadata or isinstance(metadata.get("price"), bool):
        return None
    raw = metadata.get("price")
    if raw is None:
        return None
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        return None
    return value if value.is_finite() and value >= 0 else None


def _merge_areas(existing: Sequence[str], activities: Sequence[LeadActivity]) -> List[str]:
    areas = list(existing or [])
    seen = {area.lower() for area in areas}
    for activity in activities:
        if activity.activity_type != ActivityType.SEARCH_PERFORMED.value:
            continue
        location = (activity.event_metadata or {}).get("location")
        if isinstance(location, str) and location.strip() and location.strip().lower() not in seen:
            areas.append(location.strip())
            seen.add(location.strip().lower())
    return areas


class LeadScoringEngine:
    """
        Engine for scoring leads from their behavioural history.

        Responsibilities:
        1. Activity capture (`record_activity`):
        - Appends an immutable activity to the lead's ledger.
        - Recomputes the lead's score right away unless told not to.

        2. Scoring (`recalculate_score`):
        - Sums fixed weights over the full history (no cap, no decay).
        - Buckets the score into COLD / WARM / HOT / QUALIFIED.
        - Derives serious-buyer flag, budget estimate and preferred areas.
        - Idempotent: recalculating without new activity changes nothing.

        3. Batch work (`bulk_recalculate`):
        - Recomputes many leads, each in its own savepoint, and reports
          per-lead failures next to the successes.

        4. Lead lifecycle (`create_lead`, `delete_lead`, `list_leads`).
    """

    def __init__(self, store: Store):
        self.store = store

    # --- Lead lifecycle ---
    async def create_lead(
        self,
        full_name: str,
        email: str,
        phone: Optional[str] = None,
        preferred_areas: Optional[List[str]] = None,
    ) -> Lead:
        email = email.strip().lower()
        async with self.store.transaction():
            if await get_lead_by_email(self.store, email):
                raise ConflictError("Lead with this email already exists", email=email)
            try:
                async with self.store.transaction():
                    lead = await create_lead(self.store, {
                        "full_name": full_name,
                        "email": email,
                        "phone": phone,
                        "preferred_areas": list(preferred_areas or []),
                    })
            except IntegrityError as e:
                raise ConflictError("Lead with this email already exists", email=email) from e
        logger.info("Created lead %s", lead.lead_id)
        return lead

    async def get_lead(self, lead_id: UUID) -> Lead:
        lead = await get_lead_by_id(self.store, lead_id)
        if not lead:
            raise NotFoundError("Lead not found", lead_id=str(lead_id))
        return lead

    async def delete_lead(self, lead_id: UUID) -> None:
        async with self.store.transaction():
            lead = await self.get_lead(lead_id)
            if await has_active_assignment(self.store, lead_id):
                raise ConflictError("Lead has an active assignment", lead_id=str(lead_id))
            await self.store.delete(lead)
        logger.info("Deleted lead %s", lead_id)

    async def list_leads(
        self,
        grade: Optional[LeadGrade] = None,
        min_score: Optional[int] = None,
        max_score: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Lead]:
        if not limit or limit < 1:
            limit = DEFAULT_LIST_LIMIT
        limit = min(limit, MAX_LIST_LIMIT)

        if min_score is not None:
            min_score = max(0, min_score)
        if max_score is not None:
            max_score = max(0, max_score)
        if min_score is not None and max_score is not None and min_score > max_score:
            min_score, max_score = max_score, min_score

        grade_value = LeadGrade(grade).value if grade else None
        return await list_leads(self.store, limit, grade_value, min_score, max_score)

    # --- Activity capture ---
    async def record_activity(
        self,
        lead_id: UUID,
        activity_type: ActivityType,
        property_id: Optional[UUID] = None,
        metadata: Optional[Dict[str, Any]] = None,
        recalculate: bool = True,
    ) -> Tuple[LeadActivity, Optional[ScoreResult]]:
        try:
            activity_type = ActivityType(activity_type)
        except ValueError as e:
            raise ValidationError(f"Unknown activity type: {activity_type}") from e

        score = None
        async with self.store.transaction():
            lead = await self.get_lead(lead_id)
            activity = await create_activity(
                self.store,
                lead_id=lead.lead_id,
                activity_type=activity_type.value,
                points=WEIGHTS[activity_type.value],
                property_id=property_id,
                metadata=metadata,
            )
            if recalculate:
                score = await self._recalculate(lead)
        return activity, score

    # --- Scoring ---
    async def recalculate_score(self, lead_id: UUID) -> ScoreResult:
        async with self.store.transaction():
            lead = await self.get_lead(lead_id)
            return await self._recalculate(lead)

    async def _recalculate(self, lead: Lead) -> ScoreResult:
        activities = await get_activities_by_lead(self.store, lead.lead_id)

        score = sum(WEIGHTS.get(a.activity_type, 0) for a in activities)
        grade = grade_for(score)
        last_activity = max((a.created_at for a in activities), default=None)

        serious = score >= 31 and any(a.activity_type in _SERIOUS_INTENT for a in activities)

        prices = [p for p in (_price(a.event_metadata) for a in activities if a.activity_type in _PRICED) if p is not None]
        budget = None
        if prices:
            budget = (sum(prices) / len(prices)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

        areas = _merge_areas(lead.preferred_areas, activities)

        await update_lead_scoring(self.store, lead.lead_id, {
            "score": score,
            "grade": grade.value,
            "last_activity": last_activity,
            "serious_buyer_indicator": serious,
            "budget_estimate": budget,
            "preferred_areas": areas,
            "last_calculated": utcnow(),
        })

        return ScoreResult(
            lead_id=lead.lead_id,
            score=score,
            grade=grade,
            last_activity=last_activity,
            serious_buyer_indicator=serious,
            budget_estimate=budget,
        )

    async def bulk_recalculate(self, lead_ids: Optional[Sequence[UUID]] = None) -> BulkRecalculateResponse:
        if lead_ids is None:
            lead_ids = await get_active_lead_ids(self.store)

        recalculated: List[ScoreResult] = []
        failures: List[ItemFailure] = []
        async with self.store.transaction():
            for lead_id in lead_ids:
                try:
                    async with self.store.transaction():
                        lead = await self.get_lead(lead_id)
                        recalculated.append(await self._recalculate(lead))
                except LeadFlowError as e:
                    logger.warning("Recalculation failed for lead %s: %s", lead_id, e.message)
                    failures.append(ItemFailure(id=lead_id, error=e.message))

        logger.info("Bulk recalculation: %d updated, %d failed", len(recalculated), len(failures))
        return BulkRecalculateResponse(recalculated=recalculated, failures=failures)
