import hashlib
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID

import pydantic
from pydantic import TypeAdapter
from redis.asyncio import Redis
from redis.exceptions import LockError

from leadflow.core.config import (
    DEFAULT_DISTRIBUTION_BATCH,
    DISTRIBUTION_LOCK_TIMEOUT,
    DISTRIBUTION_LOCK_WAIT,
)
from leadflow.core.exceptions import ConflictError, ValidationError
from leadflow.crud.agent import get_active_agents, get_workloads
from leadflow.crud.lead import get_leads_by_ids, get_unassigned_leads
from leadflow.crud.lead_assignment import get_existing_pairs
from leadflow.db.base_class import utcnow
from leadflow.db.store import Store
from leadflow.models.agent import Agent
from leadflow.models.enums import AssignmentPriority
from leadflow.models.lead import Lead
from leadflow.schemas.distribution import (
    AssignmentDecision,
    DistributionResult,
    DistributionRule,
    DistributionStats,
    LeadAgentPair,
    LoadBalancedRule,
    TerritoryBasedRule,
)
from leadflow.services.lead_assignment import AssignmentStore
from leadflow.services.lead_scoring import LeadScoringEngine

logger = logging.getLogger(__name__)

_rule_adapter = TypeAdapter(DistributionRule)


class RedisDistributionLock:
    """
    Serialises distributions over the same agent set across workers.

    Key: lock:distribution:<sha1 of the sorted agent ids>. Failing to get the
    lock within `wait` seconds raises ConflictError.
    """

    def __init__(self, redis: Redis, agent_ids: Sequence[UUID], timeout: float = None, wait: float = None):
        digest = hashlib.sha1(",".join(sorted(str(i) for i in agent_ids)).encode()).hexdigest()
        self.key = f"lock:distribution:{digest}"
        self._lock = redis.lock(
            self.key,
            timeout=timeout if timeout is not None else DISTRIBUTION_LOCK_TIMEOUT,
            blocking_timeout=wait if wait is not None else DISTRIBUTION_LOCK_WAIT,
        )

    async def __aenter__(self):
        if not await self._lock.acquire():
            raise ConflictError("Another distribution for these agents is in progress", lock=self.key)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            await self._lock.release()
        except LockError:
            logger.warning("Distribution lock %s expired before release", self.key)
        return False


class _AgentPool:
    """Eligible agents with their live workload, in caller order."""

    def __init__(self, agents: Sequence[Agent], workloads: Dict[UUID, int], cap: Optional[int]):
        self.order = [a.agent_id for a in agents]
        self.rank = {agent_id: i for i, agent_id in enumerate(self.order)}
        self.load = {agent_id: workloads.get(agent_id, 0) for agent_id in self.order}
        self.cap = cap
        self._cursor = 0

    def has_capacity(self, agent_id: UUID) -> bool:
        return self.cap is None or self.load[agent_id] < self.cap

    def open_agents(self) -> List[UUID]:
        return [agent_id for agent_id in self.order if self.has_capacity(agent_id)]

    def least_loaded(self, candidates: Sequence[UUID]) -> Optional[UUID]:
        if not candidates:
            return None
        return min(candidates, key=lambda agent_id: (self.load[agent_id], self.rank[agent_id]))

    def next_in_rotation(self, allowed: Set[UUID]) -> Optional[UUID]:
        for step in range(len(self.order)):
            agent_id = self.order[(self._cursor + step) % len(self.order)]
            if agent_id in allowed:
                self._cursor = (self._cursor + step + 1) % len(self.order)
                return agent_id
        return None

    def record(self, agent_id: UUID) -> None:
        self.load[agent_id] += 1

    def release(self, agent_id: UUID) -> None:
        self.load[agent_id] -= 1


class LeadDistributionEngine:
    """
        Routes leads to agents under a distribution rule.

        Rules:
        - ROUND_ROBIN: agents in caller order, one lead each per pass.
        - LOAD_BALANCED: fewest ACTIVE assignments first, ties by caller order.
        - TERRITORY_BASED: first territory key found in the lead's preferred
          areas whose agents still have room; least loaded of those. Falls back
          to LOAD_BALANCED when no territory resolves.
        - SCORE_PRIORITIZED: highest scores first, then LOAD_BALANCED.

        Shared constraints: max_leads_per_manager caps an agent's ACTIVE
        workload, min_lead_score filters leads, prioritize_high_scorers orders
        leads by score, respect_working_hours rejects calls outside the window.

        Existing (lead, agent) pairs are skipped and reported, never errors.
        A run that assigns nothing says why in `reason`.
    """

    def __init__(self, store: Store, redis: Redis):
        self.store = store
        self.redis = redis
        self.assignments = AssignmentStore(store)

    def _parse_rule(self, rule) -> DistributionRule:
        if isinstance(rule, pydantic.BaseModel):
            return rule
        try:
            return _rule_adapter.validate_python(rule)
        except pydantic.ValidationError as e:
            raise ValidationError("Invalid distribution rule", errors=e.errors(include_url=False)) from e

    def _check_working_hours(self, rule, now: datetime) -> None:
        if not rule.respect_working_hours:
            return
        if rule.working_hours is None:
            raise ValidationError("respect_working_hours requires working_hours")
        if not rule.working_hours.contains(now.time()):
            raise ValidationError(
                "Distribution requested outside working hours",
                now=now.time().isoformat(),
                start=rule.working_hours.start.isoformat(),
                end=rule.working_hours.end.isoformat(),
            )

    async def distribute(
        self,
        rule,
        agent_ids: Sequence[UUID],
        lead_ids: Optional[Sequence[UUID]] = None,
        priority: AssignmentPriority = AssignmentPriority.NORMAL,
        notes: Optional[str] = None,
        expected_close_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> DistributionResult:
        rule = self._parse_rule(rule)
        agent_ids = list(dict.fromkeys(agent_ids or []))
        if not agent_ids:
            raise ValidationError("At least one agent is required")
        self._check_working_hours(rule, now or utcnow())

        async with RedisDistributionLock(self.redis, agent_ids):
            async with self.store.transaction():
                result = await self._distribute(
                    rule, agent_ids, lead_ids, priority, notes, expected_close_date,
                )

        logger.info(
            "Distribution %s over %d agent(s): %s, %d assigned%s",
            rule.type,
            len(agent_ids),
            result.outcome,
            result.stats.total_assigned,
            f" ({result.reason})" if result.reason else "",
        )
        return result

    async def _distribute(self, rule, agent_ids, lead_ids, priority, notes, expected_close_date) -> DistributionResult:
        stats = DistributionStats(distribution_method=rule.type)
        cap = rule.max_leads_per_manager

        def nothing(reason: str) -> DistributionResult:
            return DistributionResult(outcome="NO_ASSIGNMENTS_POSSIBLE", reason=reason, stats=stats)

        # --- Agents ---
        active = {a.agent_id: a for a in await get_active_agents(self.store, agent_ids)}
        agents = [active[i] for i in agent_ids if i in active]
        stats.ineligible_agents = [i for i in agent_ids if i not in active]
        if not agents:
            return nothing("no_eligible_agents")
        pool = _AgentPool(agents, await get_workloads(self.store, [a.agent_id for a in agents]), cap)

        # --- Leads ---
        if lead_ids is not None:
            wanted = list(dict.fromkeys(lead_ids))
            found = {lead.lead_id: lead for lead in await get_leads_by_ids(self.store, wanted)}
            leads = [found[i] for i in wanted if i in found]
            stats.not_found = [i for i in wanted if i not in found]
        else:
            limit = cap * len(agents) if cap else DEFAULT_DISTRIBUTION_BATCH
            leads = await get_unassigned_leads(self.store, limit)
        stats.total_leads = len(leads)
        if not leads:
            return nothing("no_candidate_leads")

        if rule.min_lead_score is not None:
            stats.below_min_score = [lead.lead_id for lead in leads if lead.score < rule.min_lead_score]
            leads = [lead for lead in leads if lead.score >= rule.min_lead_score]
        if not leads:
            return nothing("all_filtered")

        if rule.prioritize_high_scorers or rule.type == "SCORE_PRIORITIZED":
            leads = sorted(leads, key=lambda lead: lead.score, reverse=True)

        # --- Assign ---
        existing = await get_existing_pairs(self.store, [lead.lead_id for lead in leads], pool.order)
        decisions: List[AssignmentDecision] = []
        short_of_capacity = False

        for lead in leads:
            open_agents = pool.open_agents()
            if not open_agents:
                short_of_capacity = True
                stats.unassigned.append(lead.lead_id)
                continue

            paired = [a for a in pool.order if (lead.lead_id, a) in existing]
            stats.duplicates.extend(LeadAgentPair(lead_id=lead.lead_id, agent_id=a) for a in paired)
            allowed = [a for a in open_agents if (lead.lead_id, a) not in existing]
            if not allowed:
                stats.unassigned.append(lead.lead_id)
                continue

            agent_id, reason = self._choose(rule, lead, allowed, pool)
            pool.record(agent_id)
            created = await self.assignments.insert_unless_duplicate(
                lead.lead_id,
                agent_id,
                priority,
                notes=notes,
                reason=reason,
                expected_close_date=expected_close_date,
            )
            if created is None:
                pool.release(agent_id)
                stats.duplicates.append(LeadAgentPair(lead_id=lead.lead_id, agent_id=agent_id))
                stats.unassigned.append(lead.lead_id)
                continue

            existing.add((lead.lead_id, agent_id))
            decisions.append(AssignmentDecision(
                lead_id=lead.lead_id,
                agent_id=agent_id,
                reason=reason,
                assignment_id=created.assignment_id,
            ))

        stats.total_assigned = len(decisions)
        stats.agents_at_capacity = [a for a in pool.order if not pool.has_capacity(a)]
        if not decisions:
            return nothing("capacity_exhausted" if short_of_capacity else "all_filtered")
        return DistributionResult(outcome="ASSIGNED", assignments=decisions, stats=stats)

    def _choose(self, rule, lead: Lead, allowed: List[UUID], pool: _AgentPool) -> Tuple[UUID, str]:
        if rule.type == "ROUND_ROBIN":
            return pool.next_in_rotation(set(allowed)), "round_robin"

        if rule.type == "TERRITORY_BASED":
            territory, candidates = self._resolve_territory(rule, lead, allowed)
            if territory:
                return pool.least_loaded(candidates), f"territory:{territory}"
            return pool.least_loaded(allowed), "territory_fallback_load_balanced"

        if rule.type == "SCORE_PRIORITIZED":
            return pool.least_loaded(allowed), f"score_prioritized:{lead.score}"

        return pool.least_loaded(allowed), "load_balanced"

    @staticmethod
    def _resolve_territory(rule: TerritoryBasedRule, lead: Lead, allowed: List[UUID]) -> Tuple[Optional[str], List[UUID]]:
        areas = [area.lower() for area in (lead.preferred_areas or []) if isinstance(area, str)]
        for territory, territory_agents in rule.territory_mapping.items():
            if not any(territory.lower() in area for area in areas):
                continue
            candidates = [a for a in allowed if a in set(territory_agents)]
            if candidates:
                return territory, candidates
        return None, []

    # --- Entry points ---
    async def distribute_single(
        self,
        lead_id: UUID,
        agent_ids: Optional[Sequence[UUID]] = None,
        rule=None,
        priority: AssignmentPriority = AssignmentPriority.NORMAL,
        notes: Optional[str] = None,
    ) -> DistributionResult:
        rule = rule or LoadBalancedRule()
        if agent_ids is None:
            agent_ids = [a.agent_id for a in await get_active_agents(self.store)]
            if not agent_ids:
                return DistributionResult(
                    outcome="NO_ASSIGNMENTS_POSSIBLE",
                    reason="no_eligible_agents",
                    stats=DistributionStats(distribution_method=self._parse_rule(rule).type),
                )
        return await self.distribute(rule, agent_ids, lead_ids=[lead_id], priority=priority, notes=notes)

    async def upload_lead(
        self,
        full_name: str,
        email: str,
        phone: Optional[str] = None,
        preferred_areas: Optional[List[str]] = None,
        agent_ids: Optional[Sequence[UUID]] = None,
    ) -> Tuple[Lead, DistributionResult]:
        lead = await LeadScoringEngine(self.store).create_lead(full_name, email, phone, preferred_areas)
        result = await self.distribute_single(lead.lead_id, agent_ids)
        return lead, result
