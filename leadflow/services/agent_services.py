import json
import logging
import math
from collections import defaultdict
from datetime import timedelta
from typing import Dict, List
from uuid import UUID

from redis.asyncio import Redis

from leadflow.core.config import METRICS_CACHE_TTL
from leadflow.core.exceptions import NotFoundError
from leadflow.crud.agent import get_agent_by_id
from leadflow.crud.pipeline import get_stages_for_agent
from leadflow.db.base_class import utcnow
from leadflow.db.store import Store
from leadflow.models.enums import PipelineStageName
from leadflow.models.pipeline import PipelineStage
from leadflow.schemas.agent import AgentPerformanceParams, AgentPerformanceResponse

logger = logging.getLogger(__name__)

_WON = PipelineStageName.WON.value
_LOST = PipelineStageName.LOST.value
_NEW = PipelineStageName.NEW.value


def _value(stage: PipelineStage) -> float:
    return float(stage.estimated_value) if stage.estimated_value is not None else 0.0


def _average_cycle_days(stages: List[PipelineStage]) -> float:
    entered_new = {s.assignment_id: s.entered_at for s in stages if s.stage == _NEW}
    cycles = []
    for won in (s for s in stages if s.stage == _WON):
        started = entered_new.get(won.assignment_id)
        if started is None:
            continue
        days = math.ceil((won.entered_at - started).total_seconds() / 86400)
        if days > 0:
            cycles.append(days)
    return sum(cycles) / len(cycles) if cycles else 0.0


class AgentServices:
    """
        Performance views over an agent's pipeline.

        get_agent_performance(agent_id, params, store, redis):
            Open pipeline value (raw and probability-weighted), average deal
            size, win rate, average cycle time NEW -> WON in days, stage
            distribution and average hours spent per stage, for assignments
            made in the last `timeframe_days`. Cached in Redis per agent and
            timeframe.
    """

    @staticmethod
    async def get_agent_performance(
        agent_id: UUID,
        params: AgentPerformanceParams,
        store: Store,
        redis: Redis,
    ) -> AgentPerformanceResponse:
        cache_key = f"agent_performance:{agent_id}:{params.timeframe_days}"

        # 1. --- Checking Redis cache ---
        cached = await redis.get(cache_key)
        if cached:
            return AgentPerformanceResponse(**json.loads(cached))

        if not await get_agent_by_id(store, agent_id):
            raise NotFoundError("Agent not found", agent_id=str(agent_id))

        since = utcnow() - timedelta(days=params.timeframe_days)
        stages = await get_stages_for_agent(store, agent_id, since)

        # 2. --- Pipeline value (open, non-terminal stages) ---
        open_stages = [s for s in stages if s.exited_at is None and s.stage not in (_WON, _LOST)]
        total_value = sum(_value(s) for s in open_stages)
        weighted_value = sum(_value(s) * (s.probability or 0) / 100 for s in open_stages)

        # 3. --- Outcomes ---
        won = [s for s in stages if s.stage == _WON]
        lost = [s for s in stages if s.stage == _LOST]
        average_deal_size = sum(_value(s) for s in won) / len(won) if won else 0.0
        closed = len(won) + len(lost)
        win_rate = len(won) / closed * 100 if closed else 0.0

        # 4. --- Distribution and velocity ---
        distribution: Dict[str, int] = defaultdict(int)
        hours: Dict[str, List[int]] = defaultdict(list)
        for stage in stages:
            distribution[stage.stage] += 1
            if stage.duration_hours:
                hours[stage.stage].append(stage.duration_hours)

        response_obj = AgentPerformanceResponse(
            agent_id=agent_id,
            timeframe_days=params.timeframe_days,
            total_value=round(total_value, 2),
            weighted_value=round(weighted_value, 2),
            average_deal_size=round(average_deal_size, 2),
            win_rate=round(win_rate, 2),
            average_cycle_time_days=round(_average_cycle_days(stages), 2),
            stage_distribution=dict(distribution),
            velocity_by_stage={stage: round(sum(v) / len(v), 2) for stage, v in hours.items()},
        )

        # Cache in Redis
        await redis.set(cache_key, response_obj.model_dump_json(), ex=METRICS_CACHE_TTL)
        logger.debug("Cached performance for agent %s (%d days)", agent_id, params.timeframe_days)

        return response_obj
