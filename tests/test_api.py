import asyncio
import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.db.base_class import utcnow


async def _create_lead(client: AsyncClient, email: str, **extra) -> dict:
    response = await client.post("/api/v1/leads", json={"full_name": "Test Buyer", "email": email, **extra})
    assert response.status_code == 201, response.text
    return response.json()


async def _assign(client: AsyncClient, lead_id: str, agent_id, **extra) -> dict:
    response = await client.post(
        "/api/v1/assignments", json={"lead_id": lead_id, "agent_id": str(agent_id), **extra}
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200


async def test_create_lead_and_duplicate(client):
    lead = await _create_lead(client, "nadia@buyers.test", phone="+971501234567", preferred_areas=["JLT"])
    assert lead["grade"] == "COLD"
    assert lead["score"] == 0
    assert lead["preferred_areas"] == ["JLT"]

    duplicate = await client.post("/api/v1/leads", json={"full_name": "Nadia", "email": "nadia@buyers.test"})
    assert duplicate.status_code == 409

    invalid = await client.post("/api/v1/leads", json={"full_name": "Nadia", "email": "not-an-email"})
    assert invalid.status_code == 422


async def test_activity_scoring_flow(client):
    lead = await _create_lead(client, "karim@buyers.test")
    url = f"/api/v1/leads/{lead['lead_id']}/activities"

    for activity_type in ("PROPERTY_VIEW", "PROPERTY_VIEW"):
        response = await client.post(url, json={"activity_type": activity_type})
        assert response.status_code == 201
    response = await client.post(url, json={"activity_type": "CONTACT_FORM"})

    body = response.json()
    assert body["activity"]["points"] == 20
    assert body["score"]["score"] == 24
    assert body["score"]["grade"] == "COLD"

    recalculated = await client.post(f"/api/v1/leads/{lead['lead_id']}/recalculate")
    assert recalculated.json()["score"] == 24

    skipped = await client.post(url, params={"recalculate": "false"}, json={"activity_type": "PHONE_CALL_MADE"})
    assert skipped.json()["score"] is None


async def test_activity_for_unknown_lead(client):
    response = await client.post(f"/api/v1/leads/{uuid.uuid4()}/activities", json={"activity_type": "PROPERTY_VIEW"})
    assert response.status_code == 404


async def test_bulk_recalculate_endpoint(client):
    lead = await _create_lead(client, "lina@buyers.test")
    missing = str(uuid.uuid4())

    response = await client.post("/api/v1/leads/recalculate", json={"lead_ids": [lead["lead_id"], missing]})

    body = response.json()
    assert response.status_code == 200
    assert [r["lead_id"] for r in body["recalculated"]] == [lead["lead_id"]]
    assert [f["id"] for f in body["failures"]] == [missing]


async def test_list_leads_endpoint(client, make_lead):
    for score in (15, 45, 75, 95):
        await make_lead(score=score)

    response = await client.get("/api/v1/leads", params={"min_score": 90, "max_score": 40})
    assert [lead["score"] for lead in response.json()] == [75, 45]

    response = await client.get("/api/v1/leads", params={"grade": "HOT"})
    assert [lead["score"] for lead in response.json()] == [75]


async def test_distribute_endpoint(client, make_lead, make_agent):
    agents = [str((await make_agent()).agent_id), str((await make_agent()).agent_id)]
    for score in range(10):
        await make_lead(score=score)

    response = await client.post("/api/v1/leads/distribute", json={
        "rule": {"type": "LOAD_BALANCED", "max_leads_per_manager": 5},
        "agent_ids": agents,
        "priority": "MEDIUM",
    })

    body = response.json()
    assert response.status_code == 200, response.text
    assert body["outcome"] == "ASSIGNED"
    assert body["stats"]["total_assigned"] == 10
    per_agent = {agent: 0 for agent in agents}
    for decision in body["assignments"]:
        per_agent[decision["agent_id"]] += 1
    assert per_agent == {agents[0]: 5, agents[1]: 5}

    listed = await client.get("/api/v1/assignments", params={"agent_id": agents[0]})
    assert {a["priority"] for a in listed.json()} == {"NORMAL"}

    again = await client.post("/api/v1/leads/distribute", json={
        "rule": {"type": "LOAD_BALANCED"},
        "agent_ids": agents,
    })
    assert again.json()["outcome"] == "NO_ASSIGNMENTS_POSSIBLE"
    assert again.json()["reason"] == "no_candidate_leads"


async def test_distribute_rejects_bad_input(client, make_agent):
    agent = await make_agent()

    no_agents = await client.post("/api/v1/leads/distribute", json={"rule": {"type": "ROUND_ROBIN"}, "agent_ids": []})
    assert no_agents.status_code == 422

    no_mapping = await client.post("/api/v1/leads/distribute", json={
        "rule": {"type": "TERRITORY_BASED", "territory_mapping": {}},
        "agent_ids": [str(agent.agent_id)],
    })
    assert no_mapping.status_code == 422


async def test_upload_lead_assigns(client, make_agent):
    agent = await make_agent()

    response = await client.post("/api/v1/leads/upload", json={
        "full_name": "Ravi Buyer",
        "email": "ravi@buyers.test",
        "preferred_areas": ["Business Bay"],
    })

    body = response.json()
    assert response.status_code == 201, response.text
    assert body["lead"]["email"] == "ravi@buyers.test"
    assert body["distribution"]["assignments"][0]["agent_id"] == str(agent.agent_id)


async def test_assignment_endpoints(client, make_agent):
    agent = await make_agent()
    other = await make_agent()
    lead = await _create_lead(client, "dana@buyers.test")
    assignment = await _assign(client, lead["lead_id"], agent.agent_id, priority="HIGH")
    url = f"/api/v1/assignments/{assignment['assignment_id']}"

    duplicate = await client.post(
        "/api/v1/assignments", json={"lead_id": lead["lead_id"], "agent_id": str(agent.agent_id)}
    )
    assert duplicate.status_code == 409

    priority = await client.patch(f"{url}/priority", json={"priority": "MEDIUM"})
    assert priority.json()["priority"] == "NORMAL"

    blocked = await client.delete(f"/api/v1/leads/{lead['lead_id']}")
    assert blocked.status_code == 409

    completed = await client.patch(f"{url}/status", json={"status": "COMPLETED"})
    assert completed.json()["status"] == "COMPLETED"
    illegal = await client.patch(f"{url}/status", json={"status": "ACTIVE"})
    assert illegal.status_code == 409

    stats = await client.get("/api/v1/assignments/stats")
    assert stats.json()["status_stats"]["COMPLETED"] == 1

    moved = await client.post("/api/v1/assignments/reassign", json={
        "assignment_ids": [assignment["assignment_id"]],
        "new_agent_id": str(other.agent_id),
    })
    assert moved.status_code == 200
    new_id = moved.json()["reassigned"][assignment["assignment_id"]]

    deleted = await client.delete(f"/api/v1/assignments/{new_id}")
    assert deleted.json()["success"] is True
    missing = await client.delete(f"/api/v1/assignments/{new_id}")
    assert missing.status_code == 404


async def test_bulk_endpoint(client, make_agent):
    agent = await make_agent()
    ids = []
    for n in range(2):
        lead = await _create_lead(client, f"bulk{n}@buyers.test")
        ids.append((await _assign(client, lead["lead_id"], agent.agent_id))["assignment_id"])

    response = await client.post("/api/v1/assignments/bulk", json={
        "action": "update_status",
        "assignment_ids": ids,
        "status": "ON_HOLD",
    })
    assert response.json()["affected_count"] == 2

    invalid = await client.post("/api/v1/assignments/bulk", json={"action": "explode", "assignment_ids": ids})
    assert invalid.status_code == 400


async def test_pipeline_endpoints(client, make_agent):
    agent = await make_agent()
    lead = await _create_lead(client, "yusuf@buyers.test")
    assignment = await _assign(client, lead["lead_id"], agent.agent_id)
    assignment_id = assignment["assignment_id"]

    no_stage = await client.post(
        f"/api/v1/pipeline/{assignment_id}/activities", json={"activity_type": "CALL", "description": "Intro"}
    )
    assert no_stage.status_code == 409

    init = await client.post(
        "/api/v1/pipeline/initialize", json={"assignment_id": assignment_id, "agent_id": str(agent.agent_id)}
    )
    assert init.status_code == 201
    assert init.json()["stage"] == "NEW"

    moved = await client.post(f"/api/v1/pipeline/{assignment_id}/transition", json={
        "stage": "CONTACTED",
        "next_action": "Call back",
        "next_action_date": (utcnow() + timedelta(days=1)).isoformat(),
    })
    assert moved.json()["probability"] == 20

    logged = await client.post(
        f"/api/v1/pipeline/{assignment_id}/activities", json={"activity_type": "CALL", "description": "Intro"}
    )
    assert logged.json()["stage_id"] == moved.json()["stage_id"]

    on_old_stage = await client.post(
        f"/api/v1/pipeline/stages/{init.json()['stage_id']}/activities",
        json={"activity_type": "NOTE", "description": "Backfilled note"},
    )
    assert on_old_stage.status_code == 201

    detail = await client.get(f"/api/v1/pipeline/{assignment_id}")
    body = detail.json()
    assert body["current_stage"] == "CONTACTED"
    assert [s["stage"] for s in body["stages"]] == ["NEW", "CONTACTED"]
    assert body["stages"][0]["duration_hours"] is not None

    upcoming = await client.get(f"/api/v1/agents/{agent.agent_id}/upcoming-actions")
    assert [a["next_action"] for a in upcoming.json()["actions"]] == ["Call back"]

    won = await client.post(f"/api/v1/pipeline/{assignment_id}/transition", json={"stage": "WON"})
    assert won.status_code == 200
    reopened = await client.post(f"/api/v1/pipeline/{assignment_id}/transition", json={"stage": "CONTACTED"})
    assert reopened.status_code == 409


async def test_agent_performance_is_cached(client, redis, make_agent):
    agent = await make_agent()
    lead = await _create_lead(client, "maya@buyers.test")
    assignment = await _assign(client, lead["lead_id"], agent.agent_id)
    assignment_id = assignment["assignment_id"]
    await client.post(f"/api/v1/pipeline/{assignment_id}/transition", json={
        "stage": "NEGOTIATION", "estimated_value": "2000000",
    })

    response = await client.get(f"/api/v1/agents/{agent.agent_id}/performance", params={"timeframe_days": 30})

    body = response.json()
    assert response.status_code == 200, response.text
    assert body["total_value"] == 2_000_000
    assert body["weighted_value"] == 1_300_000
    assert body["stage_distribution"] == {"NEGOTIATION": 1}
    assert await redis.get(f"agent_performance:{agent.agent_id}:30") is not None

    unknown = await client.get(f"/api/v1/agents/{uuid.uuid4()}/performance")
    assert unknown.status_code == 404


@pytest.mark.parametrize("path", ["/api/v1/pipeline/{id}", "/api/v1/agents/{id}/upcoming-actions"])
async def test_unknown_ids_are_404(client, path):
    response = await client.get(path.format(id=uuid.uuid4()))
    assert response.status_code == 404


async def test_aware_close_date_is_stored_as_utc(client, make_agent):
    agent = await make_agent()
    lead = await _create_lead(client, "tariq@buyers.test")

    assignment = await _assign(client, lead["lead_id"], agent.agent_id, expected_close_date="2026-12-01T10:00:00+02:00")

    assert assignment["expected_close_date"] == "2026-12-01T08:00:00"


async def test_request_timeout_header(client, monkeypatch):
    async def slow_execute(self, *args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(AsyncSession, "execute", slow_execute)

    timed_out = await client.get("/api/v1/leads", headers={"X-Request-Timeout": "0.05"})
    assert timed_out.status_code == 504

    invalid = await client.get("/api/v1/leads", headers={"X-Request-Timeout": "0"})
    assert invalid.status_code == 422
