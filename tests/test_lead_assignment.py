import uuid
from datetime import datetime

import pytest
from sqlalchemy import func, select

from leadflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from leadflow.models import LeadAssignment
from leadflow.models.enums import AssignmentPriority, AssignmentStatus
from leadflow.schemas.assignment import AssignmentCreateRequest, PriorityUpdateRequest, ReassignRequest
from leadflow.schemas.bulk import BulkReassign
from leadflow.schemas.distribution import DistributeRequest
from leadflow.services.lead_assignment import ASSIGNMENT_TRANSITIONS, AssignmentStore, check_transition


async def _count(store, *where):
    return await store.scalar(select(func.count()).select_from(LeadAssignment).where(*where))


@pytest.mark.parametrize("current", list(AssignmentStatus))
@pytest.mark.parametrize("new", list(AssignmentStatus))
def test_transition_table_is_the_only_authority(current, new):
    if current == new:
        return
    if new in ASSIGNMENT_TRANSITIONS[current]:
        check_transition(current, new)
    else:
        with pytest.raises(ConflictError):
            check_transition(current, new)


def test_terminal_statuses_have_no_exits():
    assert ASSIGNMENT_TRANSITIONS[AssignmentStatus.COMPLETED] == frozenset()
    assert ASSIGNMENT_TRANSITIONS[AssignmentStatus.CANCELLED] == frozenset()


def test_medium_priority_maps_to_normal():
    assert PriorityUpdateRequest(priority="MEDIUM").priority == AssignmentPriority.NORMAL
    assert PriorityUpdateRequest(priority="high").priority == AssignmentPriority.HIGH


async def test_create_rejects_duplicate_pair(store, make_lead, make_agent):
    lead = await make_lead()
    agent = await make_agent()
    lead_id, agent_id = lead.lead_id, agent.agent_id
    assignments = AssignmentStore(store)

    created = await assignments.create(lead_id, agent_id, AssignmentPriority.HIGH, notes="hot referral")
    assert created.status == AssignmentStatus.ACTIVE.value
    assert created.priority == AssignmentPriority.HIGH.value

    with pytest.raises(ConflictError):
        await assignments.create(lead_id, agent_id)
    assert await _count(store) == 1


async def test_create_validates_lead_and_agent(store, make_lead, make_agent):
    lead = await make_lead()
    inactive = await make_agent(status="INACTIVE")
    lead_id, inactive_id = lead.lead_id, inactive.agent_id
    assignments = AssignmentStore(store)

    with pytest.raises(NotFoundError):
        await assignments.create(uuid.uuid4(), inactive_id)
    with pytest.raises(ValidationError):
        await assignments.create(lead_id, inactive_id)
    with pytest.raises(NotFoundError):
        await assignments.create(lead_id, uuid.uuid4())


async def test_status_machine(store, make_lead, make_agent):
    lead = await make_lead()
    agent = await make_agent()
    assignments = AssignmentStore(store)
    assignment_id = (await assignments.create(lead.lead_id, agent.agent_id)).assignment_id

    _, changed = await assignments.update_status(assignment_id, AssignmentStatus.ON_HOLD)
    assert changed
    _, changed = await assignments.update_status(assignment_id, AssignmentStatus.ON_HOLD)
    assert not changed
    await assignments.update_status(assignment_id, AssignmentStatus.ACTIVE)
    assignment, _ = await assignments.update_status(assignment_id, AssignmentStatus.COMPLETED)
    assert assignment.status == AssignmentStatus.COMPLETED.value

    with pytest.raises(ConflictError):
        await assignments.update_status(assignment_id, AssignmentStatus.ACTIVE)
    assert await _count(store, LeadAssignment.status == AssignmentStatus.COMPLETED.value) == 1


async def test_update_priority_reports_change(store, make_lead, make_agent):
    lead = await make_lead()
    agent = await make_agent()
    assignments = AssignmentStore(store)
    assignment_id = (await assignments.create(lead.lead_id, agent.agent_id)).assignment_id

    assignment, changed = await assignments.update_priority(assignment_id, AssignmentPriority.HIGH)
    assert changed
    assert assignment.priority == AssignmentPriority.HIGH.value

    _, changed = await assignments.update_priority(assignment_id, AssignmentPriority.HIGH)
    assert not changed


async def test_reassign_preserves_lead(store, make_lead, make_agent):
    lead = await make_lead()
    old_agent = await make_agent()
    new_agent = await make_agent()
    lead_id, new_agent_id = lead.lead_id, new_agent.agent_id
    assignments = AssignmentStore(store)
    old = await assignments.create(lead_id, old_agent.agent_id, AssignmentPriority.HIGH)
    old_id = old.assignment_id

    result = await assignments.reassign([old_id], new_agent_id)

    new_id = result.reassigned[old_id]
    assert new_id != old_id
    replacement = await assignments.get(new_id)
    assert replacement.lead_id == lead_id
    assert replacement.agent_id == new_agent_id
    assert replacement.status == AssignmentStatus.ACTIVE.value
    assert replacement.priority == AssignmentPriority.HIGH.value
    assert await _count(store, LeadAssignment.assignment_id == old_id) == 0


async def test_reassign_is_all_or_nothing(store, make_lead, make_agent):
    lead = await make_lead()
    old_agent = await make_agent()
    new_agent = await make_agent()
    old_agent_id, new_agent_id = old_agent.agent_id, new_agent.agent_id
    assignments = AssignmentStore(store)
    old_id = (await assignments.create(lead.lead_id, old_agent_id)).assignment_id

    with pytest.raises(NotFoundError):
        await assignments.reassign([old_id, uuid.uuid4()], new_agent_id)

    agent_ids = (await store.execute(select(LeadAssignment.agent_id))).scalars().all()
    assert agent_ids == [old_agent_id]


async def test_reassign_keeps_existing_pair(store, make_lead, make_agent):
    lead = await make_lead()
    first = await make_agent()
    second = await make_agent()
    lead_id = lead.lead_id
    assignments = AssignmentStore(store)
    old_id = (await assignments.create(lead_id, first.agent_id)).assignment_id
    kept_id = (await assignments.create(lead_id, second.agent_id)).assignment_id

    result = await assignments.reassign([old_id], second.agent_id)

    assert result.reassigned == {old_id: kept_id}
    assert result.duplicates == [lead_id]
    assert await _count(store) == 1


async def test_bulk_create_skips_duplicates(store, make_lead, make_agent):
    lead_a = await make_lead()
    lead_b = await make_lead()
    agent = await make_agent()
    assignments = AssignmentStore(store)
    await assignments.create(lead_a.lead_id, agent.agent_id)

    created, duplicates = await assignments.bulk_create(
        [(lead_a.lead_id, agent.agent_id), (lead_b.lead_id, agent.agent_id)], reason="import",
    )

    assert [a.lead_id for a in created] == [lead_b.lead_id]
    assert duplicates == [(lead_a.lead_id, agent.agent_id)]
    assert await _count(store) == 2


async def test_delete_unknown_assignment(store):
    with pytest.raises(NotFoundError):
        await AssignmentStore(store).delete(uuid.uuid4())


async def test_workload_stats_and_listing(store, make_lead, make_agent):
    busy = await make_agent()
    idle = await make_agent()
    assignments = AssignmentStore(store)
    ids = []
    for _ in range(3):
        lead = await make_lead()
        ids.append((await assignments.create(lead.lead_id, busy.agent_id)).assignment_id)
    await assignments.update_status(ids[0], AssignmentStatus.CANCELLED)
    await assignments.update_priority(ids[1], AssignmentPriority.LOW)

    stats = await assignments.workload_stats()

    assert stats.status_stats["ACTIVE"] == 2
    assert stats.status_stats["CANCELLED"] == 1
    assert stats.status_stats["ON_HOLD"] == 0
    assert stats.priority_stats == {"LOW": 1, "NORMAL": 2, "HIGH": 0}
    assert [(w.agent_id, w.active_assignments) for w in stats.agent_workload] == [(busy.agent_id, 2)]

    active = await assignments.list_assignments(agent_id=busy.agent_id, status=AssignmentStatus.ACTIVE)
    assert len(active) == 2
    assert await assignments.list_assignments(agent_id=idle.agent_id) == []


@pytest.mark.parametrize("finished", [AssignmentStatus.CANCELLED, AssignmentStatus.COMPLETED])
async def test_reassign_refuses_finished_pair(store, make_lead, make_agent, finished):
    lead = await make_lead()
    current = await make_agent()
    target = await make_agent()
    lead_id, current_id, target_id = lead.lead_id, current.agent_id, target.agent_id
    assignments = AssignmentStore(store)
    earlier_id = (await assignments.create(lead_id, target_id)).assignment_id
    await assignments.update_status(earlier_id, finished)
    active_id = (await assignments.create(lead_id, current_id)).assignment_id

    with pytest.raises(ConflictError):
        await assignments.reassign([active_id], target_id)

    rows = (await store.execute(
        select(LeadAssignment.agent_id, LeadAssignment.status)
    )).all()
    assert sorted(rows) == sorted([(target_id, finished.value), (current_id, AssignmentStatus.ACTIVE.value)])


async def test_reassign_keeps_on_hold_pair(store, make_lead, make_agent):
    lead = await make_lead()
    first = await make_agent()
    second = await make_agent()
    assignments = AssignmentStore(store)
    held_id = (await assignments.create(lead.lead_id, second.agent_id)).assignment_id
    await assignments.update_status(held_id, AssignmentStatus.ON_HOLD)
    old_id = (await assignments.create(lead.lead_id, first.agent_id)).assignment_id

    result = await assignments.reassign([old_id], second.agent_id)

    assert result.reassigned == {old_id: held_id}
    assert await _count(store) == 1


async def test_store_accepts_medium_and_rejects_unknown_values(store, make_lead, make_agent):
    lead = await make_lead()
    agent = await make_agent()
    assignments = AssignmentStore(store)
    assignment_id = (await assignments.create(lead.lead_id, agent.agent_id, "high")).assignment_id

    assignment, changed = await assignments.update_priority(assignment_id, "Medium")
    assert changed
    assert assignment.priority == AssignmentPriority.NORMAL.value

    with pytest.raises(ValidationError):
        await assignments.update_priority(assignment_id, "URGENT")
    with pytest.raises(ValidationError):
        await assignments.update_status(assignment_id, "ARCHIVED")
    _, changed = await assignments.update_status(assignment_id, "on_hold")
    assert changed


def test_inbound_close_dates_become_naive_utc():
    aware = "2026-12-01T10:00:00+02:00"
    expected = datetime(2026, 12, 1, 8, 0)
    ids = {"assignment_ids": [uuid.uuid4()], "new_agent_id": uuid.uuid4(), "expected_close_date": aware}

    created = AssignmentCreateRequest(lead_id=uuid.uuid4(), agent_id=uuid.uuid4(), expected_close_date=aware)
    distributed = DistributeRequest(rule={"type": "ROUND_ROBIN"}, agent_ids=[uuid.uuid4()], expected_close_date=aware)

    assert created.expected_close_date == expected
    assert ReassignRequest(**ids).expected_close_date == expected
    assert BulkReassign(action="reassign", **ids).expected_close_date == expected
    assert distributed.expected_close_date == expected
    assert DistributeRequest(
        rule={"type": "ROUND_ROBIN"}, agent_ids=[uuid.uuid4()], expected_close_date="2026-12-01T08:00:00",
    ).expected_close_date == expected
