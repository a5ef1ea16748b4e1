"""Tests for ORM ↔ domain mapping (no database needed)."""

from datetime import datetime, timezone

import pytest

from autoassign.adapters.persistence.models import (
    AgentModel,
    AssignmentModel,
    AuditRecordModel,
    RoutingRuleModel,
)
from autoassign.adapters.persistence.repositories import (
    SqlAssignmentStore,
    _agent_to_domain,
    _assignment_to_domain,
    _assignment_to_model,
    _audit_to_domain,
    _rule_to_domain,
)
from autoassign.domain.entities.assignment import Assignment
from autoassign.domain.entities.rule import AssignGroup
from autoassign.domain.exceptions import AssignmentStoreUnavailable
from autoassign.domain.value_objects.enums import DecisionState, TargetKind

WHEN = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def test_agent_row_to_domain():
    m = AgentModel(
        id="a1", name="Alice", skills=["Email"], groups=["EmailSupport"],
        current_workload=3, max_capacity=8, available=True, timezone="UTC",
        schedule=["0,1,2,3,4@09:00-17:00"], historical_success=0.8, response_time=None,
    )
    agent = _agent_to_domain(m)
    assert agent.skills == {"Email"}
    assert agent.schedule[0].render() == "0,1,2,3,4@09:00-17:00"
    assert agent.current_workload == 3


def test_invalid_rule_row_is_skipped(caplog):
    good = RoutingRuleModel(
        id="r1", priority=5, active=True, description=None,
        condition={"field": "category", "op": "eq", "value": "Email"},
        action={"type": "assign_group", "target": "EmailSupport"},
    )
    bad = RoutingRuleModel(
        id="r2", priority=5, active=True, description=None,
        condition={"field": "category", "op": "resembles", "value": "Email"},
        action={"type": "assign_group", "target": "EmailSupport"},
    )
    assert _rule_to_domain(good).action == AssignGroup("EmailSupport")
    assert _rule_to_domain(bad) is None
    assert "Skipping invalid rule r2" in caplog.text


def test_assignment_and_audit_rows_to_domain():
    a = _assignment_to_domain(AssignmentModel(
        id="abc", ticket_id="T-1", target_kind="group", target_id="EmailSupport",
        confidence=1.0, reason="Rule r1", rule_id="r1", breakdown=None,
        rule_set_version="v1", supersedes=None, decided_at=WHEN,
    ))
    assert a.target_kind is TargetKind.GROUP
    assert a.agent_id is None

    r = _audit_to_domain(AuditRecordModel(
        id=1, ticket_id="T-1", state="committed", reason="Rule r1", target_kind="group",
        target_id="EmailSupport", assignment_id="abc", rule_id="r1", confidence=1.0,
        breakdown=None, rule_set_version="v1", attempts=1,
        transitions=["received", "rule_evaluated", "candidate_selected", "reserved", "committed"],
        error_code=None, occurred_at=WHEN,
    ))
    assert r.state is DecisionState.COMMITTED
    assert r.transitions[-1] is DecisionState.COMMITTED


def test_assignment_to_row_starts_open():
    a = Assignment(
        ticket_id="T-1", target_kind=TargetKind.AGENT, target_id="A", confidence=0.7,
        reason="best of 2 candidates", supersedes="old", decided_at=WHEN,
    )
    m = _assignment_to_model(a)
    assert m.closed_at is None
    assert m.published_at is None
    assert _assignment_to_domain(m) == a


class _DeadSessions:
    """Session factory whose connections always fail."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OSError("connection refused")

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
async def test_assignment_store_maps_connection_errors():
    store = SqlAssignmentStore(_DeadSessions())
    a = Assignment(ticket_id="T-1", target_kind=TargetKind.AGENT, target_id="A", confidence=1.0, reason="r")
    with pytest.raises(AssignmentStoreUnavailable):
        await store.save(a)
    with pytest.raises(AssignmentStoreUnavailable):
        await store.active_for("T-1")
    with pytest.raises(AssignmentStoreUnavailable):
        await store.close(a)
