"""Tests for AssignmentCoordinator with in-memory fakes."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from autoassign.domain.entities.rule import AssignAgent, AssignGroup, Escalate, Rule, RuleSet
from autoassign.domain.exceptions import AssignmentStoreUnavailable
from autoassign.domain.value_objects.condition import AllOf, Always, Comparison
from autoassign.domain.value_objects.enums import (
    ActionType,
    DecisionState,
    FailureReason,
    GroupResolution,
    Operator,
    TargetKind,
)
from conftest import (
    FakeAssignmentSink,
    FakeAssignmentStore,
    FakeAuditLog,
    FakeEscalationQueue,
    FakeRuleSource,
)

S = DecisionState

EMAIL_RULE = Rule(
    id="email-unassigned",
    priority=10,
    condition=AllOf((
        Comparison("category", Operator.EQ, "Email"),
        Comparison("assignment_group", Operator.IS_EMPTY),
    )),
    action=AssignGroup("EmailSupport"),
)


# ─── Rule-driven decisions ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_email_rule_assigns_group_without_scoring(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A", skills={"Email"})], [EMAIL_RULE])

    result = await engine.coordinator.decide(make_ticket(assignment_group=None))

    assert result.committed
    a = result.assignment
    assert a.target_kind is TargetKind.GROUP
    assert a.target_id == "EmailSupport"
    assert a.confidence == 1.0
    assert a.breakdown is None
    assert a.rule_id == "email-unassigned"
    assert a.rule_set_version == "v1"
    assert engine.tracker.workload("A") == 0

    await engine.coordinator.drain()
    assert engine.sink.published == [a]
    assert [r.state for r in engine.audit.records] == [S.COMMITTED]


@pytest.mark.asyncio
async def test_group_members_scored_when_configured(build_engine, make_ticket, make_agent):
    engine = build_engine(
        [
            make_agent("outsider", skills={"Email"}),
            make_agent("m1", groups={"EmailSupport"}, current_workload=5),
            make_agent("m2", groups={"emailsupport"}, current_workload=1),
        ],
        [EMAIL_RULE],
        group_resolution=GroupResolution.SCORE_MEMBERS,
    )

    result = await engine.coordinator.decide(make_ticket())

    assert result.assignment.target_id == "m2"
    assert result.assignment.rule_id == "email-unassigned"
    assert result.assignment.breakdown is not None
    assert result.assignment.confidence == result.assignment.breakdown.total
    assert engine.tracker.workload("m2") == 2


@pytest.mark.asyncio
async def test_direct_agent_rule(build_engine, make_ticket, make_agent):
    rule = Rule(id="vip", priority=1, condition=Always(), action=AssignAgent("B"))
    engine = build_engine([make_agent("A"), make_agent("B")], [rule])

    result = await engine.coordinator.decide(make_ticket())

    assert result.assignment.target_id == "B"
    assert result.assignment.confidence == 1.0
    assert result.assignment.is_rule_driven()
    assert engine.tracker.workload("B") == 1


@pytest.mark.asyncio
async def test_direct_agent_at_capacity_falls_back_to_scoring(build_engine, make_ticket, make_agent):
    rule = Rule(id="vip", priority=1, condition=Always(), action=AssignAgent("B"))
    engine = build_engine(
        [make_agent("A"), make_agent("B", current_workload=10, max_capacity=10)], [rule]
    )

    result = await engine.coordinator.decide(make_ticket())

    assert result.assignment.target_id == "A"
    assert result.assignment.breakdown is not None
    assert "unavailable" in result.assignment.reason
    assert engine.tracker.workload("B") == 10


@pytest.mark.asyncio
async def test_escalation_rule(build_engine, make_ticket, make_agent):
    rule = Rule(
        id="p1",
        priority=1,
        condition=Comparison("priority", Operator.EQ, 1),
        action=Escalate("P1 needs a human"),
    )
    engine = build_engine([make_agent("A")], [rule])

    result = await engine.coordinator.decide(make_ticket(priority=1))

    assert result.escalated
    assert result.escalation.reason == "P1 needs a human"
    assert engine.escalations.signals == [result.escalation]
    assert engine.tracker.workload("A") == 0
    assert engine.coordinator.ledger.active("T-1") is None
    assert engine.audit.records[-1].state == S.ESCALATED
    assert result.transitions == (S.RECEIVED, S.RULE_EVALUATED, S.ESCALATED)


@pytest.mark.asyncio
async def test_escalation_queue_down_fails_decision(build_engine, make_ticket):
    rule = Rule(id="all", priority=1, condition=Always(), action=Escalate("x"))
    engine = build_engine([], [rule], escalations=FakeEscalationQueue(fail_times=99))

    result = await engine.coordinator.decide(make_ticket())

    assert result.state == S.FAILED
    assert result.failure.reason is FailureReason.ESCALATION_QUEUE_UNAVAILABLE


# ─── Score-driven decisions ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_scoring_prefers_skilled_agent(build_engine, make_ticket, make_agent):
    engine = build_engine([
        make_agent("B", skills={"Network"}),
        make_agent("A", skills={"Email"}),
    ])

    result = await engine.coordinator.decide(make_ticket(required_skills={"Email"}))

    assert result.committed
    assert result.assignment.target_id == "A"
    assert 0.0 <= result.assignment.confidence <= 1.0
    assert result.assignment.rule_id is None
    assert result.assignment.reason.startswith("best of 2 candidates")
    assert result.transitions == (
        S.RECEIVED, S.RULE_EVALUATED, S.CANDIDATE_SELECTED, S.RESERVED, S.COMMITTED,
    )
    await engine.coordinator.drain()
    assert engine.agent_source.pushed == {"A": 1}


@pytest.mark.asyncio
async def test_only_candidate_at_capacity(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A", current_workload=10, max_capacity=10)])

    result = await engine.coordinator.decide(make_ticket())

    assert result.state == S.NO_ELIGIBLE_AGENT
    assert result.failure.reason is FailureReason.NO_ELIGIBLE_AGENT
    assert engine.audit.records[-1].state == S.NO_ELIGIBLE_AGENT
    assert engine.audit.records[-1].error_code == "no_eligible_agent"


@pytest.mark.asyncio
async def test_empty_pool(build_engine, make_ticket):
    result = await build_engine([]).coordinator.decide(make_ticket())
    assert result.state == S.NO_ELIGIBLE_AGENT


# ─── Concurrency ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_two_tickets_race_for_last_slot(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A", current_workload=4, max_capacity=5)])

    r1, r2 = await asyncio.gather(
        engine.coordinator.decide(make_ticket("T-1")),
        engine.coordinator.decide(make_ticket("T-2")),
    )

    states = sorted([r1.state, r2.state])
    assert states == sorted([S.COMMITTED, S.NO_ELIGIBLE_AGENT])
    assert engine.tracker.workload("A") == 5


@pytest.mark.asyncio
async def test_duplicate_decide_commits_once(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A"), make_agent("B")])
    ticket = make_ticket()

    results = await asyncio.gather(*(engine.coordinator.decide(ticket) for _ in range(5)))

    assert all(r.committed for r in results)
    assert len({r.assignment.id for r in results}) == 1
    assert sum(1 for r in results if not r.reused) == 1
    assert sum(engine.tracker.workload(a) for a in ("A", "B")) == 1
    assert len(await engine.coordinator.history("T-1")) == 1
    assert engine.coordinator.ledger.locks_in_use() == 0


@pytest.mark.asyncio
async def test_stress_never_exceeds_capacity(build_engine, make_ticket, make_agent):
    agents = [make_agent(f"A{i}", max_capacity=5) for i in range(3)]
    engine = build_engine(agents)

    results = await asyncio.gather(
        *(engine.coordinator.decide(make_ticket(f"T-{n}")) for n in range(30))
    )

    committed = [r for r in results if r.committed]
    assert len(committed) == 15
    assert all(r.state == S.NO_ELIGIBLE_AGENT for r in results if not r.committed)
    for agent in agents:
        assert engine.tracker.workload(agent.id) == 5
    assert len(engine.audit.records) == 30


# ─── Failures ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_malformed_ticket_is_rejected_and_audited(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")])

    result = await engine.coordinator.decide(make_ticket(priority=9))

    assert result.state == S.FAILED
    assert result.failure.reason is FailureReason.MALFORMED_TICKET
    assert engine.audit.records[-1].error_code == "malformed_ticket"
    assert engine.agent_source.loads == 0


@pytest.mark.asyncio
async def test_audit_outage_rolls_back_reservation(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")], audit=FakeAuditLog(fail_times=99))

    result = await engine.coordinator.decide(make_ticket())

    assert result.state == S.FAILED
    assert result.failure.reason is FailureReason.AUDIT_SINK_UNAVAILABLE
    assert engine.tracker.workload("A") == 0
    assert engine.coordinator.ledger.active("T-1") is None
    await engine.coordinator.drain()
    assert engine.sink.published == []


@pytest.mark.asyncio
async def test_audit_blip_is_retried(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")], audit=FakeAuditLog(fail_times=2))
    result = await engine.coordinator.decide(make_ticket())
    assert result.committed
    assert len(engine.audit.records) == 1


@pytest.mark.asyncio
async def test_directory_outage(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")])
    engine.agent_source.fail_times = 99

    result = await engine.coordinator.decide(make_ticket())

    assert result.failure.reason is FailureReason.DIRECTORY_UNAVAILABLE


@pytest.mark.asyncio
async def test_rules_outage(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")], rule_source=FakeRuleSource(fail_times=99))
    result = await engine.coordinator.decide(make_ticket())
    assert result.failure.reason is FailureReason.RULES_UNAVAILABLE


@pytest.mark.asyncio
async def test_sink_outage_does_not_undo_commit(build_engine, make_ticket, make_agent, caplog):
    engine = build_engine([make_agent("A")], sink=FakeAssignmentSink(fail_times=99))

    result = await engine.coordinator.decide(make_ticket())
    await engine.coordinator.drain()

    assert result.committed
    assert engine.coordinator.ledger.active("T-1") == result.assignment
    assert engine.tracker.workload("A") == 1
    assert "not propagated" in caplog.text


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_failure(build_engine, make_ticket, make_agent, monkeypatch):
    engine = build_engine([make_agent("A")])

    def boom(*args, **kwargs):
        raise RuntimeError("bug")

    monkeypatch.setattr(engine.coordinator, "_plan_by_score", boom)
    result = await engine.coordinator.decide(make_ticket())

    assert result.failure.reason is FailureReason.INTERNAL_ERROR
    assert engine.tracker.workload("A") == 0


@pytest.mark.asyncio
async def test_rule_without_assignment_target_becomes_internal_failure(build_engine, make_ticket, make_agent):
    odd = Rule(
        id="odd",
        priority=1,
        condition=Always(),
        action=SimpleNamespace(type=ActionType.ASSIGN_AGENT),
    )
    engine = build_engine([make_agent("A")], [odd])
    result = await engine.coordinator.decide(make_ticket())

    assert result.failure.reason is FailureReason.INTERNAL_ERROR
    assert "no assignment target" in result.failure.message
    assert engine.tracker.workload("A") == 0


@pytest.mark.asyncio
async def test_timeout_before_reservation_yields_cancelled(build_engine, make_ticket, make_agent):
    class SlowRules(FakeRuleSource):
        async def load_rule_set(self):
            await asyncio.sleep(5)
            return await super().load_rule_set()

    engine = build_engine([make_agent("A")], rule_source=SlowRules())

    result = await engine.coordinator.decide(make_ticket(), timeout=0.05)

    assert result.state == S.FAILED
    assert result.failure.reason is FailureReason.CANCELLED


@pytest.mark.asyncio
async def test_timeout_after_reservation_releases_it(build_engine, make_ticket, make_agent):
    class SlowCommitAudit(FakeAuditLog):
        async def append(self, record):
            if record.state is S.COMMITTED:
                await asyncio.sleep(5)
            await super().append(record)

    engine = build_engine([make_agent("A")], audit=SlowCommitAudit())

    result = await engine.coordinator.decide(make_ticket(), timeout=0.05)

    assert result.state == S.FAILED
    assert result.failure.reason is FailureReason.CANCELLED
    assert engine.tracker.workload("A") == 0
    assert engine.coordinator.ledger.active("T-1") is None
    assert await engine.store.active_for("T-1") is None
    assert [r.state for r in engine.audit.records] == [S.FAILED]


@pytest.mark.asyncio
async def test_timeout_while_previous_agent_is_busy_still_commits_reassignment(
    build_engine, make_ticket, make_agent
):
    engine = build_engine([make_agent("A", skills={"Email"}), make_agent("B")])
    ticket = make_ticket(required_skills={"Email"})
    first = await engine.coordinator.decide(ticket)
    await engine.coordinator.drain()

    slot_lock = engine.tracker._slot("A").lock
    await slot_lock.acquire()
    try:
        result = await engine.coordinator.reassign(ticket, timeout=0.05)
    finally:
        slot_lock.release()
    await engine.coordinator.drain()

    assert result.committed
    assert result.assignment.target_id == "B"
    assert result.assignment.supersedes == first.assignment.id
    assert engine.tracker.workload("A") == 0
    assert engine.tracker.workload("B") == 1
    assert [r.state for r in engine.audit.records] == [S.COMMITTED, S.COMMITTED]


# ─── Lifecycle ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reassign_moves_ticket_to_another_agent(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A", skills={"Email"}), make_agent("B")])
    ticket = make_ticket(required_skills={"Email"})
    first = await engine.coordinator.decide(ticket)
    assert first.assignment.target_id == "A"

    second = await engine.coordinator.reassign(ticket, "customer asked")
    await engine.coordinator.drain()

    assert second.committed
    assert second.assignment.target_id == "B"
    assert second.assignment.supersedes == first.assignment.id
    assert second.assignment.reason.startswith("Reassigned (customer asked)")
    assert engine.tracker.workload("A") == 0
    assert engine.tracker.workload("B") == 1
    assert engine.coordinator.ledger.active(ticket.id) == second.assignment
    assert [a.id for a in await engine.coordinator.history(ticket.id)] == [
        first.assignment.id, second.assignment.id,
    ]
    assert (await engine.store.active_for(ticket.id)) == second.assignment


@pytest.mark.asyncio
async def test_failed_reassign_keeps_current_assignment(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")])
    ticket = make_ticket()
    first = await engine.coordinator.decide(ticket)

    second = await engine.coordinator.reassign(ticket)

    assert second.state == S.NO_ELIGIBLE_AGENT
    assert engine.coordinator.ledger.active(ticket.id) == first.assignment
    assert engine.tracker.workload("A") == 1


@pytest.mark.asyncio
async def test_close_ticket_releases_capacity(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")])
    await engine.coordinator.decide(make_ticket())

    closed = await engine.coordinator.close_ticket("T-1")

    assert closed.target_id == "A"
    assert engine.tracker.workload("A") == 0
    assert await engine.coordinator.close_ticket("T-1") is None

    # a closed ticket can be routed again
    again = await engine.coordinator.decide(make_ticket())
    assert again.committed and not again.reused


@pytest.mark.asyncio
async def test_release_capacity_pushes_workload(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A", current_workload=3)])
    await engine.coordinator.directory.refresh()

    assert await engine.coordinator.release_capacity("A") == 2
    await engine.coordinator.drain()
    assert engine.agent_source.pushed == {"A": 2}


@pytest.mark.asyncio
async def test_audit_trail(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")])
    await engine.coordinator.decide(make_ticket())
    trail = await engine.coordinator.audit_trail("T-1")
    assert [r.state for r in trail] == [S.COMMITTED]
    assert trail[0].attempts == 1


# ─── Restart and persistence ────────────────────────────────────────


@pytest.mark.asyncio
async def test_restarted_engine_reuses_stored_assignment(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A"), make_agent("B")])
    ticket = make_ticket()
    first = await engine.coordinator.decide(ticket)
    await engine.coordinator.drain()
    assert engine.agent_source.pushed == {"A": 1}

    restarted = build_engine(
        agent_source=engine.agent_source,
        rule_source=engine.rule_source,
        audit=engine.audit,
        store=engine.store,
    )
    await restarted.coordinator.directory.refresh()  # startup
    second = await restarted.coordinator.decide(ticket)

    assert second.committed and second.reused
    assert second.assignment.id == first.assignment.id
    assert restarted.tracker.workload("A") == 1

    closed = await restarted.coordinator.close_ticket("T-1")

    assert closed.id == first.assignment.id
    assert restarted.tracker.workload("A") == 0
    assert await restarted.store.active_for("T-1") is None


@pytest.mark.asyncio
async def test_restarted_engine_reassigns_stored_assignment(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A", skills={"Email"}), make_agent("B")])
    ticket = make_ticket(required_skills={"Email"})
    first = await engine.coordinator.decide(ticket)
    await engine.coordinator.drain()

    restarted = build_engine(agent_source=engine.agent_source, store=engine.store)
    moved = await restarted.coordinator.reassign(ticket)
    await restarted.coordinator.drain()

    assert moved.assignment.target_id == "B"
    assert moved.assignment.supersedes == first.assignment.id
    assert restarted.tracker.workload("A") == 0


@pytest.mark.asyncio
async def test_store_outage_fails_before_reserving(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")], store=FakeAssignmentStore(fail_times=99))

    result = await engine.coordinator.decide(make_ticket())

    assert result.failure.reason is FailureReason.ASSIGNMENT_STORE_UNAVAILABLE
    assert engine.tracker.workload("A") == 0
    assert engine.audit.records[-1].error_code == "assignment_store_unavailable"


@pytest.mark.asyncio
async def test_store_write_failure_rolls_back_reservation(build_engine, make_ticket, make_agent):
    class ReadOnlyStore(FakeAssignmentStore):
        async def save(self, assignment):
            raise AssignmentStoreUnavailable("read only")

    engine = build_engine([make_agent("A")], store=ReadOnlyStore())

    result = await engine.coordinator.decide(make_ticket())

    assert result.failure.reason is FailureReason.ASSIGNMENT_STORE_UNAVAILABLE
    assert engine.tracker.workload("A") == 0
    assert engine.coordinator.ledger.active("T-1") is None


@pytest.mark.asyncio
async def test_audit_outage_discards_stored_assignment(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")], audit=FakeAuditLog(fail_times=99))

    await engine.coordinator.decide(make_ticket())

    assert engine.store.rows == {}


@pytest.mark.asyncio
async def test_close_ticket_with_store_outage_keeps_assignment(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")])
    first = await engine.coordinator.decide(make_ticket())
    engine.store.fail_times = 99

    with pytest.raises(AssignmentStoreUnavailable):
        await engine.coordinator.close_ticket("T-1")

    assert engine.coordinator.ledger.active("T-1") == first.assignment
    assert engine.tracker.workload("A") == 1


@pytest.mark.asyncio
async def test_reassign_into_escalation_closes_previous_assignment(build_engine, make_ticket, make_agent):
    engine = build_engine([make_agent("A")])
    ticket = make_ticket()
    first = await engine.coordinator.decide(ticket)

    engine.rule_source.rule_set = RuleSet(
        version="v2",
        rules=(Rule(id="vip", priority=1, condition=Always(), action=Escalate("VIP")),),
    )
    await engine.coordinator.rules.refresh()
    result = await engine.coordinator.reassign(ticket, "vip customer")
    await engine.coordinator.drain()

    assert result.escalated
    assert engine.coordinator.ledger.active(ticket.id) is None
    assert await engine.store.active_for(ticket.id) is None
    assert first.assignment.id in engine.store.closed
    assert engine.tracker.workload("A") == 0


@pytest.mark.asyncio
async def test_nested_custom_field_rule_falls_through_to_scoring(build_engine, make_ticket, make_agent):
    rule = Rule(
        id="eu-only",
        priority=1,
        condition=Comparison("custom.meta", Operator.IN, ("eu", "us")),
        action=Escalate("EU queue"),
    )
    engine = build_engine([make_agent("A")], [rule])

    result = await engine.coordinator.decide(make_ticket(custom_fields={"meta": {"region": "eu"}}))

    assert result.committed
    assert result.assignment.target_id == "A"
    assert engine.escalations.signals == []
