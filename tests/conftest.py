"""Pytest configuration and shared fixtures: in-memory fakes of every port."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from autoassign.application.ports.agent_source import AgentSource
from autoassign.application.ports.assignment_sink import AssignmentSink
from autoassign.application.ports.assignment_store import AssignmentStore
from autoassign.application.ports.audit_log import AuditLog
from autoassign.application.ports.escalation_queue import EscalationQueue
from autoassign.application.ports.rule_source import RuleSource
from autoassign.application.services.agent_directory import AgentDirectory
from autoassign.application.services.retry import RetryPolicy
from autoassign.application.services.rule_repository import RuleRepository
from autoassign.application.services.workload_tracker import WorkloadTracker
from autoassign.application.use_cases.assign_ticket import AssignmentCoordinator, EngineConfig
from autoassign.domain.entities.agent import Agent
from autoassign.domain.entities.rule import RuleSet
from autoassign.domain.entities.ticket import Ticket
from autoassign.domain.exceptions import (
    AssignmentStoreUnavailable,
    AuditSinkUnavailable,
    SinkUnavailable,
    SourceUnavailable,
)

# Monday, inside any office-hours window
NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

NO_WAIT = RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0)


# ─── In-memory fakes ────────────────────────────────────────────────


class FakeAgentSource(AgentSource):
    def __init__(self, agents=(), fail_times: int = 0):
        self.agents = list(agents)
        self.fail_times = fail_times
        self.loads = 0
        self.pushed: dict[str, int] = {}

    async def load_agents(self):
        self.loads += 1
        if self.fail_times:
            self.fail_times -= 1
            raise SourceUnavailable("directory down")
        return list(self.agents)

    async def push_workload(self, agent_id, workload):
        self.pushed[agent_id] = workload
        self.agents = [a.with_workload(workload) if a.id == agent_id else a for a in self.agents]


class FakeRuleSource(RuleSource):
    def __init__(self, rules=(), version: str = "v1", fail_times: int = 0):
        self.rule_set = RuleSet(version=version, rules=tuple(rules))
        self.fail_times = fail_times

    async def load_rule_set(self):
        if self.fail_times:
            self.fail_times -= 1
            raise SourceUnavailable("rules down")
        return self.rule_set


class FakeAuditLog(AuditLog):
    def __init__(self, fail_times: int = 0):
        self.records = []
        self.fail_times = fail_times

    async def append(self, record):
        if self.fail_times:
            self.fail_times -= 1
            raise AuditSinkUnavailable("audit down")
        self.records.append(record)

    async def list_for_ticket(self, ticket_id):
        return [r for r in self.records if r.ticket_id == ticket_id]


class FakeAssignmentSink(AssignmentSink):
    def __init__(self, fail_times: int = 0):
        self.published = []
        self.fail_times = fail_times

    async def publish(self, assignment):
        if self.fail_times:
            self.fail_times -= 1
            raise SinkUnavailable("sink down")
        self.published.append(assignment)


class FakeEscalationQueue(EscalationQueue):
    def __init__(self, fail_times: int = 0):
        self.signals = []
        self.fail_times = fail_times

    async def enqueue(self, signal):
        if self.fail_times:
            self.fail_times -= 1
            raise SinkUnavailable("queue down")
        self.signals.append(signal)


class FakeAssignmentStore(AssignmentStore):
    def __init__(self, fail_times: int = 0):
        self.rows = {}
        self.closed = set()
        self.fail_times = fail_times

    def _check(self):
        if self.fail_times:
            self.fail_times -= 1
            raise AssignmentStoreUnavailable("store down")

    async def save(self, assignment):
        self._check()
        self.rows[assignment.id] = assignment
        if assignment.supersedes:
            self.closed.add(assignment.supersedes)

    async def discard(self, assignment):
        self._check()
        self.rows.pop(assignment.id, None)
        if assignment.supersedes:
            self.closed.discard(assignment.supersedes)

    async def active_for(self, ticket_id):
        self._check()
        open_rows = [
            a for a in self.rows.values() if a.ticket_id == ticket_id and a.id not in self.closed
        ]
        return open_rows[-1] if open_rows else None

    async def close(self, assignment):
        self._check()
        self.closed.add(assignment.id)

    async def history(self, ticket_id):
        self._check()
        return [a for a in self.rows.values() if a.ticket_id == ticket_id]


@dataclass
class Engine:
    coordinator: AssignmentCoordinator
    agent_source: FakeAgentSource
    rule_source: FakeRuleSource
    audit: FakeAuditLog
    sink: FakeAssignmentSink
    escalations: FakeEscalationQueue
    store: FakeAssignmentStore
    tracker: WorkloadTracker


# ─── Fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def make_ticket():
    def _make(ticket_id="T-1", **kwargs) -> Ticket:
        fields = dict(description="Cannot send email", category="Email", priority=2)
        fields.update(kwargs)
        return Ticket(id=ticket_id, **fields)
    return _make


@pytest.fixture
def make_agent():
    def _make(agent_id="A", **kwargs) -> Agent:
        fields = dict(name=f"Agent {agent_id}", max_capacity=10)
        fields.update(kwargs)
        return Agent(id=agent_id, **fields)
    return _make


@pytest.fixture
def build_engine():
    """Coordinator over in-memory fakes with a fixed clock and no backoff sleeps."""

    def _build(
        agents=(),
        rules=(),
        *,
        agent_source: FakeAgentSource | None = None,
        rule_source: FakeRuleSource | None = None,
        audit: FakeAuditLog | None = None,
        sink: FakeAssignmentSink | None = None,
        escalations: FakeEscalationQueue | None = None,
        store: FakeAssignmentStore | None = None,
        clock=lambda: NOW,
        **config,
    ) -> Engine:
        agent_source = agent_source or FakeAgentSource(agents)
        rule_source = rule_source or FakeRuleSource(rules)
        audit = audit or FakeAuditLog()
        sink = sink or FakeAssignmentSink()
        escalations = escalations or FakeEscalationQueue()
        store = store or FakeAssignmentStore()
        tracker = WorkloadTracker()
        config.setdefault("retry", NO_WAIT)
        coordinator = AssignmentCoordinator(
            directory=AgentDirectory(agent_source, tracker, retry=NO_WAIT),
            rules=RuleRepository(rule_source, retry=NO_WAIT),
            audit_log=audit,
            assignment_sink=sink,
            escalation_queue=escalations,
            assignment_store=store,
            config=EngineConfig(**config),
            clock=clock,
        )
        return Engine(
            coordinator=coordinator,
            agent_source=agent_source,
            rule_source=rule_source,
            audit=audit,
            sink=sink,
            escalations=escalations,
            store=store,
            tracker=tracker,
        )

    return _build
