"""SQLAlchemy implementations of the engine's ports."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoassign.adapters.persistence.models import (
    AgentModel,
    AssignmentModel,
    AuditRecordModel,
    EscalationModel,
    RoutingRuleModel,
)
from autoassign.application.ports.agent_source import AgentSource
from autoassign.application.ports.assignment_sink import AssignmentSink
from autoassign.application.ports.assignment_store import AssignmentStore
from autoassign.application.ports.audit_log import AuditLog
from autoassign.application.ports.escalation_queue import EscalationQueue
from autoassign.application.ports.rule_source import RuleSource
from autoassign.domain.entities.agent import Agent
from autoassign.domain.entities.assignment import Assignment
from autoassign.domain.entities.decision import AuditRecord, EscalationSignal
from autoassign.domain.entities.rule import Rule, RuleSet, fingerprint, rule_from_dict
from autoassign.domain.exceptions import (
    AssignmentStoreUnavailable,
    AuditSinkUnavailable,
    InvalidRule,
    SinkUnavailable,
    SourceUnavailable,
)
from autoassign.domain.value_objects.enums import DecisionState, TargetKind
from autoassign.domain.value_objects.schedule import AvailabilityWindow
from autoassign.domain.value_objects.score import ScoreBreakdown

logger = logging.getLogger(__name__)

# ─── Mappers ─────────────────────────────────────────────────────────


def _agent_to_domain(m: AgentModel) -> Agent:
    return Agent(
        id=m.id,
        name=m.name,
        skills=frozenset(m.skills or ()),
        current_workload=m.current_workload,
        max_capacity=m.max_capacity,
        available=m.available,
        timezone=m.timezone,
        schedule=tuple(AvailabilityWindow.parse(w) for w in (m.schedule or ())),
        groups=frozenset(m.groups or ()),
        historical_success=m.historical_success,
        response_time=m.response_time,
    )


def _rule_to_domain(m: RoutingRuleModel) -> Rule | None:
    try:
        return rule_from_dict({
            "id": m.id,
            "priority": m.priority,
            "condition": m.condition,
            "action": m.action,
            "active": m.active,
            "description": m.description,
        })
    except InvalidRule as e:
        logger.error("Skipping invalid rule %s: %s", m.id, e.message)
        return None


def _assignment_to_domain(m: AssignmentModel) -> Assignment:
    return Assignment(
        id=m.id,
        ticket_id=m.ticket_id,
        target_kind=TargetKind(m.target_kind),
        target_id=m.target_id,
        confidence=m.confidence,
        reason=m.reason,
        rule_id=m.rule_id,
        breakdown=ScoreBreakdown.from_dict(m.breakdown) if m.breakdown else None,
        rule_set_version=m.rule_set_version,
        supersedes=m.supersedes,
        decided_at=m.decided_at,
    )


def _assignment_to_model(a: Assignment) -> AssignmentModel:
    return AssignmentModel(
        id=a.id,
        ticket_id=a.ticket_id,
        target_kind=a.target_kind.value,
        target_id=a.target_id,
        confidence=a.confidence,
        reason=a.reason,
        rule_id=a.rule_id,
        breakdown=a.breakdown.to_dict() if a.breakdown else None,
        rule_set_version=a.rule_set_version,
        supersedes=a.supersedes,
        decided_at=a.decided_at,
    )


def _audit_to_domain(m: AuditRecordModel) -> AuditRecord:
    return AuditRecord(
        ticket_id=m.ticket_id,
        state=DecisionState(m.state),
        reason=m.reason,
        target_kind=TargetKind(m.target_kind) if m.target_kind else None,
        target_id=m.target_id,
        assignment_id=m.assignment_id,
        rule_id=m.rule_id,
        confidence=m.confidence,
        breakdown=ScoreBreakdown.from_dict(m.breakdown) if m.breakdown else None,
        rule_set_version=m.rule_set_version,
        attempts=m.attempts,
        transitions=tuple(DecisionState(s) for s in (m.transitions or ())),
        error_code=m.error_code,
        occurred_at=m.occurred_at,
    )


# ─── Repositories ────────────────────────────────────────────────────


class SqlAgentSource(AgentSource):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def load_agents(self) -> list[Agent]:
        try:
            async with self._sessions() as s:
                result = await s.execute(select(AgentModel).order_by(AgentModel.id))
                rows = list(result.scalars())
        except (SQLAlchemyError, OSError) as e:
            raise SourceUnavailable(f"Agent directory unavailable: {e}") from e
        agents = []
        for m in rows:
            try:
                agents.append(_agent_to_domain(m))
            except ValueError as e:
                logger.error("Skipping agent %s with invalid data: %s", m.id, e)
        return agents

    async def push_workload(self, agent_id: str, workload: int) -> None:
        try:
            async with self._sessions() as s:
                await s.execute(
                    update(AgentModel)
                    .where(AgentModel.id == agent_id)
                    .values(current_workload=workload)
                )
                await s.commit()
        except (SQLAlchemyError, OSError) as e:
            raise SourceUnavailable(f"Could not push workload for {agent_id}: {e}") from e


class SqlRuleSource(RuleSource):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def load_rule_set(self) -> RuleSet:
        try:
            async with self._sessions() as s:
                result = await s.execute(
                    select(RoutingRuleModel).order_by(RoutingRuleModel.priority, RoutingRuleModel.id)
                )
                rows = list(result.scalars())
        except (SQLAlchemyError, OSError) as e:
            raise SourceUnavailable(f"Rule repository unavailable: {e}") from e
        rules = [r for r in (_rule_to_domain(m) for m in rows) if r is not None]
        return RuleSet(version=fingerprint(rules), rules=tuple(rules))


class SqlAuditLog(AuditLog):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def append(self, record: AuditRecord) -> None:
        m = AuditRecordModel(
            ticket_id=record.ticket_id,
            state=record.state.value,
            reason=record.reason,
            target_kind=record.target_kind.value if record.target_kind else None,
            target_id=record.target_id,
            assignment_id=record.assignment_id,
            rule_id=record.rule_id,
            confidence=record.confidence,
            breakdown=record.breakdown.to_dict() if record.breakdown else None,
            rule_set_version=record.rule_set_version,
            attempts=record.attempts,
            transitions=[s.value for s in record.transitions],
            error_code=record.error_code,
            occurred_at=record.occurred_at,
        )
        try:
            async with self._sessions() as s:
                s.add(m)
                await s.commit()
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkUnavailable(f"Audit log unavailable: {e}") from e

    async def list_for_ticket(self, ticket_id: str) -> list[AuditRecord]:
        try:
            async with self._sessions() as s:
                result = await s.execute(
                    select(AuditRecordModel)
                    .where(AuditRecordModel.ticket_id == ticket_id)
                    .order_by(AuditRecordModel.id)
                )
                return [_audit_to_domain(m) for m in result.scalars()]
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkUnavailable(f"Audit log unavailable: {e}") from e


class SqlAssignmentStore(AssignmentStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def save(self, assignment: Assignment) -> None:
        try:
            async with self._sessions() as s:
                s.add(_assignment_to_model(assignment))
                if assignment.supersedes:
                    await s.execute(
                        update(AssignmentModel)
                        .where(
                            AssignmentModel.id == assignment.supersedes,
                            AssignmentModel.closed_at.is_(None),
                        )
                        .values(closed_at=assignment.decided_at)
                    )
                await s.commit()
        except (SQLAlchemyError, OSError) as e:
            raise AssignmentStoreUnavailable(f"Assignment store unavailable: {e}") from e

    async def discard(self, assignment: Assignment) -> None:
        try:
            async with self._sessions() as s:
                await s.execute(delete(AssignmentModel).where(AssignmentModel.id == assignment.id))
                if assignment.supersedes:
                    await s.execute(
                        update(AssignmentModel)
                        .where(AssignmentModel.id == assignment.supersedes)
                        .values(closed_at=None)
                    )
                await s.commit()
        except (SQLAlchemyError, OSError) as e:
            raise AssignmentStoreUnavailable(f"Assignment store unavailable: {e}") from e

    async def active_for(self, ticket_id: str) -> Assignment | None:
        try:
            async with self._sessions() as s:
                result = await s.execute(
                    select(AssignmentModel)
                    .where(
                        AssignmentModel.ticket_id == ticket_id,
                        AssignmentModel.closed_at.is_(None),
                    )
                    .order_by(AssignmentModel.decided_at.desc())
                    .limit(1)
                )
                m = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise AssignmentStoreUnavailable(f"Assignment store unavailable: {e}") from e
        return _assignment_to_domain(m) if m is not None else None

    async def close(self, assignment: Assignment) -> None:
        try:
            async with self._sessions() as s:
                await s.execute(
                    update(AssignmentModel)
                    .where(
                        AssignmentModel.id == assignment.id,
                        AssignmentModel.closed_at.is_(None),
                    )
                    .values(closed_at=datetime.now(timezone.utc))
                )
                await s.commit()
        except (SQLAlchemyError, OSError) as e:
            raise AssignmentStoreUnavailable(f"Assignment store unavailable: {e}") from e

    async def history(self, ticket_id: str) -> list[Assignment]:
        try:
            async with self._sessions() as s:
                result = await s.execute(
                    select(AssignmentModel)
                    .where(AssignmentModel.ticket_id == ticket_id)
                    .order_by(AssignmentModel.decided_at)
                )
                return [_assignment_to_domain(m) for m in result.scalars()]
        except (SQLAlchemyError, OSError) as e:
            raise AssignmentStoreUnavailable(f"Assignment store unavailable: {e}") from e


class SqlAssignmentSink(AssignmentSink):
    """Marks a stored assignment as handed to the ticketing system."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def publish(self, assignment: Assignment) -> None:
        try:
            async with self._sessions() as s:
                result = await s.execute(
                    update(AssignmentModel)
                    .where(AssignmentModel.id == assignment.id)
                    .values(published_at=datetime.now(timezone.utc))
                )
                await s.commit()
        except (SQLAlchemyError, OSError) as e:
            raise SinkUnavailable(f"Assignment sink unavailable: {e}") from e
        if result.rowcount == 0:
            logger.warning("Published assignment %s has no stored row", assignment.id)


class SqlEscalationQueue(EscalationQueue):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def enqueue(self, signal: EscalationSignal) -> None:
        m = EscalationModel(
            ticket_id=signal.ticket_id,
            reason=signal.reason,
            rule_id=signal.rule_id,
            rule_set_version=signal.rule_set_version,
            raised_at=signal.raised_at,
        )
        try:
            async with self._sessions() as s:
                s.add(m)
                await s.commit()
        except (SQLAlchemyError, OSError) as e:
            raise SinkUnavailable(f"Escalation queue unavailable: {e}") from e
