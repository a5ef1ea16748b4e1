"""AssignmentCoordinator: evaluate → score → reserve → store → audit → commit."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from autoassign.application.ports.assignment_sink import AssignmentSink
from autoassign.application.ports.assignment_store import AssignmentStore
from autoassign.application.ports.audit_log import AuditLog
from autoassign.application.ports.escalation_queue import EscalationQueue
from autoassign.application.services.agent_directory import AgentDirectory
from autoassign.application.services.assignment_ledger import AssignmentLedger
from autoassign.application.services.retry import RetryPolicy, with_backoff
from autoassign.application.services.rule_repository import RuleRepository
from autoassign.application.services.workload_tracker import Reserved
from autoassign.domain.entities.agent import Agent
from autoassign.domain.entities.assignment import Assignment
from autoassign.domain.entities.decision import (
    AuditRecord,
    DecisionResult,
    EscalationSignal,
    Failure,
)
from autoassign.domain.entities.rule import AssignAgent, AssignGroup, Escalate, Rule, RuleSet
from autoassign.domain.entities.ticket import Ticket
from autoassign.domain.exceptions import (
    AssignmentStoreUnavailable,
    AuditSinkUnavailable,
    MalformedTicket,
    NoEligibleAgent,
    SourceUnavailable,
    TransientError,
)
from autoassign.domain.policies.decision_flow import DecisionFlow
from autoassign.domain.policies.rule_evaluation import DirectAction, evaluate
from autoassign.domain.policies.scoring import (
    DEFAULT_WEIGHTS,
    ScoringWeights,
    eligible_candidates,
    rank,
)
from autoassign.domain.value_objects.enums import (
    DecisionState,
    FailureReason,
    GroupResolution,
    TargetKind,
)
from autoassign.domain.value_objects.score import ScoreBreakdown

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EngineConfig:
    weights: ScoringWeights = DEFAULT_WEIGHTS
    max_reservation_attempts: int = 3
    group_resolution: GroupResolution = GroupResolution.GROUP
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    decision_timeout: float | None = None


@dataclass(frozen=True)
class _Candidate:
    """One target the coordinator may try to reserve, best-first."""

    target_kind: TargetKind
    target_id: str
    confidence: float
    reason: str
    rule_id: str | None = None
    breakdown: ScoreBreakdown | None = None

    @property
    def needs_capacity(self) -> bool:
        return self.target_kind == TargetKind.AGENT


@dataclass
class _Run:
    """Mutable bookkeeping for one in-flight decision."""

    ticket: Ticket
    flow: DecisionFlow
    rule_set: RuleSet | None = None
    exclude: frozenset[str] = frozenset()
    supersedes: Assignment | None = None
    reason_prefix: str = ""
    held: _Candidate | None = None
    saved: Assignment | None = None


class AssignmentCoordinator:
    """The engine's public contract.

    ``decide`` is idempotent per ticket: decisions for one ticket are
    serialized, and a ticket that already has an active assignment gets that
    assignment back instead of a second reservation.
    """

    def __init__(
        self,
        directory: AgentDirectory,
        rules: RuleRepository,
        audit_log: AuditLog,
        assignment_sink: AssignmentSink,
        escalation_queue: EscalationQueue,
        assignment_store: AssignmentStore,
        ledger: AssignmentLedger | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._directory = directory
        self._tracker = directory.tracker
        self._rules = rules
        self._audit = audit_log
        self._sink = assignment_sink
        self._escalations = escalation_queue
        self._store = assignment_store
        self._ledger = ledger or AssignmentLedger()
        self._config = config or EngineConfig()
        self._clock = clock
        self._background: set[asyncio.Task] = set()
        # tickets whose escalation-driven close is still being persisted
        self._closing: set[str] = set()

    @property
    def ledger(self) -> AssignmentLedger:
        return self._ledger

    @property
    def directory(self) -> AgentDirectory:
        return self._directory

    @property
    def rules(self) -> RuleRepository:
        return self._rules

    # ── Public API ───────────────────────────────────────────────────

    async def decide(self, ticket: Ticket, *, timeout: float | None = None) -> DecisionResult:
        """Route one ticket. Always returns a terminal DecisionResult."""
        timeout = timeout if timeout is not None else self._config.decision_timeout
        return await self._with_timeout(self._decide(ticket), ticket, timeout)

    async def reassign(
        self, ticket: Ticket, reason: str = "", *, timeout: float | None = None
    ) -> DecisionResult:
        """Pick a new target for a ticket, superseding its active assignment.

        The currently assigned agent is excluded. If the new decision fails,
        the existing assignment stays active.
        """
        timeout = timeout if timeout is not None else self._config.decision_timeout
        return await self._with_timeout(self._reassign(ticket, reason), ticket, timeout)

    async def close_ticket(self, ticket_id: str) -> Assignment | None:
        """Deactivate the ticket's assignment and free its agent's slot.

        Raises:
            TransientError: if the assignment store cannot be read or written.
        """
        async with self._ledger.hold(ticket_id):
            closed = await self.active_assignment(ticket_id)
            if closed is None:
                logger.info("Ticket %s has no active assignment to close", ticket_id)
                return None
            await with_backoff(
                lambda: self._store.close(closed), self._config.retry, operation="assignment close"
            )
            self._ledger.close(ticket_id)
        if closed.agent_id:
            await self.release_capacity(closed.agent_id)
            logger.info("Ticket %s closed, released agent %s", ticket_id, closed.agent_id)
        return closed

    async def release_capacity(self, agent_id: str) -> int:
        workload = await self._tracker.release(agent_id)
        self._spawn(self._directory.push_workload(agent_id))
        return workload

    async def active_assignment(self, ticket_id: str) -> Assignment | None:
        """The ticket's active assignment, loaded from the store on a cache miss.

        Raises:
            TransientError: if the assignment store stays unavailable.
        """
        if ticket_id in self._closing:
            return None
        cached = self._ledger.active(ticket_id)
        if cached is not None:
            return cached
        stored = await with_backoff(
            lambda: self._store.active_for(ticket_id),
            self._config.retry,
            operation="assignment lookup",
        )
        if stored is None or ticket_id in self._closing:
            return None
        if self._ledger.active(ticket_id) is None:
            logger.info("Ticket %s: restored active assignment %s from the store", ticket_id, stored.id)
            self._ledger.restore(stored)
        return self._ledger.active(ticket_id)

    async def history(self, ticket_id: str) -> list[Assignment]:
        return await with_backoff(
            lambda: self._store.history(ticket_id),
            self._config.retry,
            operation="assignment history",
        )

    async def audit_trail(self, ticket_id: str) -> list[AuditRecord]:
        return await with_backoff(
            lambda: self._audit.list_for_ticket(ticket_id),
            self._config.retry,
            operation="audit read",
        )

    async def drain(self) -> None:
        """Wait for post-commit propagation tasks (shutdown and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Entry points under the ticket lock ───────────────────────────

    async def _with_timeout(self, coro, ticket: Ticket, timeout: float | None) -> DecisionResult:
        if not timeout:
            return await coro
        ticket_id = str(getattr(ticket, "id", ""))
        before = self._ledger.active(ticket_id)
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError:
            after = self._ledger.active(ticket_id)
            if after is not None and (before is None or after.id != before.id):
                # the deadline hit after the commit; the assignment stands
                logger.warning(
                    "Decision for ticket %s timed out after committing %s", ticket_id, after.id
                )
                return DecisionResult(
                    ticket_id=ticket_id, state=DecisionState.COMMITTED, assignment=after
                )
            logger.warning("Decision for ticket %s timed out after %.2fs", ticket_id, timeout)
            flow = DecisionFlow(ticket_id)
            return await self._finish_failed(
                _Run(ticket=ticket, flow=flow),
                FailureReason.CANCELLED,
                f"decision timed out after {timeout}s",
            )

    async def _validated(self, ticket: Ticket) -> DecisionResult | None:
        try:
            ticket.validate()
        except MalformedTicket as e:
            return await self._finish_failed(
                _Run(ticket=ticket, flow=DecisionFlow(str(ticket.id))),
                FailureReason.MALFORMED_TICKET,
                e.message,
                error_code=e.code,
            )
        return None

    async def _lookup_failed(self, ticket: Ticket, error: TransientError) -> DecisionResult:
        return await self._finish_failed(
            _Run(ticket=ticket, flow=DecisionFlow(ticket.id)),
            FailureReason.ASSIGNMENT_STORE_UNAVAILABLE,
            error.message,
            error_code=error.code,
        )

    async def _decide(self, ticket: Ticket) -> DecisionResult:
        rejected = await self._validated(ticket)
        if rejected is not None:
            return rejected

        async with self._ledger.hold(ticket.id):
            try:
                existing = await self.active_assignment(ticket.id)
            except TransientError as e:
                return await self._lookup_failed(ticket, e)
            if existing is not None:
                logger.info("Ticket %s already assigned (%s), returning it", ticket.id, existing.id)
                return DecisionResult(
                    ticket_id=ticket.id,
                    state=DecisionState.COMMITTED,
                    assignment=existing,
                    reused=True,
                )
            return await self._run(_Run(ticket=ticket, flow=DecisionFlow(ticket.id)))

    async def _reassign(self, ticket: Ticket, reason: str) -> DecisionResult:
        rejected = await self._validated(ticket)
        if rejected is not None:
            return rejected

        async with self._ledger.hold(ticket.id):
            try:
                previous = await self.active_assignment(ticket.id)
            except TransientError as e:
                return await self._lookup_failed(ticket, e)
            exclude = frozenset({previous.agent_id}) if previous and previous.agent_id else frozenset()
            run = _Run(
                ticket=ticket,
                flow=DecisionFlow(ticket.id),
                exclude=exclude,
                supersedes=previous,
                reason_prefix=f"Reassigned ({reason}): " if reason else "Reassigned: ",
            )
            return await self._run(run)

    # ── Decision pipeline ────────────────────────────────────────────

    async def _run(self, run: _Run) -> DecisionResult:
        try:
            return await self._pipeline(run)
        except asyncio.CancelledError:
            await self._rollback(run)
            raise
        except Exception as e:
            logger.exception("Unexpected error deciding ticket %s", run.ticket.id)
            await self._rollback(run)
            return await self._finish_failed(run, FailureReason.INTERNAL_ERROR, str(e))

    async def _pipeline(self, run: _Run) -> DecisionResult:
        ticket = run.ticket

        try:
            run.rule_set = await self._rules.snapshot()
        except TransientError as e:
            return await self._finish_failed(
                run, FailureReason.RULES_UNAVAILABLE, e.message, error_code=e.code
            )
        try:
            await self._directory.ensure_fresh()
        except SourceUnavailable as e:
            return await self._finish_failed(
                run, FailureReason.DIRECTORY_UNAVAILABLE, e.message, error_code=e.code
            )
        agents = self._directory.snapshot()
        now = self._clock()

        match = evaluate(ticket, run.rule_set.active_rules())
        run.flow.advance(DecisionState.RULE_EVALUATED)

        if isinstance(match, DirectAction):
            logger.info("Ticket %s matched rule %s (%s)", ticket.id, match.rule.id, match.action.type.value)
            if isinstance(match.action, Escalate):
                return await self._escalate(run, match.rule, match.action)
            plan = self._plan_for_rule(run, match.rule, agents, now)
        else:
            plan = self._plan_by_score(run, agents, now)

        if not plan:
            run.flow.advance(DecisionState.NO_ELIGIBLE_AGENT)
            return await self._finish_failed(
                run,
                FailureReason.NO_ELIGIBLE_AGENT,
                "all candidates are unavailable or at capacity",
                error_code=NoEligibleAgent.code,
            )

        chosen = await self._reserve_first(run, plan)
        if chosen is None:
            run.flow.advance(DecisionState.NO_ELIGIBLE_AGENT)
            return await self._finish_failed(
                run,
                FailureReason.NO_ELIGIBLE_AGENT,
                f"capacity exhausted after {run.flow.reservation_attempts()} reservation attempts",
                error_code=NoEligibleAgent.code,
            )
        return await self._commit(run, chosen)

    def _plan_for_rule(
        self, run: _Run, rule: Rule, agents: tuple[Agent, ...], now: datetime
    ) -> list[_Candidate]:
        action = rule.action

        if isinstance(action, AssignGroup):
            if self._config.group_resolution == GroupResolution.GROUP:
                return [_Candidate(
                    target_kind=TargetKind.GROUP,
                    target_id=action.group_id,
                    confidence=1.0,
                    reason=f"Rule {rule.id}: assigned to group {action.group_id}",
                    rule_id=rule.id,
                )]
            members = [a for a in agents if a.in_group(action.group_id)]
            plan = self._plan_by_score(run, members, now)
            return [
                _Candidate(
                    target_kind=c.target_kind,
                    target_id=c.target_id,
                    confidence=c.confidence,
                    reason=f"Rule {rule.id}: group {action.group_id}, {c.reason}",
                    rule_id=rule.id,
                    breakdown=c.breakdown,
                )
                for c in plan
            ]

        if not isinstance(action, AssignAgent):
            raise TypeError(f"Rule {rule.id} has no assignment target: {action!r}")
        target = next((a for a in agents if a.id == action.agent_id), None)
        if target is not None and target.id not in run.exclude and target.is_eligible(now):
            direct = _Candidate(
                target_kind=TargetKind.AGENT,
                target_id=target.id,
                confidence=1.0,
                reason=f"Rule {rule.id}: assigned to agent {target.id}",
                rule_id=rule.id,
            )
            fallback = self._plan_by_score(
                run, [a for a in agents if a.id != target.id], now,
                note=f"Rule {rule.id} target {target.id} at capacity; ",
            )
            return [direct, *fallback]

        logger.warning(
            "Ticket %s: rule %s names agent %s which is unknown or ineligible, scoring instead",
            run.ticket.id, rule.id, action.agent_id,
        )
        return self._plan_by_score(
            run, agents, now,
            note=f"Rule {rule.id} target {action.agent_id} unavailable; ",
        )

    def _plan_by_score(
        self,
        run: _Run,
        agents: Iterable[Agent],
        now: datetime,
        note: str = "",
    ) -> list[_Candidate]:
        candidates = eligible_candidates(agents, now, exclude=run.exclude)
        if not candidates:
            return []
        ranked = rank(run.ticket, candidates, self._config.weights)
        return [
            _Candidate(
                target_kind=TargetKind.AGENT,
                target_id=sc.agent.id,
                confidence=sc.score,
                reason=f"{note}best of {len(ranked)} candidates, {sc.breakdown.explain()}",
                breakdown=sc.breakdown,
            )
            for sc in ranked
        ]

    async def _reserve_first(self, run: _Run, plan: list[_Candidate]) -> _Candidate | None:
        """Walk the plan best-first until a reservation sticks (bounded)."""
        for candidate in plan[: self._config.max_reservation_attempts]:
            run.flow.advance(DecisionState.CANDIDATE_SELECTED)
            if not candidate.needs_capacity:
                return candidate
            outcome = await self._tracker.reserve(candidate.target_id)
            if isinstance(outcome, Reserved):
                run.held = candidate
                return candidate
            logger.warning(
                "Ticket %s: agent %s at capacity (%d/%d), trying next candidate",
                run.ticket.id, outcome.agent_id, outcome.workload, outcome.max_capacity,
            )
        return None

    async def _commit(self, run: _Run, chosen: _Candidate) -> DecisionResult:
        run.flow.advance(DecisionState.RESERVED)
        ticket = run.ticket
        assignment = Assignment(
            ticket_id=ticket.id,
            target_kind=chosen.target_kind,
            target_id=chosen.target_id,
            confidence=chosen.confidence,
            reason=run.reason_prefix + chosen.reason,
            rule_id=chosen.rule_id,
            breakdown=chosen.breakdown,
            rule_set_version=run.rule_set.version if run.rule_set else None,
            supersedes=run.supersedes.id if run.supersedes else None,
            decided_at=self._clock(),
        )

        try:
            await with_backoff(
                lambda: self._store.save(assignment), self._config.retry, operation="assignment save"
            )
        except TransientError as e:
            await self._rollback(run)
            return await self._finish_failed(
                run,
                FailureReason.ASSIGNMENT_STORE_UNAVAILABLE,
                e.message,
                error_code=AssignmentStoreUnavailable.code,
            )
        run.saved = assignment

        transitions = run.flow.history + (DecisionState.COMMITTED,)
        record = AuditRecord(
            ticket_id=ticket.id,
            state=DecisionState.COMMITTED,
            reason=assignment.reason,
            target_kind=assignment.target_kind,
            target_id=assignment.target_id,
            assignment_id=assignment.id,
            rule_id=assignment.rule_id,
            confidence=assignment.confidence,
            breakdown=assignment.breakdown,
            rule_set_version=assignment.rule_set_version,
            attempts=run.flow.reservation_attempts(),
            transitions=transitions,
            occurred_at=assignment.decided_at,
        )
        try:
            await with_backoff(
                lambda: self._audit.append(record), self._config.retry, operation="audit append"
            )
        except TransientError as e:
            await self._rollback(run)
            return await self._finish_failed(
                run,
                FailureReason.AUDIT_SINK_UNAVAILABLE,
                e.message,
                error_code=AuditSinkUnavailable.code,
                audit=False,
            )

        # No awaits from here to return: the commit cannot be interrupted.
        self._ledger.record(assignment)
        run.held = None
        run.saved = None
        run.flow.advance(DecisionState.COMMITTED)
        logger.info(
            "Ticket %s → %s %s (confidence %.3f, rule %s)",
            ticket.id, assignment.target_kind.value, assignment.target_id,
            assignment.confidence, assignment.rule_id,
        )
        self._spawn(self._propagate(assignment))
        previous = run.supersedes
        if previous is not None and previous.agent_id:
            self._spawn(self._release_previous(ticket.id, previous.agent_id))
        return DecisionResult(
            ticket_id=ticket.id,
            state=DecisionState.COMMITTED,
            assignment=assignment,
            transitions=run.flow.history,
        )

    async def _escalate(self, run: _Run, rule: Rule, action: Escalate) -> DecisionResult:
        ticket = run.ticket
        signal = EscalationSignal(
            ticket_id=ticket.id,
            reason=action.reason,
            rule_id=rule.id,
            rule_set_version=run.rule_set.version if run.rule_set else None,
            raised_at=self._clock(),
        )
        try:
            await with_backoff(
                lambda: self._escalations.enqueue(signal),
                self._config.retry,
                operation="escalation enqueue",
            )
        except TransientError as e:
            return await self._finish_failed(
                run, FailureReason.ESCALATION_QUEUE_UNAVAILABLE, e.message, error_code=e.code
            )

        run.flow.advance(DecisionState.ESCALATED)
        logger.info("Ticket %s escalated by rule %s: %s", ticket.id, rule.id, action.reason)
        if run.supersedes is not None:
            # escalating an assigned ticket takes it away from its agent
            self._ledger.close(ticket.id)
            self._closing.add(ticket.id)
            self._spawn(self._retire(run.supersedes))

        record = AuditRecord(
            ticket_id=ticket.id,
            state=DecisionState.ESCALATED,
            reason=action.reason,
            rule_id=rule.id,
            rule_set_version=signal.rule_set_version,
            transitions=run.flow.history,
            occurred_at=signal.raised_at,
        )
        await self._audit_best_effort(record)
        return DecisionResult(
            ticket_id=ticket.id,
            state=DecisionState.ESCALATED,
            escalation=signal,
            transitions=run.flow.history,
        )

    # ── Failure handling ─────────────────────────────────────────────

    async def _rollback(self, run: _Run) -> None:
        held, run.held = run.held, None
        saved, run.saved = run.saved, None
        if held is not None and held.needs_capacity:
            logger.warning("Ticket %s: rolling back reservation on agent %s", run.ticket.id, held.target_id)
            await self._tracker.release(held.target_id)
        if saved is not None:
            try:
                await with_backoff(
                    lambda: self._store.discard(saved), self._config.retry, operation="assignment discard"
                )
            except TransientError:
                logger.error(
                    "Ticket %s: uncommitted assignment %s is still in the store", run.ticket.id, saved.id
                )

    async def _finish_failed(
        self,
        run: _Run,
        reason: FailureReason,
        message: str,
        *,
        error_code: str | None = None,
        audit: bool = True,
    ) -> DecisionResult:
        flow = run.flow
        if not flow.is_terminal:
            flow.advance(DecisionState.FAILED)
        ticket_id = flow.ticket_id
        logger.warning("Ticket %s: decision ended %s (%s): %s", ticket_id, flow.state.value, reason.value, message)
        record = AuditRecord(
            ticket_id=ticket_id,
            state=flow.state,
            reason=message,
            rule_set_version=run.rule_set.version if run.rule_set else None,
            attempts=flow.reservation_attempts(),
            transitions=flow.history,
            error_code=error_code or reason.value,
            occurred_at=self._clock(),
        )
        if audit:
            await self._audit_best_effort(record)
        else:
            # the audit sink is what failed; one direct attempt, no backoff
            try:
                await self._audit.append(record)
            except TransientError:
                logger.error("Ticket %s: failure could not be audited", ticket_id)
        return DecisionResult(
            ticket_id=ticket_id,
            state=flow.state,
            failure=Failure(ticket_id=ticket_id, reason=reason, message=message),
            transitions=flow.history,
        )

    async def _audit_best_effort(self, record: AuditRecord) -> None:
        try:
            await with_backoff(
                lambda: self._audit.append(record), self._config.retry, operation="audit append"
            )
        except TransientError:
            logger.error("Ticket %s: %s decision could not be audited", record.ticket_id, record.state.value)

    # ── Post-commit propagation ──────────────────────────────────────

    async def _release_previous(self, ticket_id: str, agent_id: str) -> None:
        await self.release_capacity(agent_id)
        logger.info("Ticket %s: released previous agent %s after reassignment", ticket_id, agent_id)

    async def _retire(self, previous: Assignment) -> None:
        try:
            await with_backoff(
                lambda: self._store.close(previous),
                self._config.retry,
                operation="assignment close",
            )
        except TransientError:
            logger.error(
                "Ticket %s escalated but assignment %s is still open in the store",
                previous.ticket_id, previous.id,
            )
        finally:
            self._closing.discard(previous.ticket_id)
        if previous.agent_id:
            await self._release_previous(previous.ticket_id, previous.agent_id)

    async def _propagate(self, assignment: Assignment) -> None:
        try:
            await with_backoff(
                lambda: self._sink.publish(assignment),
                self._config.retry,
                operation="assignment publish",
            )
        except TransientError:
            logger.error(
                "Assignment %s for ticket %s committed but not propagated",
                assignment.id, assignment.ticket_id,
            )
        except Exception:
            logger.exception("Assignment sink rejected assignment %s", assignment.id)
        if assignment.agent_id:
            await self._directory.push_workload(assignment.agent_id)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
