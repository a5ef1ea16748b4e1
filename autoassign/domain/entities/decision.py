"""Decision outcomes: what the engine hands back to its caller and audit log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from autoassign.domain.entities.assignment import Assignment
from autoassign.domain.value_objects.enums import DecisionState, FailureReason, TargetKind
from autoassign.domain.value_objects.score import ScoreBreakdown


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EscalationSignal:
    """Ticket routed to human review instead of an agent."""

    ticket_id: str
    reason: str
    rule_id: str | None = None
    rule_set_version: str | None = None
    raised_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class Failure:
    ticket_id: str
    reason: FailureReason
    message: str


@dataclass(frozen=True)
class DecisionResult:
    """Terminal outcome of one ``decide`` call.

    Exactly one of ``assignment``, ``escalation`` or ``failure`` is set.
    """

    ticket_id: str
    state: DecisionState
    assignment: Assignment | None = None
    escalation: EscalationSignal | None = None
    failure: Failure | None = None
    transitions: tuple[DecisionState, ...] = ()
    reused: bool = False

    @property
    def committed(self) -> bool:
        return self.state == DecisionState.COMMITTED

    @property
    def escalated(self) -> bool:
        return self.state == DecisionState.ESCALATED

    @property
    def failed(self) -> bool:
        return self.failure is not None


@dataclass(frozen=True)
class AuditRecord:
    """Append-only record of one terminal decision."""

    ticket_id: str
    state: DecisionState
    reason: str
    target_kind: TargetKind | None = None
    target_id: str | None = None
    assignment_id: str | None = None
    rule_id: str | None = None
    confidence: float | None = None
    breakdown: ScoreBreakdown | None = None
    rule_set_version: str | None = None
    attempts: int = 0
    transitions: tuple[DecisionState, ...] = ()
    error_code: str | None = None
    occurred_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "state": self.state.value,
            "reason": self.reason,
            "target_kind": self.target_kind.value if self.target_kind else None,
            "target_id": self.target_id,
            "assignment_id": self.assignment_id,
            "rule_id": self.rule_id,
            "confidence": self.confidence,
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
            "rule_set_version": self.rule_set_version,
            "attempts": self.attempts,
            "transitions": [s.value for s in self.transitions],
            "error_code": self.error_code,
            "occurred_at": self.occurred_at.isoformat(),
        }
