"""Pydantic request/response models for the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from autoassign.domain.entities.agent import Agent
from autoassign.domain.entities.assignment import Assignment
from autoassign.domain.entities.decision import DecisionResult
from autoassign.domain.entities.ticket import Ticket


class TicketIn(BaseModel):
    # Ranges are checked by Ticket.validate() so rejections reach the audit log
    id: str
    description: str = ""
    category: str | None = None
    priority: int = 3
    urgency: int = 3
    impact: int = 3
    requester: str | None = None
    required_skills: list[str] = Field(default_factory=list)
    assignment_group: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> Ticket:
        return Ticket(
            id=self.id,
            description=self.description,
            category=self.category,
            priority=self.priority,
            urgency=self.urgency,
            impact=self.impact,
            requester=self.requester,
            required_skills=frozenset(self.required_skills),
            assignment_group=self.assignment_group,
            tags=frozenset(self.tags),
            custom_fields=self.custom_fields,
        )


class ReassignIn(BaseModel):
    ticket: TicketIn
    reason: str = ""


class AssignmentOut(BaseModel):
    id: str
    ticket_id: str
    target_kind: str
    target_id: str
    confidence: float
    reason: str
    rule_id: str | None = None
    breakdown: dict[str, Any] | None = None
    rule_set_version: str | None = None
    supersedes: str | None = None
    decided_at: datetime

    @classmethod
    def from_domain(cls, a: Assignment) -> "AssignmentOut":
        return cls(
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


class EscalationOut(BaseModel):
    reason: str
    rule_id: str | None = None
    rule_set_version: str | None = None
    raised_at: datetime


class FailureOut(BaseModel):
    reason: str
    message: str


class DecisionOut(BaseModel):
    ticket_id: str
    state: str
    reused: bool = False
    transitions: list[str] = Field(default_factory=list)
    assignment: AssignmentOut | None = None
    escalation: EscalationOut | None = None
    failure: FailureOut | None = None

    @classmethod
    def from_domain(cls, r: DecisionResult) -> "DecisionOut":
        escalation = None
        if r.escalation is not None:
            escalation = EscalationOut(
                reason=r.escalation.reason,
                rule_id=r.escalation.rule_id,
                rule_set_version=r.escalation.rule_set_version,
                raised_at=r.escalation.raised_at,
            )
        failure = None
        if r.failure is not None:
            failure = FailureOut(reason=r.failure.reason.value, message=r.failure.message)
        return cls(
            ticket_id=r.ticket_id,
            state=r.state.value,
            reused=r.reused,
            transitions=[s.value for s in r.transitions],
            assignment=AssignmentOut.from_domain(r.assignment) if r.assignment else None,
            escalation=escalation,
            failure=failure,
        )


class AgentOut(BaseModel):
    id: str
    name: str
    skills: list[str]
    groups: list[str]
    current_workload: int
    max_capacity: int
    available: bool
    timezone: str
    schedule: list[str]
    historical_success: float | None = None
    response_time: float | None = None

    @classmethod
    def from_domain(cls, a: Agent) -> "AgentOut":
        return cls(
            id=a.id,
            name=a.name,
            skills=sorted(a.skills),
            groups=sorted(a.groups),
            current_workload=a.current_workload,
            max_capacity=a.max_capacity,
            available=a.available,
            timezone=a.timezone,
            schedule=[w.render() for w in a.schedule],
            historical_success=a.historical_success,
            response_time=a.response_time,
        )
