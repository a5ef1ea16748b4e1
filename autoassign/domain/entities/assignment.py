"""Assignment entity: the committed result of routing a ticket."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from autoassign.domain.value_objects.enums import TargetKind
from autoassign.domain.value_objects.score import ScoreBreakdown


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_assignment_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Assignment:
    ticket_id: str
    target_kind: TargetKind
    target_id: str
    confidence: float
    reason: str
    rule_id: str | None = None
    breakdown: ScoreBreakdown | None = None
    rule_set_version: str | None = None
    supersedes: str | None = None
    decided_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=new_assignment_id)

    @property
    def agent_id(self) -> str | None:
        return self.target_id if self.target_kind == TargetKind.AGENT else None

    def is_rule_driven(self) -> bool:
        return self.rule_id is not None and self.breakdown is None
