"""Ticket entity: a normalized unit of work submitted for routing."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from autoassign.domain.exceptions import MalformedTicket

PRIORITY_RANGE = range(1, 5)
URGENCY_RANGE = range(1, 4)
IMPACT_RANGE = range(1, 4)


@dataclass(frozen=True)
class Ticket:
    id: str
    description: str
    category: str | None
    priority: int
    urgency: int = 3
    impact: int = 3
    requester: str | None = None
    required_skills: frozenset[str] = field(default_factory=frozenset)
    assignment_group: str | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    custom_fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze collections so a submitted ticket cannot change under a decision
        object.__setattr__(self, "required_skills", frozenset(self.required_skills))
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "custom_fields", MappingProxyType(dict(self.custom_fields)))

    def validate(self) -> None:
        """Raise MalformedTicket if the ticket cannot be routed."""
        if not isinstance(self.id, str) or not self.id.strip():
            raise MalformedTicket("Ticket id must be a non-empty string")
        if not _is_int(self.priority) or self.priority not in PRIORITY_RANGE:
            raise MalformedTicket(
                f"Ticket {self.id}: priority must be in 1..4",
                details={"priority": self.priority},
            )
        if not _is_int(self.urgency) or self.urgency not in URGENCY_RANGE:
            raise MalformedTicket(
                f"Ticket {self.id}: urgency must be in 1..3",
                details={"urgency": self.urgency},
            )
        if not _is_int(self.impact) or self.impact not in IMPACT_RANGE:
            raise MalformedTicket(
                f"Ticket {self.id}: impact must be in 1..3",
                details={"impact": self.impact},
            )
        if self.description is None:
            raise MalformedTicket(f"Ticket {self.id}: description is required")

    def normalized_skills(self) -> frozenset[str]:
        return frozenset(s.strip().lower() for s in self.required_skills if s and s.strip())


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
