"""Agent entity: a human who can take tickets."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from autoassign.domain.value_objects.schedule import AvailabilityWindow, is_within_schedule


@dataclass(frozen=True)
class Agent:
    id: str
    name: str = ""
    skills: frozenset[str] = field(default_factory=frozenset)
    current_workload: int = 0
    max_capacity: int = 0
    available: bool = True
    timezone: str = "UTC"
    schedule: tuple[AvailabilityWindow, ...] = ()
    groups: frozenset[str] = field(default_factory=frozenset)
    historical_success: float | None = None
    response_time: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "skills", frozenset(self.skills))
        object.__setattr__(self, "groups", frozenset(self.groups))
        object.__setattr__(self, "schedule", tuple(self.schedule))
        if self.max_capacity < 0:
            raise ValueError(f"Agent {self.id}: max_capacity must be >= 0")

    def normalized_skills(self) -> frozenset[str]:
        return frozenset(s.strip().lower() for s in self.skills if s and s.strip())

    def has_capacity(self) -> bool:
        return self.current_workload < self.max_capacity

    def is_on_shift(self, moment: datetime) -> bool:
        return is_within_schedule(self.schedule, self.timezone, moment)

    def is_eligible(self, moment: datetime) -> bool:
        return self.available and self.has_capacity() and self.is_on_shift(moment)

    def in_group(self, group_id: str) -> bool:
        wanted = group_id.strip().lower()
        return any(g.strip().lower() == wanted for g in self.groups)

    def with_workload(self, workload: int) -> "Agent":
        return replace(self, current_workload=workload)
