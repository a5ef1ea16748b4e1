"""WorkloadTracker: the single authoritative store of agent workload.

Each agent has its own counter and its own ``asyncio.Lock``; a reservation is
a compare-and-increment performed under that agent's lock only, so tickets
routed to different agents never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reserved:
    agent_id: str
    workload: int
    max_capacity: int


@dataclass(frozen=True)
class CapacityExceeded:
    agent_id: str
    workload: int
    max_capacity: int


ReservationResult = Union[Reserved, CapacityExceeded]


@dataclass
class _Slot:
    workload: int
    max_capacity: int
    lock: asyncio.Lock


class WorkloadTracker:
    def __init__(self) -> None:
        self._slots: dict[str, _Slot] = {}

    def _slot(self, agent_id: str) -> _Slot | None:
        return self._slots.get(agent_id)

    def track(self, agent_id: str, max_capacity: int, workload: int = 0) -> None:
        """Register an agent or update its capacity.

        The workload is only seeded the first time an agent is seen; after
        that the engine's own counter wins.
        """
        if max_capacity < 0:
            raise ValueError(f"Agent {agent_id}: max_capacity must be >= 0")
        slot = self._slot(agent_id)
        if slot is None:
            self._slots[agent_id] = _Slot(
                workload=max(0, workload), max_capacity=max_capacity, lock=asyncio.Lock()
            )
            return
        if max_capacity < slot.workload:
            logger.warning(
                "Agent %s capacity lowered to %d below current workload %d",
                agent_id, max_capacity, slot.workload,
            )
        slot.max_capacity = max_capacity

    def forget(self, agent_id: str) -> None:
        self._slots.pop(agent_id, None)

    def is_tracked(self, agent_id: str) -> bool:
        return agent_id in self._slots

    def workload(self, agent_id: str) -> int:
        slot = self._slot(agent_id)
        return slot.workload if slot else 0

    def capacity(self, agent_id: str) -> int:
        slot = self._slot(agent_id)
        return slot.max_capacity if slot else 0

    def snapshot(self) -> dict[str, tuple[int, int]]:
        """agent_id -> (workload, max_capacity)."""
        return {aid: (s.workload, s.max_capacity) for aid, s in self._slots.items()}

    async def reserve(self, agent_id: str) -> ReservationResult:
        slot = self._slot(agent_id)
        if slot is None:
            logger.warning("Reserve for untracked agent %s refused", agent_id)
            return CapacityExceeded(agent_id=agent_id, workload=0, max_capacity=0)
        async with slot.lock:
            if slot.workload >= slot.max_capacity:
                return CapacityExceeded(
                    agent_id=agent_id, workload=slot.workload, max_capacity=slot.max_capacity
                )
            slot.workload += 1
            logger.debug("Reserved %s (%d/%d)", agent_id, slot.workload, slot.max_capacity)
            return Reserved(agent_id=agent_id, workload=slot.workload, max_capacity=slot.max_capacity)

    async def release(self, agent_id: str) -> int:
        """Decrement the agent's workload, clamped at zero. Returns the new value."""
        slot = self._slot(agent_id)
        if slot is None:
            logger.warning("Release for untracked agent %s ignored", agent_id)
            return 0
        async with slot.lock:
            if slot.workload <= 0:
                logger.warning("Double release for agent %s: workload already 0", agent_id)
                slot.workload = 0
                return 0
            slot.workload -= 1
            logger.debug("Released %s (%d/%d)", agent_id, slot.workload, slot.max_capacity)
            return slot.workload

