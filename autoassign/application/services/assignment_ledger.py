"""AssignmentLedger: in-process cache of the active assignment per ticket."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from autoassign.domain.entities.assignment import Assignment

logger = logging.getLogger(__name__)


@dataclass
class _TicketLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class AssignmentLedger:
    """Holds only open tickets and tickets with a decision in flight.

    The assignment store is the durable record; this is what the
    coordinator consults first. A ticket's lock lives only while some task
    holds or waits for it.
    """

    def __init__(self) -> None:
        self._active: dict[str, Assignment] = {}
        self._ticket_locks: dict[str, _TicketLock] = {}

    @asynccontextmanager
    async def hold(self, ticket_id: str) -> AsyncIterator[None]:
        """Serialize decisions for one ticket."""
        entry = self._ticket_locks.get(ticket_id)
        if entry is None:
            entry = self._ticket_locks[ticket_id] = _TicketLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._ticket_locks[ticket_id]

    def locks_in_use(self) -> int:
        return len(self._ticket_locks)

    def active(self, ticket_id: str) -> Assignment | None:
        return self._active.get(ticket_id)

    def record(self, assignment: Assignment) -> None:
        """Make *assignment* the ticket's only active assignment."""
        previous = self._active.get(assignment.ticket_id)
        if previous is not None and assignment.supersedes != previous.id:
            raise ValueError(
                f"Ticket {assignment.ticket_id} already has active assignment {previous.id}"
            )
        self._active[assignment.ticket_id] = assignment

    def restore(self, assignment: Assignment) -> None:
        """Cache an assignment loaded back from the store."""
        self._active[assignment.ticket_id] = assignment

    def close(self, ticket_id: str) -> Assignment | None:
        closed = self._active.pop(ticket_id, None)
        if closed is None:
            logger.info("Ticket %s has no active assignment to close", ticket_id)
        return closed

    def active_count(self) -> int:
        return len(self._active)
