"""Port interface for the durable record of which assignment is active per ticket."""

from abc import ABC, abstractmethod

from autoassign.domain.entities.assignment import Assignment


class AssignmentStore(ABC):
    """All methods raise AssignmentStoreUnavailable on transient failure."""

    @abstractmethod
    async def save(self, assignment: Assignment) -> None:
        """Store *assignment* as the ticket's active one.

        If it supersedes another assignment, that one is closed in the same
        write.
        """
        ...

    @abstractmethod
    async def discard(self, assignment: Assignment) -> None:
        """Undo ``save``: drop the row and reopen the assignment it superseded."""
        ...

    @abstractmethod
    async def active_for(self, ticket_id: str) -> Assignment | None:
        ...

    @abstractmethod
    async def close(self, assignment: Assignment) -> None:
        """Mark *assignment* closed. No-op if it already is."""
        ...

    @abstractmethod
    async def history(self, ticket_id: str) -> list[Assignment]:
        """Every assignment the ticket ever had, oldest first."""
        ...
