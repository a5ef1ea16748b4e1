"""Port interface for downstream propagation of committed assignments."""

from abc import ABC, abstractmethod

from autoassign.domain.entities.assignment import Assignment


class AssignmentSink(ABC):
    @abstractmethod
    async def publish(self, assignment: Assignment) -> None:
        """Raises SinkUnavailable on transient failure."""
        ...
