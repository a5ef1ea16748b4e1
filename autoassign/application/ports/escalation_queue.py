"""Port interface for the human-review queue."""

from abc import ABC, abstractmethod

from autoassign.domain.entities.decision import EscalationSignal


class EscalationQueue(ABC):
    @abstractmethod
    async def enqueue(self, signal: EscalationSignal) -> None:
        """Raises SinkUnavailable on transient failure."""
        ...
