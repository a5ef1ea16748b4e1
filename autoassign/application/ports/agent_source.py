"""Port interface for the external agent directory."""

from abc import ABC, abstractmethod

from autoassign.domain.entities.agent import Agent


class AgentSource(ABC):
    @abstractmethod
    async def load_agents(self) -> list[Agent]:
        """Return the current agent snapshot.

        Raises SourceUnavailable on transient failure.
        """
        ...

    @abstractmethod
    async def push_workload(self, agent_id: str, workload: int) -> None:
        """Report the engine's workload counter back to the source of truth."""
        ...
