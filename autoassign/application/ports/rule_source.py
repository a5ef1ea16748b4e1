"""Port interface for the external, versioned rule repository."""

from abc import ABC, abstractmethod

from autoassign.domain.entities.rule import RuleSet


class RuleSource(ABC):
    @abstractmethod
    async def load_rule_set(self) -> RuleSet:
        """Return the current rule set. Raises SourceUnavailable on transient failure."""
        ...
