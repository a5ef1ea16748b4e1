"""Port interface for the append-only decision audit log."""

from abc import ABC, abstractmethod

from autoassign.domain.entities.decision import AuditRecord


class AuditLog(ABC):
    @abstractmethod
    async def append(self, record: AuditRecord) -> None:
        """Persist one record. Raises AuditSinkUnavailable on transient failure."""
        ...

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> list[AuditRecord]:
        ...
