"""Engine exceptions.

Every error the engine raises derives from ``AssignmentEngineError`` and
carries a stable ``code`` that the API layer and the audit log reuse.
"""

from __future__ import annotations

from typing import Any


class AssignmentEngineError(Exception):
    """Base exception for all engine errors."""

    code = "engine_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class MalformedTicket(AssignmentEngineError):
    """Ticket failed structural validation. Fatal, never retried."""

    code = "malformed_ticket"


class InvalidRule(AssignmentEngineError):
    """A rule document could not be parsed into a condition/action."""

    code = "invalid_rule"


class NoEligibleAgent(AssignmentEngineError):
    """No available agent with spare capacity remains."""

    code = "no_eligible_agent"


class InvalidTransition(AssignmentEngineError):
    """The decision state machine was asked to make an illegal move."""

    code = "invalid_transition"


class TransientError(AssignmentEngineError):
    """Base class for failures of external collaborators that may be retried."""

    code = "transient_error"


class SourceUnavailable(TransientError):
    """Agent directory or rule source could not be read."""

    code = "directory_unavailable"


class AuditSinkUnavailable(TransientError):
    code = "audit_sink_unavailable"


class SinkUnavailable(TransientError):
    """Assignment sink or escalation queue rejected or dropped a write."""

    code = "sink_unavailable"


class AssignmentStoreUnavailable(TransientError):
    """The durable record of active assignments could not be read or written."""

    code = "assignment_store_unavailable"
