"""Decision endpoints: route, reassign and close tickets."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from autoassign.application.use_cases.assign_ticket import AssignmentCoordinator
from autoassign.domain.entities.decision import DecisionResult
from autoassign.domain.exceptions import TransientError
from autoassign.domain.value_objects.enums import FailureReason
from autoassign.infrastructure.api.dependencies import get_coordinator
from autoassign.infrastructure.api.schemas import (
    AssignmentOut,
    DecisionOut,
    ReassignIn,
    TicketIn,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["decisions"])

FAILURE_STATUS: dict[FailureReason, int] = {
    FailureReason.NO_ELIGIBLE_AGENT: 409,
    FailureReason.MALFORMED_TICKET: 422,
    FailureReason.DIRECTORY_UNAVAILABLE: 503,
    FailureReason.RULES_UNAVAILABLE: 503,
    FailureReason.AUDIT_SINK_UNAVAILABLE: 503,
    FailureReason.ESCALATION_QUEUE_UNAVAILABLE: 503,
    FailureReason.ASSIGNMENT_STORE_UNAVAILABLE: 503,
    FailureReason.CANCELLED: 504,
    FailureReason.INTERNAL_ERROR: 500,
}


def status_for(result: DecisionResult) -> int:
    if result.committed:
        return 200
    if result.escalated:
        return 202
    if result.failure is None:
        return 500
    return FAILURE_STATUS.get(result.failure.reason, 500)


def _respond(result: DecisionResult) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(result),
        content=DecisionOut.from_domain(result).model_dump(mode="json"),
    )


@router.post("/decisions", response_model=DecisionOut)
async def decide(
    body: TicketIn,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    """Route one ticket to an agent, a group, or escalation."""
    result = await coordinator.decide(body.to_domain())
    return _respond(result)


@router.post("/tickets/{ticket_id}/reassign", response_model=DecisionOut)
async def reassign(
    ticket_id: str,
    body: ReassignIn,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    """Pick a new target for a ticket, excluding the current agent."""
    if body.ticket.id != ticket_id:
        raise HTTPException(status_code=422, detail="Ticket id in path and body differ")
    result = await coordinator.reassign(body.ticket.to_domain(), body.reason)
    return _respond(result)


@router.post("/tickets/{ticket_id}/close")
async def close_ticket(
    ticket_id: str,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    """Deactivate the ticket's assignment and free the agent's slot."""
    try:
        closed = await coordinator.close_ticket(ticket_id)
    except TransientError as e:
        raise HTTPException(status_code=503, detail=e.to_dict())
    if closed is None:
        raise HTTPException(status_code=404, detail="Ticket has no active assignment")
    return {"status": "ok", "closed": AssignmentOut.from_domain(closed).model_dump(mode="json")}


@router.get("/tickets/{ticket_id}/assignments")
async def ticket_assignments(
    ticket_id: str,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    """Active assignment, assignment history and audit trail of one ticket."""
    try:
        active = await coordinator.active_assignment(ticket_id)
        history = await coordinator.history(ticket_id)
        audit = await coordinator.audit_trail(ticket_id)
    except TransientError as e:
        raise HTTPException(status_code=503, detail=e.to_dict())

    return {
        "ticket_id": ticket_id,
        "active": AssignmentOut.from_domain(active).model_dump(mode="json") if active else None,
        "history": [AssignmentOut.from_domain(a).model_dump(mode="json") for a in history],
        "audit": [r.to_dict() for r in audit],
    }
