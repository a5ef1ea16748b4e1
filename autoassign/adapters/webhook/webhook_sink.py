"""Webhook adapter: pushes assignments and escalations to a downstream URL."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from autoassign.application.ports.assignment_sink import AssignmentSink
from autoassign.application.ports.escalation_queue import EscalationQueue
from autoassign.domain.entities.assignment import Assignment
from autoassign.domain.entities.decision import EscalationSignal
from autoassign.domain.exceptions import SinkUnavailable

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


def assignment_payload(assignment: Assignment) -> dict[str, Any]:
    return {
        "event": "assignment.committed",
        "assignment_id": assignment.id,
        "ticket_id": assignment.ticket_id,
        "target_kind": assignment.target_kind.value,
        "target_id": assignment.target_id,
        "confidence": assignment.confidence,
        "reason": assignment.reason,
        "rule_id": assignment.rule_id,
        "breakdown": assignment.breakdown.to_dict() if assignment.breakdown else None,
        "rule_set_version": assignment.rule_set_version,
        "supersedes": assignment.supersedes,
        "decided_at": assignment.decided_at.isoformat(),
    }


def escalation_payload(signal: EscalationSignal) -> dict[str, Any]:
    return {
        "event": "ticket.escalated",
        "ticket_id": signal.ticket_id,
        "reason": signal.reason,
        "rule_id": signal.rule_id,
        "rule_set_version": signal.rule_set_version,
        "raised_at": signal.raised_at.isoformat(),
    }


class WebhookAssignmentSink(AssignmentSink, EscalationQueue):
    """POSTs JSON events; the coordinator owns retries.

    Transport errors and retryable status codes become SinkUnavailable so the
    coordinator's backoff applies. Other 4xx responses are permanent and
    raised as ``httpx.HTTPStatusError``.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def publish(self, assignment: Assignment) -> None:
        await self._post(assignment_payload(assignment))

    async def enqueue(self, signal: EscalationSignal) -> None:
        await self._post(escalation_payload(signal))

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload)
        except httpx.TransportError as e:
            raise SinkUnavailable(f"Webhook {self._url} unreachable: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise SinkUnavailable(
                f"Webhook {self._url} returned {response.status_code}",
                details={"status_code": response.status_code},
            )
        response.raise_for_status()
        logger.debug("Webhook delivered %s for ticket %s", payload["event"], payload["ticket_id"])
