"""Per-ticket decision state machine."""

from __future__ import annotations

from autoassign.domain.exceptions import InvalidTransition
from autoassign.domain.value_objects.enums import DecisionState

S = DecisionState

TERMINAL_STATES = frozenset({S.COMMITTED, S.ESCALATED, S.NO_ELIGIBLE_AGENT, S.FAILED})

ALLOWED_TRANSITIONS: dict[DecisionState, frozenset[DecisionState]] = {
    S.RECEIVED: frozenset({S.RULE_EVALUATED}),
    S.RULE_EVALUATED: frozenset({S.ESCALATED, S.CANDIDATE_SELECTED, S.NO_ELIGIBLE_AGENT}),
    # CANDIDATE_SELECTED -> CANDIDATE_SELECTED is the "lost the race, try next" edge
    S.CANDIDATE_SELECTED: frozenset({S.RESERVED, S.CANDIDATE_SELECTED, S.NO_ELIGIBLE_AGENT}),
    S.RESERVED: frozenset({S.COMMITTED}),
}


class DecisionFlow:
    """Tracks one decision's progress and rejects illegal moves.

    Any non-terminal state may move to FAILED.
    """

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        self._history: list[DecisionState] = [S.RECEIVED]

    @property
    def state(self) -> DecisionState:
        return self._history[-1]

    @property
    def history(self) -> tuple[DecisionState, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: DecisionState) -> None:
        current = self.state
        if current in TERMINAL_STATES:
            raise InvalidTransition(
                f"Ticket {self.ticket_id}: decision already ended in {current.value}"
            )
        if target != S.FAILED and target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransition(
                f"Ticket {self.ticket_id}: {current.value} -> {target.value} is not allowed"
            )
        self._history.append(target)

    def reservation_attempts(self) -> int:
        return sum(1 for s in self._history if s == S.CANDIDATE_SELECTED)
