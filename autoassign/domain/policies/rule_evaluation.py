"""RuleEvaluationPolicy: first matching active rule wins."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from autoassign.domain.entities.rule import Rule, RuleAction
from autoassign.domain.entities.ticket import Ticket
from autoassign.domain.value_objects.condition import matches


@dataclass(frozen=True)
class NoMatch:
    """No active rule applies; the ticket goes to scoring."""


@dataclass(frozen=True)
class DirectAction:
    action: RuleAction
    rule: Rule


MatchResult = Union[NoMatch, DirectAction]

NO_MATCH = NoMatch()


def evaluate(ticket: Ticket, rules: Iterable[Rule]) -> MatchResult:
    """Pure function: return the action of the first active rule that matches.

    Rules are considered in ascending priority, ties broken by rule id, no
    matter what order the caller passes them in. Inactive rules are skipped.
    """
    ordered = sorted((r for r in rules if r.active), key=Rule.sort_key)
    for rule in ordered:
        if matches(rule.condition, ticket):
            return DirectAction(action=rule.action, rule=rule)
    return NO_MATCH
