"""Routing rules: condition/action pairs and the immutable rule-set snapshot."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Union

from autoassign.domain.exceptions import InvalidRule
from autoassign.domain.value_objects.condition import (
    Condition,
    condition_from_dict,
    condition_to_dict,
)
from autoassign.domain.value_objects.enums import ActionType


@dataclass(frozen=True)
class AssignAgent:
    agent_id: str
    type = ActionType.ASSIGN_AGENT


@dataclass(frozen=True)
class AssignGroup:
    group_id: str
    type = ActionType.ASSIGN_GROUP


@dataclass(frozen=True)
class Escalate:
    reason: str
    type = ActionType.ESCALATE


RuleAction = Union[AssignAgent, AssignGroup, Escalate]


@dataclass(frozen=True)
class Rule:
    id: str
    priority: int
    condition: Condition
    action: RuleAction
    active: bool = True
    description: str | None = None

    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.id)


@dataclass(frozen=True)
class RuleSet:
    """An ordered, versioned snapshot of rules handed to one decision."""

    version: str
    rules: tuple[Rule, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(sorted(self.rules, key=Rule.sort_key)))

    def active_rules(self) -> tuple[Rule, ...]:
        return tuple(r for r in self.rules if r.active)

    def __len__(self) -> int:
        return len(self.rules)


EMPTY_RULE_SET = RuleSet(version="empty")


# ─── Serialization ──────────────────────────────────────────────────


def action_from_dict(doc: Any) -> RuleAction:
    if not isinstance(doc, dict):
        raise InvalidRule("Action must be an object", details={"action": doc})
    try:
        action_type = ActionType(doc.get("type"))
    except ValueError as e:
        raise InvalidRule(f"Unknown action type {doc.get('type')!r}", details={"action": doc}) from e

    if action_type is ActionType.ESCALATE:
        reason = doc.get("reason") or doc.get("target") or "escalated by rule"
        return Escalate(reason=str(reason))

    target = doc.get("target")
    if not isinstance(target, str) or not target.strip():
        raise InvalidRule(f"'{action_type.value}' requires a target", details={"action": doc})
    if action_type is ActionType.ASSIGN_AGENT:
        return AssignAgent(agent_id=target.strip())
    return AssignGroup(group_id=target.strip())


def action_to_dict(action: RuleAction) -> dict[str, Any]:
    if isinstance(action, AssignAgent):
        return {"type": action.type.value, "target": action.agent_id}
    if isinstance(action, AssignGroup):
        return {"type": action.type.value, "target": action.group_id}
    return {"type": action.type.value, "reason": action.reason}


def rule_from_dict(doc: dict[str, Any]) -> Rule:
    """Build a Rule from its stored/JSON form.

    Expected keys: id, priority, condition, action, and optionally active and
    description.
    """
    if not isinstance(doc, dict):
        raise InvalidRule("Rule must be an object", details={"rule": doc})
    rule_id = doc.get("id")
    if rule_id is None or not str(rule_id).strip():
        raise InvalidRule("Rule id is required", details={"rule": doc})
    try:
        priority = int(doc.get("priority", 100))
    except (TypeError, ValueError) as e:
        raise InvalidRule(f"Rule {rule_id}: priority must be an integer") from e
    return Rule(
        id=str(rule_id).strip(),
        priority=priority,
        condition=condition_from_dict(doc.get("condition")),
        action=action_from_dict(doc.get("action")),
        active=bool(doc.get("active", True)),
        description=doc.get("description"),
    )


def rule_to_dict(rule: Rule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "priority": rule.priority,
        "condition": condition_to_dict(rule.condition),
        "action": action_to_dict(rule.action),
        "active": rule.active,
        "description": rule.description,
    }


def fingerprint(rules: list[Rule] | tuple[Rule, ...]) -> str:
    """Content hash used as the rule-set version when the source has none."""
    docs = sorted((rule_to_dict(r) for r in rules), key=lambda d: d["id"])
    payload = json.dumps(docs, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha1(payload).hexdigest()[:12]
