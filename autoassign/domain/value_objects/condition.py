"""Rule conditions: a tagged expression tree over a fixed ticket vocabulary.

Conditions are data, not code: they are built from comparisons and boolean
combinators and evaluated by walking the tree. Evaluation is three-valued
(True / False / None = unknown). A comparison on a field outside the
vocabulary, on a missing custom field, or between incompatible types is
unknown, and a rule only matches when its condition is definitely True.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from autoassign.domain.entities.ticket import Ticket
from autoassign.domain.exceptions import InvalidRule
from autoassign.domain.value_objects.enums import Operator

CUSTOM_PREFIX = "custom."

TICKET_FIELDS = frozenset({
    "id",
    "description",
    "category",
    "priority",
    "urgency",
    "impact",
    "requester",
    "assignment_group",
    "required_skills",
    "tags",
})

_MISSING = object()


def resolve_field(ticket: Ticket, name: str) -> Any:
    """Return the ticket's value for *name*, or ``_MISSING`` if unknown."""
    if name in TICKET_FIELDS:
        return getattr(ticket, name)
    if name.startswith(CUSTOM_PREFIX):
        return ticket.custom_fields.get(name[len(CUSTOM_PREFIX):], _MISSING)
    return _MISSING


def _norm(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (set, frozenset, list, tuple)):
        return frozenset(_norm(v) for v in value)
    if isinstance(value, Mapping):
        raise TypeError("nested objects are not comparable")
    return value


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (set, frozenset, list, tuple, dict)):
        return len(value) == 0
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(op: Operator, actual: Any, expected: Any) -> bool | None:
    if op is Operator.IS_EMPTY:
        return _is_empty(actual)
    if op is Operator.IS_NOT_EMPTY:
        return not _is_empty(actual)

    actual_n = _norm(actual)

    if op in (Operator.EQ, Operator.NE):
        expected_n = _norm(expected)
        if isinstance(actual_n, frozenset) and not isinstance(expected_n, frozenset):
            return None
        result = actual_n == expected_n
        return result if op is Operator.EQ else not result

    if op in (Operator.IN, Operator.NOT_IN):
        options = _norm(expected)
        if not isinstance(options, frozenset):
            return None
        if isinstance(actual_n, frozenset):
            # collection field: any member listed
            result = bool(actual_n & options)
        else:
            result = actual_n in options
        return result if op is Operator.IN else not result

    if op is Operator.CONTAINS:
        if isinstance(actual_n, frozenset):
            return _norm(expected) in actual_n
        if isinstance(actual_n, str) and isinstance(expected, str):
            return _norm(expected) in actual_n
        return None

    if op is Operator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return None
        low, high = expected
        if not (_is_number(actual) and _is_number(low) and _is_number(high)):
            return None
        return low <= actual <= high

    # ordering comparisons are numeric only
    if not (_is_number(actual) and _is_number(expected)):
        return None
    if op is Operator.GT:
        return actual > expected
    if op is Operator.GTE:
        return actual >= expected
    if op is Operator.LT:
        return actual < expected
    if op is Operator.LTE:
        return actual <= expected
    return None


@dataclass(frozen=True)
class Comparison:
    field: str
    op: Operator
    value: Any = None

    def evaluate(self, ticket: Ticket) -> bool | None:
        actual = resolve_field(ticket, self.field)
        if actual is _MISSING:
            return None
        try:
            return _compare(self.op, actual, self.value)
        except TypeError:
            # nested or unhashable custom values
            return None

    def fields(self) -> frozenset[str]:
        return frozenset({self.field})


@dataclass(frozen=True)
class AllOf:
    children: tuple["Condition", ...]

    def evaluate(self, ticket: Ticket) -> bool | None:
        unknown = False
        for child in self.children:
            result = child.evaluate(ticket)
            if result is False:
                return False
            if result is None:
                unknown = True
        return None if unknown else True

    def fields(self) -> frozenset[str]:
        return frozenset().union(*(c.fields() for c in self.children))


@dataclass(frozen=True)
class AnyOf:
    children: tuple["Condition", ...]

    def evaluate(self, ticket: Ticket) -> bool | None:
        unknown = False
        for child in self.children:
            result = child.evaluate(ticket)
            if result is True:
                return True
            if result is None:
                unknown = True
        return None if unknown else False

    def fields(self) -> frozenset[str]:
        return frozenset().union(*(c.fields() for c in self.children))


@dataclass(frozen=True)
class Not:
    child: "Condition"

    def evaluate(self, ticket: Ticket) -> bool | None:
        result = self.child.evaluate(ticket)
        return None if result is None else not result

    def fields(self) -> frozenset[str]:
        return self.child.fields()


@dataclass(frozen=True)
class Always:
    def evaluate(self, ticket: Ticket) -> bool | None:
        return True

    def fields(self) -> frozenset[str]:
        return frozenset()


Condition = Union[Comparison, AllOf, AnyOf, Not, Always]


def matches(condition: Condition, ticket: Ticket) -> bool:
    """True only when the condition is definitely satisfied."""
    return condition.evaluate(ticket) is True


# ─── Serialization ──────────────────────────────────────────────────


def condition_from_dict(doc: Any) -> Condition:
    """Build a condition tree from its JSON-compatible form.

    Raises:
        InvalidRule: if the document is not a well-formed condition.
    """
    if not isinstance(doc, dict) or len(doc) == 0:
        raise InvalidRule("Condition must be a non-empty object", details={"condition": doc})

    if "all" in doc or "any" in doc:
        key = "all" if "all" in doc else "any"
        children = doc[key]
        if not isinstance(children, list) or not children:
            raise InvalidRule(f"'{key}' expects a non-empty list", details={"condition": doc})
        built = tuple(condition_from_dict(c) for c in children)
        return AllOf(built) if key == "all" else AnyOf(built)

    if "not" in doc:
        return Not(condition_from_dict(doc["not"]))

    if doc.get("always") is True:
        return Always()

    if "field" in doc and "op" in doc:
        field_name = doc["field"]
        if not isinstance(field_name, str) or not field_name.strip():
            raise InvalidRule("Comparison field must be a non-empty string", details={"condition": doc})
        try:
            op = Operator(doc["op"])
        except ValueError as e:
            raise InvalidRule(f"Unknown operator {doc['op']!r}", details={"condition": doc}) from e
        value = doc.get("value")
        if op in (Operator.IN, Operator.NOT_IN) and not isinstance(value, list):
            raise InvalidRule(f"'{op.value}' expects a list value", details={"condition": doc})
        if op is Operator.BETWEEN and (not isinstance(value, list) or len(value) != 2):
            raise InvalidRule("'between' expects [low, high]", details={"condition": doc})
        if isinstance(value, list):
            value = tuple(value)
        return Comparison(field=field_name.strip(), op=op, value=value)

    raise InvalidRule("Unrecognized condition node", details={"condition": doc})


def condition_to_dict(condition: Condition) -> dict[str, Any]:
    if isinstance(condition, AllOf):
        return {"all": [condition_to_dict(c) for c in condition.children]}
    if isinstance(condition, AnyOf):
        return {"any": [condition_to_dict(c) for c in condition.children]}
    if isinstance(condition, Not):
        return {"not": condition_to_dict(condition.child)}
    if isinstance(condition, Always):
        return {"always": True}
    doc: dict[str, Any] = {"field": condition.field, "op": condition.op.value}
    if condition.op not in (Operator.IS_EMPTY, Operator.IS_NOT_EMPTY):
        value = condition.value
        doc["value"] = list(value) if isinstance(value, tuple) else value
    return doc
