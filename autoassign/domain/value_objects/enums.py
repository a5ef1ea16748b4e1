"""Domain enums: pure Python, no external dependencies."""

from enum import Enum


class TargetKind(str, Enum):
    AGENT = "agent"
    GROUP = "group"


class ActionType(str, Enum):
    ASSIGN_AGENT = "assign_agent"
    ASSIGN_GROUP = "assign_group"
    ESCALATE = "escalate"


class Operator(str, Enum):
    EQ = "eq"
    NE = "ne"
    IN = "in"
    NOT_IN = "not_in"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"
    CONTAINS = "contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class DecisionState(str, Enum):
    RECEIVED = "received"
    RULE_EVALUATED = "rule_evaluated"
    CANDIDATE_SELECTED = "candidate_selected"
    RESERVED = "reserved"
    COMMITTED = "committed"
    ESCALATED = "escalated"
    NO_ELIGIBLE_AGENT = "no_eligible_agent"
    FAILED = "failed"


class FailureReason(str, Enum):
    NO_ELIGIBLE_AGENT = "no_eligible_agent"
    MALFORMED_TICKET = "malformed_ticket"
    DIRECTORY_UNAVAILABLE = "directory_unavailable"
    RULES_UNAVAILABLE = "rules_unavailable"
    AUDIT_SINK_UNAVAILABLE = "audit_sink_unavailable"
    ESCALATION_QUEUE_UNAVAILABLE = "escalation_queue_unavailable"
    ASSIGNMENT_STORE_UNAVAILABLE = "assignment_store_unavailable"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


class GroupResolution(str, Enum):
    GROUP = "group"
    SCORE_MEMBERS = "score_members"
