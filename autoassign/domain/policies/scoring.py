"""ScoringPolicy: weighted multi-factor ranking of candidate agents."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from autoassign.domain.entities.agent import Agent
from autoassign.domain.entities.ticket import Ticket
from autoassign.domain.exceptions import NoEligibleAgent
from autoassign.domain.value_objects.score import FactorScore, ScoreBreakdown


@dataclass(frozen=True)
class ScoringWeights:
    """Factor weights plus the knobs that make ranking deterministic.

    Weights are normalized to sum to 1 so a perfect agent scores exactly 1.0.
    """

    skill: float = 0.40
    workload: float = 0.30
    history: float = 0.20
    response: float = 0.10
    neutral_metric: float = 0.5
    tie_epsilon: float = 1e-6

    def __post_init__(self) -> None:
        weights = (self.skill, self.workload, self.history, self.response)
        if any(w < 0 for w in weights):
            raise ValueError("Scoring weights must be non-negative")
        total = sum(weights)
        if total <= 0:
            raise ValueError("At least one scoring weight must be positive")
        if not 0.0 <= self.neutral_metric <= 1.0:
            raise ValueError("neutral_metric must be in [0, 1]")
        if self.tie_epsilon < 0:
            raise ValueError("tie_epsilon must be >= 0")
        object.__setattr__(self, "skill", self.skill / total)
        object.__setattr__(self, "workload", self.workload / total)
        object.__setattr__(self, "history", self.history / total)
        object.__setattr__(self, "response", self.response / total)


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class ScoredCandidate:
    agent: Agent
    score: float
    breakdown: ScoreBreakdown


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def skill_match(required: frozenset[str], agent_skills: frozenset[str]) -> float:
    """|required ∩ agent| / |required|; 1.0 when nothing is required."""
    if not required:
        return 1.0
    return len(required & agent_skills) / len(required)


def workload_factor(agent: Agent) -> float:
    if agent.max_capacity <= 0:
        return 0.0
    return _clamp(1.0 - agent.current_workload / agent.max_capacity)


def metric_or_neutral(value: float | None, neutral: float) -> float:
    return neutral if value is None else _clamp(value)


def score_agent(
    ticket: Ticket,
    agent: Agent,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> ScoredCandidate:
    factors = (
        ("skill_match", skill_match(ticket.normalized_skills(), agent.normalized_skills()), weights.skill),
        ("workload", workload_factor(agent), weights.workload),
        ("historical_success", metric_or_neutral(agent.historical_success, weights.neutral_metric), weights.history),
        ("response_time", metric_or_neutral(agent.response_time, weights.neutral_metric), weights.response),
    )
    scored = [FactorScore(name=n, value=v, weight=w, contribution=v * w) for n, v, w in factors]
    total = _clamp(sum(f.contribution for f in scored))
    breakdown = ScoreBreakdown(
        skill_match=scored[0],
        workload=scored[1],
        historical_success=scored[2],
        response_time=scored[3],
        total=total,
    )
    return ScoredCandidate(agent=agent, score=total, breakdown=breakdown)


def eligible_candidates(
    agents: Iterable[Agent],
    moment: datetime,
    exclude: Iterable[str] = (),
) -> list[Agent]:
    """Agents that are available, on shift and under capacity."""
    excluded = set(exclude)
    return [a for a in agents if a.id not in excluded and a.is_eligible(moment)]


def rank(
    ticket: Ticket,
    candidates: Iterable[Agent],
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> list[ScoredCandidate]:
    """Score and order candidates best-first.

    Ordering: higher score first; scores within ``tie_epsilon`` count as equal
    and fall back to lower current workload, then agent id.

    Raises:
        NoEligibleAgent: if there is nothing to rank.
    """
    scored = [score_agent(ticket, a, weights) for a in candidates]
    if not scored:
        raise NoEligibleAgent(f"Ticket {ticket.id}: no eligible agents to score")

    def compare(a: ScoredCandidate, b: ScoredCandidate) -> int:
        if abs(a.score - b.score) > weights.tie_epsilon:
            return -1 if a.score > b.score else 1
        if a.agent.current_workload != b.agent.current_workload:
            return -1 if a.agent.current_workload < b.agent.current_workload else 1
        if a.agent.id != b.agent.id:
            return -1 if a.agent.id < b.agent.id else 1
        return 0

    return sorted(scored, key=functools.cmp_to_key(compare))
