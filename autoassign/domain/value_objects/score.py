"""Score breakdown value object: per-factor contributions of a ranking."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class FactorScore:
    name: str
    value: float  # raw factor in [0, 1]
    weight: float
    contribution: float  # value * weight


@dataclass(frozen=True)
class ScoreBreakdown:
    skill_match: FactorScore
    workload: FactorScore
    historical_success: FactorScore
    response_time: FactorScore
    total: float

    def factors(self) -> tuple[FactorScore, ...]:
        return (self.skill_match, self.workload, self.historical_success, self.response_time)

    def explain(self) -> str:
        parts = ", ".join(
            f"{f.name}={f.value:.2f}×{f.weight:.2f}" for f in self.factors()
        )
        return f"score {self.total:.3f} ({parts})"

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "factors": [asdict(f) for f in self.factors()],
        }

    @classmethod
    def from_dict(cls, doc: dict) -> "ScoreBreakdown":
        factors = {f["name"]: FactorScore(**f) for f in doc["factors"]}
        return cls(
            skill_match=factors["skill_match"],
            workload=factors["workload"],
            historical_success=factors["historical_success"],
            response_time=factors["response_time"],
            total=float(doc["total"]),
        )
