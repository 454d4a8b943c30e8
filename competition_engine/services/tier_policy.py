# services/tier_policy.py
"""
Tier-dependent judging rules.

Council and Regional submissions get exactly one assigned judge whose
evaluation is the canonical score. National submissions are scored by every
National judge and the canonical score is the rounded mean.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Sequence

from competition_engine.db.enums import Level
from competition_engine.db.schemas.evaluation import EvaluationRead
from competition_engine.utils.location import location_key
from competition_engine.utils.sentinels import MISSING

_NEXT_LEVEL: dict[Level, Optional[Level]] = {
    Level.COUNCIL: Level.REGIONAL,
    Level.REGIONAL: Level.NATIONAL,
    Level.NATIONAL: None,
}


def next_level(level: Level) -> Optional[Level]:
    return _NEXT_LEVEL[Level(level)]


@dataclass(frozen=True, slots=True)
class JudgeScope:
    """Filter for the judge directory; MISSING means the column is not constrained."""
    level: Level
    region: Any = MISSING
    council: Any = MISSING

    def as_filter(self) -> dict[str, Any]:
        return {"level": self.level, "region": self.region, "council": self.council}


class TierPolicy(ABC):
    requires_assignment: ClassVar[bool]

    def __init__(self, level: Level) -> None:
        self.level = Level(level)

    @abstractmethod
    def canonical_score(self, evaluations: Sequence[EvaluationRead]) -> float:
        """The submission score given its evaluations, oldest first."""

    def judge_scope(self, region: Optional[str], council: Optional[str]) -> JudgeScope:
        if self.level == Level.COUNCIL:
            return JudgeScope(self.level, region, council)
        if self.level == Level.REGIONAL:
            return JudgeScope(self.level, region)
        return JudgeScope(self.level)

    def location_key(self, region: Optional[str], council: Optional[str]) -> str:
        return location_key(self.level, region, council)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.level})"


class OneToOnePolicy(TierPolicy):
    requires_assignment = True

    def canonical_score(self, evaluations: Sequence[EvaluationRead]) -> float:
        # one judge per submission; if a stray duplicate exists the earliest wins
        if not evaluations:
            return 0.0
        return float(evaluations[0].average_score)


class OneToManyPolicy(TierPolicy):
    requires_assignment = False

    def canonical_score(self, evaluations: Sequence[EvaluationRead]) -> float:
        if not evaluations:
            return 0.0
        mean = sum(e.average_score for e in evaluations) / len(evaluations)
        return round(mean, 2)


def policy_for(level: Level) -> TierPolicy:
    level = Level(level)
    if level == Level.NATIONAL:
        return OneToManyPolicy(level)
    return OneToOnePolicy(level)
