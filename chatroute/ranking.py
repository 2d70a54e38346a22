"""
Candidate ranking for chatroute.

Scores each candidate model on a weighted blend of quality, cost, latency,
reliability, and specialization fit.  Weights shift with complexity (harder
messages favour quality) and budget pressure (pressure favours cost).
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .classifier import CASUAL, EXPERT, COMPLEXITY_TIERS
from .registry import ModelDescriptor

QUALITY_WEIGHTS: Dict[str, float] = {
    "CASUAL": 0.25,
    "SIMPLE": 0.35,
    "MEDIUM": 0.55,
    "COMPLEX": 0.75,
    "EXPERT": 0.95,
}

MAX_COST_PER_1M = 1300.0
HIGH_STAKES_QUALITY_BOOST = 0.15
RELIABILITY_WEIGHT = 0.10
SPECIALIZATION_WEIGHT = 0.15
FALLBACK_CHAIN_LENGTH = 3

BASE_CONFIDENCE = 0.7


@dataclass
class RankedModel:
    """A candidate with its score (None when scoring was skipped)."""
    model: ModelDescriptor
    score: Optional[float] = None


@dataclass
class RankingResult:
    """Ordered candidates plus the derived selection and confidence."""
    ranked: List[RankedModel]
    confidence: float
    scored: bool = True

    @property
    def selected(self) -> ModelDescriptor:
        return self.ranked[0].model

    @property
    def runners_up(self) -> List[ModelDescriptor]:
        """Next-best models after the selection, at most three."""
        return [r.model for r in self.ranked[1:1 + FALLBACK_CHAIN_LENGTH]]

    @property
    def scores(self) -> Dict[str, Optional[float]]:
        return {r.model.id: r.score for r in self.ranked}


def score_model(
    model: ModelDescriptor,
    complexity: str,
    pressure: float,
    is_high_stakes: bool,
    specialization: Optional[str],
) -> float:
    """Weighted score of one candidate.  Higher is better."""
    quality_weight = QUALITY_WEIGHTS[complexity]
    effective_quality = min(1.0, model.quality_score + (HIGH_STAKES_QUALITY_BOOST if is_high_stakes else 0.0))
    cost_norm = max(0.0, min(1.0, 1 - model.cost_per_1m / MAX_COST_PER_1M))

    adjusted_quality_weight = quality_weight * (0.85 - 0.35 * pressure)
    cost_weight = 0.25 + 0.45 * pressure
    latency_weight = 0.2 if complexity == CASUAL else 0.08
    spec_bonus = model.specialization.get(specialization) * SPECIALIZATION_WEIGHT

    return (
        adjusted_quality_weight * effective_quality
        + cost_weight * cost_norm
        + latency_weight * model.latency_score
        + RELIABILITY_WEIGHT * model.reliability_score
        + spec_bonus
    )


class RankingEngine:
    """Orders candidate models and estimates confidence in the top pick."""

    def __init__(self, last_resort: ModelDescriptor):
        """
        Args:
            last_resort: Returned alone when the candidate list is empty.
        """
        self.last_resort = last_resort

    def rank(
        self,
        candidates: List[ModelDescriptor],
        complexity: str,
        pressure: float,
        is_high_stakes: bool = False,
        specialization: Optional[str] = None,
    ) -> RankingResult:
        """Rank *candidates* best-first.

        Pools of zero or one model are returned as-is without scoring.
        Ties keep the input order (``sorted`` is stable).

        Raises:
            ValueError: If *complexity* is not a known tier.
        """
        if complexity not in COMPLEXITY_TIERS:
            raise ValueError(f"Unknown complexity tier {complexity!r}")

        if len(candidates) <= 1:
            ranked = [RankedModel(m) for m in (candidates or [self.last_resort])]
            return RankingResult(
                ranked=ranked,
                confidence=self.calculate_confidence(ranked, complexity, is_high_stakes, specialization),
                scored=False,
            )

        ranked = sorted(
            (
                RankedModel(m, score_model(m, complexity, pressure, is_high_stakes, specialization))
                for m in candidates
            ),
            key=lambda r: r.score,
            reverse=True,
        )
        return RankingResult(
            ranked=ranked,
            confidence=self.calculate_confidence(ranked, complexity, is_high_stakes, specialization),
        )

    @staticmethod
    def calculate_confidence(
        ranked: List[RankedModel],
        complexity: str,
        is_high_stakes: bool,
        specialization: Optional[str],
    ) -> float:
        """Heuristic confidence in the top-ranked model, capped at 1.0."""
        confidence = BASE_CONFIDENCE
        top = ranked[0]

        if len(ranked) >= 3:
            confidence += 0.1
        if complexity in (CASUAL, EXPERT):
            confidence += 0.08
        if is_high_stakes and top.model.quality_score >= 0.85:
            confidence += 0.1
        if specialization and top.model.specialization.get(specialization) >= 0.8:
            confidence += 0.07
        if len(ranked) >= 2 and top.score is not None and ranked[1].score is not None:
            if top.score - ranked[1].score > 0.15:
                confidence += 0.05

        return min(1.0, confidence)
