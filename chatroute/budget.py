"""
Budget pressure and cost filtering for chatroute.

Budget pressure turns a user's usage ratio into a scalar in [0, 1]: zero
up to half the quota, one from 95% upwards, linear in between.  The cost
filter then narrows the candidate pool to cheaper models as pressure rises.
"""

from dataclasses import dataclass
from typing import List

from .registry import ModelDescriptor, PlanTier

PRESSURE_FLOOR_RATIO = 0.5
PRESSURE_CEILING_RATIO = 0.95


def calculate_budget_pressure(used: float, limit: float) -> float:
    """Usage ratio → pressure.

    Args:
        used: Tokens consumed in the period.
        limit: Token allowance for the period.

    Returns:
        1.0 when *limit* <= 0; 0.0 when the ratio is at most 0.5; 1.0 when
        it is at least 0.95; ``(ratio - 0.5) / 0.45`` in between.
    """
    if limit <= 0:
        return 1.0
    ratio = used / limit
    if ratio <= PRESSURE_FLOOR_RATIO:
        return 0.0
    if ratio >= PRESSURE_CEILING_RATIO:
        return 1.0
    return (ratio - PRESSURE_FLOOR_RATIO) / (PRESSURE_CEILING_RATIO - PRESSURE_FLOOR_RATIO)


@dataclass(frozen=True)
class CostThresholds:
    """Per-1M cost ceilings used by :func:`filter_by_budget`."""
    cheap: float = 300
    medium: float = 500
    expensive: float = 900
    apex_budget_threshold: float = 0.9

    def __post_init__(self) -> None:
        if not (0 <= self.cheap <= self.medium <= self.expensive):
            raise ValueError(
                f"cost thresholds must satisfy 0 <= cheap <= medium <= expensive, "
                f"got {self.cheap}, {self.medium}, {self.expensive}"
            )

    @classmethod
    def from_config(cls, config) -> "CostThresholds":
        raw = config.get_cost_thresholds()
        return cls(
            cheap=raw.get('cheap', cls.cheap),
            medium=raw.get('medium', cls.medium),
            expensive=raw.get('expensive', cls.expensive),
            apex_budget_threshold=config.get_apex_budget_threshold(),
        )


def filter_by_budget(
    models: List[ModelDescriptor],
    pressure: float,
    plan: PlanTier,
    is_high_stakes: bool,
    thresholds: CostThresholds = CostThresholds(),
) -> List[ModelDescriptor]:
    """Drop models too expensive for the current pressure.

    SOVEREIGN plans, high-stakes requests and APEX plans below the APEX
    threshold are never filtered.  Above 0.9 pressure only "cheap" models
    remain (or the single cheapest if none qualify); above 0.75 only
    "medium" ones; above 0.6 anything below "expensive".  The two softer
    bands return the input unchanged when they would empty it.
    """
    if not models:
        return models
    if plan is PlanTier.SOVEREIGN or is_high_stakes:
        return models
    if plan is PlanTier.APEX and pressure < thresholds.apex_budget_threshold:
        return models

    if pressure > 0.9:
        filtered = [m for m in models if m.cost_per_1m <= thresholds.cheap]
        return filtered or [min(models, key=lambda m: m.cost_per_1m)]

    if pressure > 0.75:
        filtered = [m for m in models if m.cost_per_1m <= thresholds.medium]
        return filtered or models

    if pressure > 0.6:
        filtered = [m for m in models if m.cost_per_1m < thresholds.expensive]
        return filtered or models

    return models
