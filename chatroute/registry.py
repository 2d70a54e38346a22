"""
Model registry for chatroute.

Holds the static catalog of model descriptors (quality, latency,
reliability, specialization, cost) and the plan × region availability map.
Both are read-only after construction and safe to share between
concurrent request handlers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .config import Config


# ── Plans & regions ───────────────────────────────────────────────────────────

class PlanTier(str, Enum):
    """Subscription tiers, ordered from cheapest to most privileged."""

    STARTER = "STARTER"
    LITE = "LITE"
    PLUS = "PLUS"
    PRO = "PRO"
    APEX = "APEX"
    SOVEREIGN = "SOVEREIGN"

    @property
    def rank(self) -> int:
        return _PLAN_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, PlanTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, PlanTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, PlanTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, PlanTier):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def coerce(cls, value: Union[str, "PlanTier"]) -> "PlanTier":
        """Return the PlanTier for *value* (case-insensitive).

        Raises:
            ValueError: If *value* names no known plan.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(
                f"Unknown plan {value!r}; expected one of "
                f"{[p.value for p in cls]}"
            ) from None


_PLAN_ORDER: Tuple[PlanTier, ...] = tuple(PlanTier)


class Region(str, Enum):
    """Routing region. Availability differs between India and elsewhere."""

    IN = "IN"
    INTL = "INTL"

    @classmethod
    def coerce(cls, value: Union[str, "Region", None]) -> "Region":
        if value is None:
            return cls.IN
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown region {value!r}; expected 'IN' or 'INTL'") from None


SPECIALIZATIONS = ("code", "business", "writing", "reasoning")


# ── Model descriptors ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SpecializationVector:
    """Per-domain aptitude of a model, each in [0, 1]."""
    code: float = 0.5
    business: float = 0.5
    writing: float = 0.5
    reasoning: float = 0.5

    def get(self, tag: Optional[str]) -> float:
        """Score for *tag*, or 0.0 when *tag* is None or unknown."""
        if tag in SPECIALIZATIONS:
            return getattr(self, tag)
        return 0.0


@dataclass(frozen=True)
class ModelDescriptor:
    """Information about an upstream completion model."""
    id: str
    provider: str
    display_name: str
    quality_score: float
    latency_score: float
    reliability_score: float
    specialization: SpecializationVector
    cost_per_1m: float

    def __post_init__(self) -> None:
        for name in ("quality_score", "latency_score", "reliability_score"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be 0.0–1.0 for {self.id!r}, got {value}")
        if self.cost_per_1m < 0:
            raise ValueError(f"cost_per_1m must be >= 0 for {self.id!r}, got {self.cost_per_1m}")

    def estimate_cost(self, tokens: int) -> float:
        """Cost of *tokens* tokens at this model's per-1M rate."""
        return (self.cost_per_1m * tokens) / 1_000_000

    @property
    def is_flash(self) -> bool:
        return "flash" in self.id

    @classmethod
    def from_dict(cls, model_def: Dict) -> "ModelDescriptor":
        return cls(
            id=model_def['id'],
            provider=model_def['provider'],
            display_name=model_def.get('display_name', model_def['id']),
            quality_score=model_def['quality_score'],
            latency_score=model_def['latency_score'],
            reliability_score=model_def['reliability_score'],
            specialization=SpecializationVector(**model_def.get('specialization', {})),
            cost_per_1m=model_def['cost_per_1m'],
        )


# ── Registry ──────────────────────────────────────────────────────────────────

class ModelRegistry:
    """Registry of model descriptors and per-plan, per-region availability."""

    def __init__(self, config: Config):
        """Initialize model registry.

        Args:
            config: Configuration instance with model definitions
        """
        self.config = config
        self._models: Tuple[ModelDescriptor, ...] = tuple(
            ModelDescriptor.from_dict(m) for m in config.get_models()
        )
        if not self._models:
            raise ValueError("Model registry is empty; at least one model is required")
        self._by_id: Dict[str, ModelDescriptor] = {m.id: m for m in self._models}
        self._availability: Dict[Region, Dict[PlanTier, Tuple[str, ...]]] = {
            region: self._load_availability(region) for region in Region
        }
        self._default_ids: Tuple[str, ...] = tuple(
            config.get_default_model_ids() or [self._models[0].id]
        )

    def _load_availability(self, region: Region) -> Dict[PlanTier, Tuple[str, ...]]:
        mapping = {}
        for plan_name, model_ids in self.config.get_plan_availability(region.value).items():
            unknown = [mid for mid in model_ids if mid not in self._by_id]
            if unknown:
                raise ValueError(
                    f"Plan {plan_name} ({region.value}) references unknown models: {unknown}"
                )
            mapping[PlanTier.coerce(plan_name)] = tuple(model_ids)
        return mapping

    @property
    def first(self) -> ModelDescriptor:
        """The registry's first entry, the last-resort model."""
        return self._models[0]

    def get_model(self, model_id: str) -> Optional[ModelDescriptor]:
        """Get model by id, or None."""
        return self._by_id.get(model_id)

    def list_models(self) -> List[ModelDescriptor]:
        """All registered models in registry order."""
        return list(self._models)

    def get_providers(self) -> List[str]:
        """Sorted list of unique provider names."""
        return sorted({m.provider for m in self._models})

    def available_model_ids(self, plan: PlanTier, region: Region = Region.IN) -> List[str]:
        """Model ids a plan may use in a region (before kill-switch filtering)."""
        return list(self._availability[region].get(plan, self._default_ids))

    def available_models(self, plan: PlanTier, region: Region = Region.IN) -> List[ModelDescriptor]:
        """Descriptors a plan may use in a region, in registry order."""
        allowed = set(self.available_model_ids(plan, region))
        return [m for m in self._models if m.id in allowed]

    def cost_of(self, model_id: str, default: float = 100.0) -> float:
        """Per-1M cost of *model_id*, or *default* for models outside the catalog."""
        model = self._by_id.get(model_id)
        return model.cost_per_1m if model else default
