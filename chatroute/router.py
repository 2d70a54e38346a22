"""
Main routing interface for chatroute.

Combines message analysis, budget pressure, plan and region availability,
kill-switches, and candidate ranking into one deterministic model choice
per chat request.  :meth:`Router.route_with_quota` additionally lets an
external quota service substitute the chosen model, and the router exposes
the fallback advisor and metrics aggregator used once a call has failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Union

from .budget import CostThresholds, calculate_budget_pressure, filter_by_budget
from .classifier import CASUAL, ComplexityClassifier, HighStakesDetector, SpecializationDetector
from .config import Config
from .fallback import FallbackAdvisor, FallbackContext, FallbackDecision
from .metrics import FallbackMetric, FallbackMetricsAggregator
from .observability import LoggingSink, ObservabilitySink, RoutingEvent, emit, pressure_level
from .ranking import RankingEngine
from .registry import ModelDescriptor, ModelRegistry, PlanTier, Region
from .snapshot import SnapshotStore

_log = logging.getLogger(__name__)

BASE_TEMPERATURE = 0.7
REPETITIVE_TEMPERATURE_BOOST = 0.25
REASON_PRESSURE_THRESHOLD = 0.3
DOWNGRADE_PRESSURE_THRESHOLD = 0.7

ALL_KILLED_REASON = "all-models-killed-fallback"
MAINTENANCE_REASON = "maintenance-mode"


# ── Inputs & outputs ──────────────────────────────────────────────────────────

@dataclass
class RoutingInput:
    """One chat request as seen by the router."""
    text: str
    plan: Union[PlanTier, str]
    user_id: str
    monthly_used_tokens: int
    monthly_limit_tokens: int
    daily_used_tokens: int
    daily_limit_tokens: int
    is_repetitive: bool = False
    is_high_stakes_context: bool = False
    conversation_context: Optional[str] = None
    region: Union[Region, str, None] = None
    request_id: Optional[str] = None


@dataclass
class RoutingDecision:
    """Result of routing: the chosen model plus how and why it was chosen."""
    model_id: str
    provider: str
    display_name: str
    reason: str
    complexity: str
    budget_pressure: float
    estimated_cost: float
    expected_quality: str
    fallback_chain: List[str]
    temperature: float
    confidence: float
    specialization: Optional[str] = None
    was_kill_switched: bool = False
    kill_switch_reason: Optional[str] = None
    region: str = Region.IN.value
    reasoning: List[str] = field(default_factory=list)
    """Classifier notes, used by :meth:`Router.explain`."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "provider": self.provider,
            "display_name": self.display_name,
            "reason": self.reason,
            "complexity": self.complexity,
            "budget_pressure": self.budget_pressure,
            "estimated_cost": self.estimated_cost,
            "expected_quality": self.expected_quality,
            "specialization": self.specialization,
            "fallback_chain": list(self.fallback_chain),
            "temperature": self.temperature,
            "confidence": self.confidence,
            "was_kill_switched": self.was_kill_switched,
            "kill_switch_reason": self.kill_switch_reason,
            "region": self.region,
        }


@dataclass
class QuotaResult:
    """Answer from the quota service for a proposed model."""
    model_id: str
    was_downgraded: bool = False
    reason: Optional[str] = None


class QuotaGate(Protocol):
    """External per-user, per-model quota service."""

    async def get_best_available_model(
        self, user_id: str, plan: PlanTier, proposed_model_id: str, region: Region,
    ) -> QuotaResult: ...


def expected_quality(quality_score: float) -> str:
    """Bucket a quality score into 'max', 'high' or 'good'."""
    if quality_score >= 0.9:
        return "max"
    if quality_score >= 0.7:
        return "high"
    return "good"


def temperature_for(is_repetitive: bool) -> float:
    return BASE_TEMPERATURE + (REPETITIVE_TEMPERATURE_BOOST if is_repetitive else 0.0)


def build_reason(
    complexity: str,
    pressure: float,
    is_high_stakes: bool,
    specialization: Optional[str],
    was_kill_switched: bool = False,
    kill_switch_reason: Optional[str] = None,
) -> str:
    """Compact audit string, e.g. ``SmartRoute: complexity=MEDIUM, budget=72%``."""
    parts = [f"complexity={complexity}"]
    if pressure > REASON_PRESSURE_THRESHOLD:
        parts.append(f"budget={pressure * 100:.0f}%")
    if is_high_stakes:
        parts.append("high-stakes")
    if specialization:
        parts.append(f"spec={specialization}")
    if was_kill_switched and kill_switch_reason:
        parts.append(f"ks:{kill_switch_reason}")
    elif was_kill_switched:
        parts.append("kill-switched")
    return "SmartRoute: " + ", ".join(parts)


def _join_reason(current: Optional[str], addition: str) -> str:
    return f"{current}, {addition}" if current else addition


# ── Router ────────────────────────────────────────────────────────────────────

class Router:
    """Routes chat requests to upstream models and advises on fallback."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        snapshots: Optional[SnapshotStore] = None,
        quota_gate: Optional[QuotaGate] = None,
        sink: Optional[ObservabilitySink] = None,
        metrics: Optional[FallbackMetricsAggregator] = None,
    ):
        """Initialize router.

        Args:
            config_path: Directory holding ``config.json``.  Uses the
                packaged defaults when None.
            snapshots: Kill-switch and quality-score store.  When None one is
                built from the configuration and the process environment.
            quota_gate: Optional quota service for :meth:`route_with_quota`.
            sink: Observability sink; defaults to :class:`LoggingSink`.
            metrics: Fallback metrics aggregator; a default one is created
                when None.
        """
        self.config = Config(config_path)
        self.registry = ModelRegistry(self.config)
        self.snapshots = snapshots or SnapshotStore.from_config(self.config)
        self.quota_gate = quota_gate
        self.sink = sink if sink is not None else LoggingSink()
        self.metrics = metrics or FallbackMetricsAggregator()

        self.classifier = ComplexityClassifier(self.config)
        self.specialization_detector = SpecializationDetector(self.config)
        self.high_stakes_detector = HighStakesDetector(self.config)
        self.thresholds = CostThresholds.from_config(self.config)
        self.ranking = RankingEngine(last_resort=self.registry.first)
        self.fallback = FallbackAdvisor.from_config(self.config, self.registry, self.snapshots)
        self._token_estimates = self.config.get_token_estimates()

        _log.debug(
            "Router ready: %d models, %d providers",
            len(self.registry.list_models()), len(self.registry.get_providers()),
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(self, request: RoutingInput) -> RoutingDecision:
        """Choose the model for *request*.

        Never fails because of configuration state: when kill-switches
        remove every model the plan may use, the registry's first entry is
        returned and flagged with ``all-models-killed-fallback``.

        Raises:
            ValueError: If the plan or region is not recognised.
        """
        snapshot = self.snapshots.current
        plan = PlanTier.coerce(request.plan)
        region = Region.coerce(request.region)

        if snapshot.is_in_maintenance():
            return self._maintenance_decision(region)

        was_kill_switched = False
        kill_switch_reason: Optional[str] = None

        classification = self.classifier.classify(request.text)
        complexity = classification.tier

        calculated = max(
            calculate_budget_pressure(request.monthly_used_tokens, request.monthly_limit_tokens),
            calculate_budget_pressure(request.daily_used_tokens, request.daily_limit_tokens),
        )
        pressure = snapshot.get_effective_pressure(calculated)
        if pressure != calculated:
            was_kill_switched = True
            kill_switch_reason = f"pressure-override: {calculated:.2f} → {pressure:.2f}"

        is_high_stakes = self.high_stakes_detector.detect(
            request.text, explicit=request.is_high_stakes_context,
        )
        specialization = self.specialization_detector.detect(
            request.text, request.conversation_context,
        )

        available = self.registry.available_models(plan, region)
        allowed = [m for m in available if snapshot.is_model_allowed(m.id)]
        if len(allowed) < len(available):
            was_kill_switched = True
            kill_switch_reason = _join_reason(
                kill_switch_reason, f"{len(available) - len(allowed)} models killed",
            )
        if not allowed:
            emit(
                self.sink, "log_warn",
                "All models killed by kill-switch, using last-resort model",
                request_id=request.request_id, plan=plan.value, region=region.value,
            )
            allowed = [self.registry.first]
            was_kill_switched = True
            kill_switch_reason = ALL_KILLED_REASON

        candidates = filter_by_budget(allowed, pressure, plan, is_high_stakes, self.thresholds)

        if not is_high_stakes and snapshot.should_force_flash(plan):
            flash = next((m for m in candidates if m.is_flash), None)
            if flash is not None:
                candidates = [flash]
                was_kill_switched = True
                kill_switch_reason = _join_reason(kill_switch_reason, "force-flash")

        ranking = self.ranking.rank(candidates, complexity, pressure, is_high_stakes, specialization)
        best = ranking.selected
        fallback_chain = [m.id for m in ranking.runners_up if snapshot.is_model_allowed(m.id)]

        tokens = self._token_estimates.get(complexity, 0)

        if request.request_id:
            emit(self.sink, "log_routing", RoutingEvent(
                request_id=request.request_id,
                user_id=request.user_id,
                plan=plan.value,
                model_chosen=best.id,
                model_original=None if was_kill_switched else best.id,
                was_downgraded=was_kill_switched or pressure > DOWNGRADE_PRESSURE_THRESHOLD,
                downgrade_reason=kill_switch_reason,
                pressure_level=pressure_level(pressure),
                tokens_estimated=tokens,
                region=region.value,
            ))

        return RoutingDecision(
            model_id=best.id,
            provider=best.provider,
            display_name=best.display_name,
            reason=build_reason(
                complexity, pressure, is_high_stakes, specialization,
                was_kill_switched, kill_switch_reason,
            ),
            complexity=complexity,
            budget_pressure=pressure,
            estimated_cost=best.estimate_cost(tokens),
            expected_quality=expected_quality(best.quality_score),
            specialization=specialization,
            fallback_chain=fallback_chain,
            temperature=temperature_for(request.is_repetitive),
            confidence=ranking.confidence,
            was_kill_switched=was_kill_switched,
            kill_switch_reason=kill_switch_reason,
            region=region.value,
            reasoning=classification.reasoning,
        )

    async def route_with_quota(self, request: RoutingInput) -> RoutingDecision:
        """:meth:`route`, then let the quota gate substitute the model.

        A substituted model is taken as given by the gate; it is not
        checked against the kill-switch allow-list again.
        """
        decision = self.route(request)
        if self.quota_gate is None or decision.kill_switch_reason == MAINTENANCE_REASON:
            return decision

        result = await self.quota_gate.get_best_available_model(
            request.user_id,
            PlanTier.coerce(request.plan),
            decision.model_id,
            Region.coerce(request.region),
        )
        if not result.was_downgraded:
            return decision

        _log.info(
            "Quota downgrade: %s -> %s (%s)",
            decision.model_id, result.model_id, result.reason,
        )
        substitute = self.registry.get_model(result.model_id)
        decision.model_id = result.model_id
        if substitute is not None:
            decision.provider = substitute.provider
            decision.display_name = substitute.display_name
        decision.reason = f"{decision.reason}, quota-fallback: {result.reason}"
        decision.was_kill_switched = True
        decision.kill_switch_reason = result.reason
        decision.temperature = temperature_for(request.is_repetitive)
        return decision

    def _maintenance_decision(self, region: Region) -> RoutingDecision:
        model = self.registry.first
        return RoutingDecision(
            model_id=model.id,
            provider="maintenance",
            display_name="Maintenance Mode",
            reason="System under maintenance",
            complexity=CASUAL,
            budget_pressure=0.0,
            estimated_cost=0.0,
            expected_quality="good",
            fallback_chain=[],
            temperature=BASE_TEMPERATURE,
            confidence=1.0,
            was_kill_switched=True,
            kill_switch_reason=MAINTENANCE_REASON,
            region=region.value,
        )

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    def should_use_fallback_enhanced(
        self,
        error: Any,
        plan: Union[PlanTier, str],
        request_id: str,
        primary_model: str,
        fallback_model: str,
        has_fallback_provider: bool = True,
        retry_context: Optional[FallbackContext] = None,
    ) -> FallbackDecision:
        """See :meth:`FallbackAdvisor.should_use_fallback_enhanced`."""
        return self.fallback.should_use_fallback_enhanced(
            error, plan, request_id, primary_model, fallback_model,
            has_fallback_provider, retry_context,
        )

    def record_fallback(
        self,
        decision: FallbackDecision,
        request_id: str,
        plan: Union[PlanTier, str],
        primary_model: str,
        fallback_model: str,
        success: bool,
        retry_context: Optional[FallbackContext] = None,
    ) -> FallbackMetric:
        """Record an approved fallback into :attr:`metrics`.

        Providers are looked up from the registry; models outside the
        catalog are recorded under their own id.
        """
        metric = FallbackMetric.from_decision(
            decision,
            request_id=request_id,
            plan=plan,
            primary_provider=self._provider_of(primary_model),
            fallback_provider=self._provider_of(fallback_model),
            success=success,
            retry_context=retry_context,
        )
        self.metrics.record_fallback(metric)
        return metric

    def _provider_of(self, model_id: str) -> str:
        model = self.registry.get_model(model_id)
        return model.provider if model else model_id

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def explain(self, decision: RoutingDecision) -> str:
        """Generate a human-readable explanation of a routing decision.

        Args:
            decision: The :class:`RoutingDecision` to explain.

        Returns:
            Multi-line explanation string.
        """
        conf_pct = int(round(decision.confidence * 100))
        lines: List[str] = [
            f"Model selected: {decision.model_id} ({decision.display_name}, "
            f"{decision.provider}) (confidence: {conf_pct}%)"
        ]

        if decision.was_kill_switched:
            lines.append(f"  [Kill-switch applied: {decision.kill_switch_reason or 'yes'}]")

        lines.append("Reasoning:")
        lines.append(f"  Input classified as '{decision.complexity}'.")
        for r in decision.reasoning:
            lines.append(f"  {r}")
        if decision.specialization:
            lines.append(f"  Specialization: {decision.specialization}")
        lines.append(f"  Budget pressure: {decision.budget_pressure:.2f}")

        model = self.registry.get_model(decision.model_id)
        if model:
            lines.append(
                f"Estimated cost: {model.cost_per_1m:.1f} per 1M tokens "
                f"(this request: {decision.estimated_cost:.4f})."
            )
        lines.append(
            f"Expected quality: {decision.expected_quality}; "
            f"temperature {decision.temperature:.2f}; region {decision.region}."
        )

        if decision.fallback_chain:
            alternatives = []
            for model_id in decision.fallback_chain:
                alt = self.registry.get_model(model_id)
                alternatives.append(f"{model_id} ({alt.cost_per_1m:.1f}/1M)" if alt else model_id)
            lines.append("Fallback chain: " + ", ".join(alternatives))
        else:
            lines.append("Fallback chain: none")

        return "\n".join(lines)

    def available_models(
        self, plan: Union[PlanTier, str], region: Union[Region, str, None] = None,
    ) -> List[ModelDescriptor]:
        """Models the plan may use in the region after kill-switch filtering."""
        snapshot = self.snapshots.current
        return [
            m for m in self.registry.available_models(PlanTier.coerce(plan), Region.coerce(region))
            if snapshot.is_model_allowed(m.id)
        ]

    def available_model_ids(
        self, plan: Union[PlanTier, str], region: Union[Region, str, None] = None,
    ) -> List[str]:
        return [m.id for m in self.available_models(plan, region)]

    def get_model(self, model_id: str) -> Optional[ModelDescriptor]:
        return self.registry.get_model(model_id)

    def get_kill_switch_status(self) -> Dict[str, Any]:
        return self.snapshots.get_status()
