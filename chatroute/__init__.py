"""
chatroute: model routing and fallback decisions for a chat backend.

Per request the router picks an upstream completion model from the user's
plan tier, region, message complexity, budget pressure and specialization.
After a failed call the fallback advisor decides whether to retry, compress
the context, or switch models, under plan-specific quality guarantees.
Zero runtime dependencies; the MCP tool surface needs the optional ``mcp``
extra.

Usage:
    from chatroute import Router, RoutingInput, FallbackContext

    router = Router()
    decision = router.route(RoutingInput(
        text="Refactor this function to use async IO",
        plan="PRO",
        user_id="u-42",
        monthly_used_tokens=700_000,
        monthly_limit_tokens=1_000_000,
        daily_used_tokens=20_000,
        daily_limit_tokens=100_000,
        request_id="req-1",
    ))
    print(decision.model_id, decision.reason)

    # After the upstream call fails
    advice = router.should_use_fallback_enhanced(
        error, "PRO", "req-1",
        primary_model=decision.model_id,
        fallback_model=decision.fallback_chain[0],
        retry_context=FallbackContext(attempt_number=3),
    )
    if advice.should_fallback:
        ...

Operators flip kill-switches on the live snapshot store:
    router.snapshots.set_kill_switches(disable_gpt=True, changed_by="ops")
"""

__version__ = "1.0.0"

from .config import Config
from .registry import ModelDescriptor, ModelRegistry, PlanTier, Region, SpecializationVector
from .snapshot import ConfigSnapshot, KillSwitchState, SnapshotStore
from .classifier import (
    ComplexityClassifier,
    ClassificationResult,
    HighStakesDetector,
    SpecializationDetector,
    detect_complexity,
)
from .budget import CostThresholds, calculate_budget_pressure, filter_by_budget
from .ranking import RankingEngine, RankingResult, score_model
from .fallback import (
    FallbackAdvisor,
    FallbackContext,
    FallbackDecision,
    FallbackReason,
    PlanFallbackPolicy,
    classify_error,
    deterministic_hash,
    should_use_fallback_enhanced,
)
from .metrics import FallbackMetric, FallbackMetricsAggregator
from .observability import LoggingSink, ObservabilitySink, RoutingEvent
from .router import QuotaGate, QuotaResult, Router, RoutingDecision, RoutingInput
from .errors import (
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    SecurityViolationError,
    JailbreakError,
    SystemPromptExposureError,
    ModelRevealError,
)

__all__ = [
    # Routing
    "Router",
    "RoutingInput",
    "RoutingDecision",
    "QuotaGate",
    "QuotaResult",
    # Catalog & configuration
    "Config",
    "ModelDescriptor",
    "ModelRegistry",
    "PlanTier",
    "Region",
    "SpecializationVector",
    "ConfigSnapshot",
    "KillSwitchState",
    "SnapshotStore",
    # Analysis & ranking
    "ComplexityClassifier",
    "ClassificationResult",
    "HighStakesDetector",
    "SpecializationDetector",
    "detect_complexity",
    "CostThresholds",
    "calculate_budget_pressure",
    "filter_by_budget",
    "RankingEngine",
    "RankingResult",
    "score_model",
    # Fallback
    "FallbackAdvisor",
    "FallbackContext",
    "FallbackDecision",
    "FallbackReason",
    "PlanFallbackPolicy",
    "classify_error",
    "deterministic_hash",
    "should_use_fallback_enhanced",
    "FallbackMetric",
    "FallbackMetricsAggregator",
    # Observability
    "LoggingSink",
    "ObservabilitySink",
    "RoutingEvent",
    # Errors
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "SecurityViolationError",
    "JailbreakError",
    "SystemPromptExposureError",
    "ModelRevealError",
]
