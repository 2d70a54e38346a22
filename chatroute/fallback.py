"""
Fallback decision protocol for chatroute.

After an upstream call fails the caller asks :class:`FallbackAdvisor`
whether to retry the same model, compress the conversation, or switch to
the fallback model.  Fallback is the last resort: the plan's retry budget
is spent on the primary first, context-length failures try compression
first, and plans that promise quality never fall back silently onto a
weaker model.

The advisor keeps no per-request state.  The caller owns a
:class:`FallbackContext`, increments ``attempt_number`` after every failed
attempt, and calls the advisor exactly once per failure.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import SECURITY_ERROR_NAMES, SecurityViolationError
from .registry import ModelRegistry, PlanTier
from .snapshot import SnapshotStore

_log = logging.getLogger(__name__)

DEFAULT_MODEL_COST = 100.0


class FallbackReason(str, Enum):
    """Closed taxonomy of upstream failures."""

    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    CONTEXT_LENGTH_EXCEEDED = "CONTEXT_LENGTH_EXCEEDED"
    UNKNOWN = "UNKNOWN"


CRITICAL_REASONS = frozenset({
    FallbackReason.TIMEOUT,
    FallbackReason.RATE_LIMIT,
    FallbackReason.SERVER_ERROR,
    FallbackReason.NETWORK_ERROR,
    FallbackReason.MODEL_UNAVAILABLE,
})


# ── Policy ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PlanFallbackPolicy:
    """How strictly a plan guards quality when falling back.

    Attributes:
        allow_silent_fallback: The user need not be told about the switch.
        allow_quality_drop: A weaker fallback model is acceptable.
        fallback_trigger_rate: Share of UNKNOWN errors that fall back
            (sampled deterministically by request id).  0 disables.
        retry_before_fallback: Attempts on the primary before fallback.
        compression_before_fallback: Context-length failures must try
            compression before switching providers.
    """

    allow_silent_fallback: bool
    allow_quality_drop: bool
    fallback_trigger_rate: float
    retry_before_fallback: int
    compression_before_fallback: bool = True

    def __post_init__(self) -> None:
        if not (0.0 <= self.fallback_trigger_rate <= 1.0):
            raise ValueError(
                f"fallback_trigger_rate must be 0.0–1.0, got {self.fallback_trigger_rate}"
            )
        if self.retry_before_fallback < 0:
            raise ValueError(
                f"retry_before_fallback must be >= 0, got {self.retry_before_fallback}"
            )

    def is_silent(self, quality_drop: bool) -> bool:
        return self.allow_silent_fallback and (self.allow_quality_drop or not quality_drop)


def load_policies(raw: Mapping[str, Mapping[str, Any]]) -> Dict[PlanTier, PlanFallbackPolicy]:
    """Build the plan → policy table from configuration."""
    return {PlanTier.coerce(plan): PlanFallbackPolicy(**values) for plan, values in raw.items()}


# ── Per-attempt state & result ────────────────────────────────────────────────

@dataclass
class FallbackContext:
    """Caller-held retry state for one logical request."""
    attempt_number: int = 1
    max_attempts: int = 4
    compression_attempted: bool = False
    context_reduced: bool = False


@dataclass(frozen=True)
class FallbackDecision:
    """What the caller should do after a failed attempt."""
    should_fallback: bool = False
    reason: Optional[FallbackReason] = None
    silent: bool = False
    quality_drop: bool = False
    cost_savings: float = 0.0
    should_compress_first: bool = False
    retry_count_met: bool = False
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["reason"] = self.reason.value if self.reason else None
        return d


NO_FALLBACK = FallbackDecision()


# ── Error classification ──────────────────────────────────────────────────────

def _error_fields(error: Any) -> Tuple[str, int, str]:
    """Pull (lowercased message, status, type name) out of *error*."""
    if isinstance(error, Mapping):
        message = error.get("message") or ""
        status = error.get("status") or error.get("status_code") or 0
        name = error.get("name") or ""
    else:
        message = getattr(error, "message", None) or (str(error) if error is not None else "")
        status = getattr(error, "status", None) or getattr(error, "status_code", None) or 0
        name = type(error).__name__ if isinstance(error, BaseException) else getattr(error, "name", "") or ""
    try:
        status = int(status)
    except (TypeError, ValueError):
        status = 0
    return str(message).lower(), status, str(name)


def classify_error(error: Any) -> FallbackReason:
    """Map an upstream error onto :class:`FallbackReason`.

    Accepts exceptions or plain mappings with ``message`` / ``status`` /
    ``status_code`` / ``name``.  Checks run in a fixed order and the first
    match wins: timeout, rate limit, 5xx, network, 404 or model not found,
    context length.  Anything else is UNKNOWN.
    """
    message, status, name = _error_fields(error)

    if "timeout" in message or "timed out" in message or name in ("ProviderTimeoutError", "TimeoutError"):
        return FallbackReason.TIMEOUT
    if status == 429 or "rate limit" in message or name == "ProviderRateLimitError":
        return FallbackReason.RATE_LIMIT
    if 500 <= status < 600:
        return FallbackReason.SERVER_ERROR
    if "network" in message or "econnrefused" in message or isinstance(error, ConnectionError):
        return FallbackReason.NETWORK_ERROR
    if status == 404 or "model not found" in message:
        return FallbackReason.MODEL_UNAVAILABLE
    if "context" in message or "token limit" in message or "too long" in message:
        return FallbackReason.CONTEXT_LENGTH_EXCEEDED
    return FallbackReason.UNKNOWN


def is_security_error(error: Any) -> bool:
    """True for jailbreak, system-prompt exposure and model-reveal errors."""
    if isinstance(error, SecurityViolationError):
        return True
    _, _, name = _error_fields(error)
    return name in SECURITY_ERROR_NAMES


def deterministic_hash(request_id: str) -> int:
    """Stable, non-negative 32-bit string hash of *request_id*.

    ``h = h * 31 + unit`` over the UTF-16 code units, wrapped to a signed
    32-bit integer at each step; the absolute value is returned.  The same
    id always hashes the same, across processes and restarts.
    """
    data = (request_id or "").encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def unknown_error_triggers(request_id: str, trigger_rate: float) -> bool:
    """Deterministic sampling gate for UNKNOWN errors."""
    if trigger_rate <= 0:
        return False
    divisor = math.floor(1 / trigger_rate)
    return deterministic_hash(request_id) % divisor == 0


# ── Advisor ───────────────────────────────────────────────────────────────────

class FallbackAdvisor:
    """Evaluates the fallback protocol for one failed attempt at a time."""

    def __init__(
        self,
        registry: ModelRegistry,
        snapshots: SnapshotStore,
        policies: Mapping[PlanTier, PlanFallbackPolicy],
    ):
        if PlanTier.STARTER not in policies:
            raise ValueError("Fallback policies must define STARTER (used for unknown plans)")
        self.registry = registry
        self.snapshots = snapshots
        self.policies = dict(policies)

    @classmethod
    def from_config(cls, config, registry: ModelRegistry, snapshots: SnapshotStore) -> "FallbackAdvisor":
        return cls(registry, snapshots, load_policies(config.get_plan_policies()))

    def policy_for(self, plan: Any) -> PlanFallbackPolicy:
        """Policy for *plan*; unknown plans get the STARTER policy."""
        try:
            tier = PlanTier.coerce(plan)
        except ValueError:
            _log.warning("Unknown plan %r, applying STARTER fallback policy", plan)
            tier = PlanTier.STARTER
        return self.policies.get(tier, self.policies[PlanTier.STARTER])

    def cost_savings(self, primary_model: str, fallback_model: str) -> float:
        primary = self.registry.cost_of(primary_model, DEFAULT_MODEL_COST)
        fallback = self.registry.cost_of(fallback_model, DEFAULT_MODEL_COST)
        return max(0.0, primary - fallback)

    def should_use_fallback_enhanced(
        self,
        error: Any,
        plan: Any,
        request_id: str,
        primary_model: str,
        fallback_model: str,
        has_fallback_provider: bool,
        retry_context: Optional[FallbackContext] = None,
    ) -> FallbackDecision:
        """Decide what to do after a failed attempt.

        Args:
            error: The upstream error (exception or mapping).
            plan: The user's plan tier.
            request_id: Identifier of the logical request; drives the
                deterministic UNKNOWN-error sampling.
            primary_model: Model id that failed.
            fallback_model: Model id that would be used instead.
            has_fallback_provider: Whether a fallback provider is configured.
            retry_context: Caller-held retry state; ``attempt_number``
                defaults to 1.

        Returns:
            :class:`FallbackDecision`.
        """
        if not has_fallback_provider:
            return NO_FALLBACK

        if is_security_error(error):
            return NO_FALLBACK

        policy = self.policy_for(plan)
        snapshot = self.snapshots.current
        reason = classify_error(error)
        quality_drop = snapshot.is_quality_drop(primary_model, fallback_model)
        savings = self.cost_savings(primary_model, fallback_model)
        ctx = retry_context or FallbackContext()

        attempt = ctx.attempt_number or 1
        required = policy.retry_before_fallback
        if attempt < required:
            return FallbackDecision(
                reason=reason,
                retry_count_met=False,
                suggestion=f"Retry {attempt}/{required} - Keep trying primary",
            )

        if reason is FallbackReason.CONTEXT_LENGTH_EXCEEDED:
            if policy.compression_before_fallback and not ctx.compression_attempted:
                return FallbackDecision(
                    reason=reason,
                    retry_count_met=True,
                    should_compress_first=True,
                    suggestion="Context too long - Try compression before fallback",
                )
            return self._fallback(reason, policy.is_silent(quality_drop), quality_drop, savings)

        if reason in CRITICAL_REASONS:
            return self._fallback(reason, policy.is_silent(quality_drop), quality_drop, savings)

        if reason is FallbackReason.UNKNOWN and unknown_error_triggers(request_id, policy.fallback_trigger_rate):
            if policy.allow_quality_drop or not quality_drop:
                return self._fallback(reason, policy.allow_silent_fallback, quality_drop, savings)

        return NO_FALLBACK

    @staticmethod
    def _fallback(reason: FallbackReason, silent: bool, quality_drop: bool, savings: float) -> FallbackDecision:
        _log.info(
            "Fallback approved: reason=%s silent=%s quality_drop=%s savings=%.2f",
            reason.value, silent, quality_drop, savings,
        )
        return FallbackDecision(
            should_fallback=True,
            reason=reason,
            silent=silent,
            quality_drop=quality_drop,
            cost_savings=savings,
            retry_count_met=True,
        )


def should_use_fallback_enhanced(
    advisor: FallbackAdvisor,
    error: Any,
    plan: Any,
    request_id: str,
    primary_model: str,
    fallback_model: str,
    has_fallback_provider: bool,
    retry_context: Optional[FallbackContext] = None,
) -> FallbackDecision:
    """Functional form of :meth:`FallbackAdvisor.should_use_fallback_enhanced`."""
    return advisor.should_use_fallback_enhanced(
        error, plan, request_id, primary_model, fallback_model,
        has_fallback_provider, retry_context,
    )
