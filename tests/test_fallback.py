"""
Tests for the fallback decision protocol: error classification, retry
gating, compression-first handling, plan policies and deterministic
sampling of unknown errors.
"""

import pytest

from chatroute import (
    Config,
    FallbackAdvisor,
    FallbackContext,
    FallbackReason,
    ModelRegistry,
    PlanTier,
    SnapshotStore,
    classify_error,
    deterministic_hash,
    should_use_fallback_enhanced,
)
from chatroute.errors import (
    JailbreakError,
    ModelRevealError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    SystemPromptExposureError,
)
from chatroute.fallback import PlanFallbackPolicy, unknown_error_triggers

RATE_LIMIT = {"message": "Too many requests", "status": 429}
CONTEXT = {"message": "This model's maximum context length is 8192 tokens"}
UNKNOWN = {"message": "something odd happened"}

# Hash values of single-character ids equal their code point.
STARTER_TRIGGER_ID = "d"        # 100 % 100 == 0
PRO_TRIGGER_ID = chr(500)       # 500 % 500 == 0
NON_TRIGGER_ID = "a"            # 97


@pytest.fixture(scope="module")
def config() -> Config:
    return Config()


@pytest.fixture()
def advisor(config) -> FallbackAdvisor:
    registry = ModelRegistry(config)
    snapshots = SnapshotStore.from_config(config, environ={})
    return FallbackAdvisor.from_config(config, registry, snapshots)


def _decide(advisor, error, plan, attempt=1, primary="gemini-2.0-flash",
            fallback="mistral-large-3", request_id=NON_TRIGGER_ID,
            compression_attempted=False, has_fallback_provider=True):
    return advisor.should_use_fallback_enhanced(
        error, plan, request_id, primary, fallback, has_fallback_provider,
        FallbackContext(attempt_number=attempt, compression_attempted=compression_attempted),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Error classification
# ─────────────────────────────────────────────────────────────────────────────

class TestClassifyError:

    @pytest.mark.parametrize("error,expected", [
        ({"message": "Request timeout"}, FallbackReason.TIMEOUT),
        ({"message": "upstream timed out"}, FallbackReason.TIMEOUT),
        (ProviderTimeoutError("slow"), FallbackReason.TIMEOUT),
        (TimeoutError(), FallbackReason.TIMEOUT),
        ({"status": 429}, FallbackReason.RATE_LIMIT),
        ({"message": "Rate limit reached"}, FallbackReason.RATE_LIMIT),
        (ProviderRateLimitError(), FallbackReason.RATE_LIMIT),
        ({"status": 503, "message": "unavailable"}, FallbackReason.SERVER_ERROR),
        (ProviderError("boom", status=500), FallbackReason.SERVER_ERROR),
        ({"message": "Network unreachable"}, FallbackReason.NETWORK_ERROR),
        ({"message": "connect ECONNREFUSED 10.0.0.1"}, FallbackReason.NETWORK_ERROR),
        (ConnectionResetError("reset"), FallbackReason.NETWORK_ERROR),
        ({"status": 404}, FallbackReason.MODEL_UNAVAILABLE),
        ({"message": "Model not found"}, FallbackReason.MODEL_UNAVAILABLE),
        (CONTEXT, FallbackReason.CONTEXT_LENGTH_EXCEEDED),
        ({"message": "Input too long"}, FallbackReason.CONTEXT_LENGTH_EXCEEDED),
        ({"message": "token limit exceeded"}, FallbackReason.CONTEXT_LENGTH_EXCEEDED),
        (UNKNOWN, FallbackReason.UNKNOWN),
        (None, FallbackReason.UNKNOWN),
    ])
    def test_classification(self, error, expected):
        assert classify_error(error) is expected

    def test_timeout_checked_before_status(self):
        assert classify_error({"message": "gateway timeout", "status": 504}) is FallbackReason.TIMEOUT

    def test_status_code_alias(self):
        assert classify_error({"status_code": 429}) is FallbackReason.RATE_LIMIT


class TestDeterministicHash:

    def test_known_values(self):
        assert deterministic_hash("") == 0
        assert deterministic_hash("a") == 97
        assert deterministic_hash("ab") == 97 * 31 + 98

    def test_lone_surrogate_hashes_as_code_unit(self):
        assert deterministic_hash("\ud800") == 0xD800
        assert deterministic_hash("a\ud800") == 97 * 31 + 0xD800

    def test_wraps_to_32_bits(self):
        assert 0 <= deterministic_hash("x" * 500) <= 2 ** 31

    def test_stable(self):
        assert deterministic_hash("req-123") == deterministic_hash("req-123")

    def test_sampling(self):
        assert unknown_error_triggers(STARTER_TRIGGER_ID, 0.01)
        assert not unknown_error_triggers(NON_TRIGGER_ID, 0.01)
        assert not unknown_error_triggers(STARTER_TRIGGER_ID, 0)


# ─────────────────────────────────────────────────────────────────────────────
# Protocol
# ─────────────────────────────────────────────────────────────────────────────

class TestFallbackProtocol:

    def test_starter_first_attempt_keeps_retrying(self, advisor):
        d = _decide(advisor, RATE_LIMIT, PlanTier.STARTER, attempt=1)
        assert d.should_fallback is False
        assert d.retry_count_met is False
        assert d.suggestion == "Retry 1/2 - Keep trying primary"

    def test_pro_rate_limit_on_third_attempt(self, advisor):
        d = _decide(advisor, RATE_LIMIT, PlanTier.PRO, attempt=3)
        assert d.should_fallback is True
        assert d.silent is False
        assert d.quality_drop is False
        assert d.reason is FallbackReason.RATE_LIMIT

    @pytest.mark.parametrize("plan,required", [
        (PlanTier.STARTER, 2), (PlanTier.LITE, 2), (PlanTier.PLUS, 2),
        (PlanTier.PRO, 3), (PlanTier.APEX, 3), (PlanTier.SOVEREIGN, 4),
    ])
    def test_retry_gate_opens_exactly_at_requirement(self, advisor, plan, required):
        assert _decide(advisor, RATE_LIMIT, plan, attempt=required - 1).retry_count_met is False
        assert _decide(advisor, RATE_LIMIT, plan, attempt=required).retry_count_met is True

    def test_no_fallback_provider(self, advisor):
        d = _decide(advisor, RATE_LIMIT, PlanTier.STARTER, attempt=5, has_fallback_provider=False)
        assert d.should_fallback is False
        assert d.reason is None

    @pytest.mark.parametrize("error", [
        JailbreakError("nope"),
        SystemPromptExposureError("nope"),
        ModelRevealError("nope"),
        {"name": "JailbreakError", "message": "timeout"},
    ])
    def test_security_errors_never_fall_back(self, advisor, error):
        d = _decide(advisor, error, PlanTier.STARTER, attempt=10)
        assert d.should_fallback is False

    def test_context_length_compresses_first(self, advisor):
        d = _decide(advisor, CONTEXT, PlanTier.STARTER, attempt=2)
        assert d.should_fallback is False
        assert d.should_compress_first is True
        assert d.suggestion == "Context too long - Try compression before fallback"

    def test_context_length_falls_back_after_compression(self, advisor):
        d = _decide(advisor, CONTEXT, PlanTier.STARTER, attempt=2, compression_attempted=True)
        assert d.should_fallback is True
        assert d.reason is FallbackReason.CONTEXT_LENGTH_EXCEEDED

    def test_context_length_respects_retry_gate(self, advisor):
        d = _decide(advisor, CONTEXT, PlanTier.PRO, attempt=1)
        assert d.retry_count_met is False
        assert d.should_compress_first is False

    def test_compression_always_suggested_before_fallback(self, advisor):
        ctx = FallbackContext()
        seen_compress = False
        for attempt in range(1, 6):
            ctx.attempt_number = attempt
            d = advisor.should_use_fallback_enhanced(
                CONTEXT, PlanTier.APEX, "req", "gemini-2.0-flash", "mistral-large-3", True, ctx,
            )
            if d.should_compress_first:
                seen_compress = True
                ctx.compression_attempted = True
            if d.should_fallback:
                assert seen_compress
                break
        else:
            pytest.fail("never fell back")

    def test_policy_without_compression_falls_back_directly(self, config):
        registry = ModelRegistry(config)
        policies = {PlanTier.STARTER: PlanFallbackPolicy(True, True, 0.01, 1, compression_before_fallback=False)}
        adv = FallbackAdvisor(registry, SnapshotStore(), policies)
        assert _decide(adv, CONTEXT, PlanTier.STARTER).should_fallback is True

    def test_quality_drop_is_not_silent_for_strict_plans(self, advisor):
        d = _decide(advisor, RATE_LIMIT, PlanTier.PRO, attempt=3,
                    primary="claude-haiku-4-5", fallback="gemini-2.0-flash")
        assert d.should_fallback is True
        assert d.quality_drop is True
        assert d.silent is False

    def test_quality_drop_is_silent_for_lenient_plans(self, advisor):
        d = _decide(advisor, RATE_LIMIT, PlanTier.PLUS, attempt=2,
                    primary="claude-haiku-4-5", fallback="gemini-2.0-flash")
        assert (d.should_fallback, d.quality_drop, d.silent) == (True, True, True)

    def test_silent_never_with_quality_drop_when_drop_disallowed(self, advisor):
        for plan in (PlanTier.PRO, PlanTier.APEX, PlanTier.SOVEREIGN):
            for error in (RATE_LIMIT, {"status": 502}, {"message": "timeout"}):
                d = _decide(advisor, error, plan, attempt=4,
                            primary="claude-sonnet-4-5", fallback="gemini-2.5-flash")
                assert not (d.silent and d.quality_drop)

    def test_cost_savings(self, advisor):
        d = _decide(advisor, RATE_LIMIT, PlanTier.STARTER, attempt=2,
                    primary="claude-sonnet-4-5", fallback="gemini-2.0-flash")
        assert d.cost_savings == pytest.approx(1004.0 - 27.2)

    def test_cost_savings_never_negative_and_unknown_models_cost_100(self, advisor):
        assert advisor.cost_savings("gemini-2.0-flash", "claude-sonnet-4-5") == 0.0
        assert advisor.cost_savings("mystery-model", "gemini-2.0-flash") == pytest.approx(100 - 27.2)

    def test_unknown_plan_uses_starter_policy(self, advisor):
        assert advisor.policy_for("ENTERPRISE") == advisor.policies[PlanTier.STARTER]

    def test_policies_require_starter(self, config):
        with pytest.raises(ValueError, match="STARTER"):
            FallbackAdvisor(ModelRegistry(config), SnapshotStore(), {})

    def test_policy_validation(self):
        with pytest.raises(ValueError, match="fallback_trigger_rate"):
            PlanFallbackPolicy(True, True, 1.5, 2)
        with pytest.raises(ValueError, match="retry_before_fallback"):
            PlanFallbackPolicy(True, True, 0.1, -1)


class TestUnknownErrors:

    def test_sampled_unknown_error_falls_back(self, advisor):
        d = _decide(advisor, UNKNOWN, PlanTier.STARTER, attempt=2, request_id=STARTER_TRIGGER_ID)
        assert d.should_fallback is True
        assert d.reason is FallbackReason.UNKNOWN
        assert d.silent is True

    def test_unsampled_unknown_error_does_not(self, advisor):
        d = _decide(advisor, UNKNOWN, PlanTier.STARTER, attempt=2, request_id=NON_TRIGGER_ID)
        assert d.should_fallback is False

    def test_strict_plan_refuses_quality_drop(self, advisor):
        d = _decide(advisor, UNKNOWN, PlanTier.PRO, attempt=3, request_id=PRO_TRIGGER_ID,
                    primary="claude-haiku-4-5", fallback="gemini-2.0-flash")
        assert d.should_fallback is False

    def test_strict_plan_accepts_upgrade(self, advisor):
        d = _decide(advisor, UNKNOWN, PlanTier.PRO, attempt=3, request_id=PRO_TRIGGER_ID,
                    primary="gemini-2.0-flash", fallback="claude-haiku-4-5")
        assert d.should_fallback is True
        assert d.silent is False

    def test_sovereign_never_samples(self, advisor):
        for rid in (STARTER_TRIGGER_ID, PRO_TRIGGER_ID, "", "req-1"):
            assert _decide(advisor, UNKNOWN, PlanTier.SOVEREIGN, attempt=4, request_id=rid).should_fallback is False

    def test_same_request_same_answer(self, advisor):
        for rid in ("req-1", "req-2", STARTER_TRIGGER_ID, "x" * 40):
            first = _decide(advisor, UNKNOWN, PlanTier.STARTER, attempt=2, request_id=rid)
            for _ in range(5):
                assert _decide(advisor, UNKNOWN, PlanTier.STARTER, attempt=2, request_id=rid) == first


class TestFunctionalForm:

    def test_delegates_to_advisor(self, advisor):
        d = should_use_fallback_enhanced(
            advisor, RATE_LIMIT, "PRO", "req", "gemini-2.0-flash", "mistral-large-3", True,
            FallbackContext(attempt_number=3),
        )
        assert d.should_fallback is True

    def test_default_context_is_first_attempt(self, advisor):
        d = should_use_fallback_enhanced(
            advisor, RATE_LIMIT, "STARTER", "req", "gemini-2.0-flash", "mistral-large-3", True,
        )
        assert d.suggestion == "Retry 1/2 - Keep trying primary"

    def test_to_dict(self, advisor):
        d = _decide(advisor, RATE_LIMIT, PlanTier.PRO, attempt=3)
        assert d.to_dict()["reason"] == "RATE_LIMIT"
