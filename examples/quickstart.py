#!/usr/bin/env python3
"""
chatroute Quickstart Example

Demonstrates routing across plans, kill-switches, the fallback protocol,
and the fallback metrics report.
"""

import asyncio

from chatroute import (
    FallbackContext,
    FallbackMetricsAggregator,
    Router,
    RoutingInput,
)
from chatroute.errors import ProviderRateLimitError


async def store_batch(batch):
    print(f"   [flush] persisted {len(batch)} fallback metrics")


def main():
    """Run quickstart demonstration."""
    print("=== chatroute Quickstart ===\n")

    print("1. Initializing router...")
    router = Router(metrics=FallbackMetricsAggregator(flush_callback=store_batch))
    print(f"   Loaded {len(router.registry.list_models())} models")
    print(f"   Available providers: {', '.join(router.registry.get_providers())}")
    print()

    test_messages = [
        ("Casual", "STARTER", "Hello!"),
        ("Simple", "PLUS", "What is the capital of France?"),
        ("Analysis", "PRO", "Analyze the trade-offs of a microservices architecture"),
        ("High stakes", "APEX", "Review this contract for liability issues"),
        ("Expert", "SOVEREIGN", "```\ndef handler(event):\n    return event\n```\n"
                                "Optimize this handler and redesign the architecture "
                                "so it scales horizontally. " + "Consider every edge case. " * 30),
    ]

    print("2. Routing messages...")
    for label, plan, text in test_messages:
        decision = router.route(RoutingInput(
            text=text,
            plan=plan,
            user_id="demo",
            monthly_used_tokens=600_000,
            monthly_limit_tokens=1_000_000,
            daily_used_tokens=10_000,
            daily_limit_tokens=100_000,
        ))
        print(f"   {label:<12} {plan:<10} -> {decision.model_id:<18} "
              f"({decision.complexity}, conf {decision.confidence:.2f})")
        print(f"   {'':<12} {decision.reason}")
    print()

    print("3. Flipping a kill-switch...")
    router.snapshots.set_kill_switches(disable_mistral=True, changed_by="quickstart")
    decision = router.route(RoutingInput(text="Explain recursion", plan="STARTER", user_id="demo",
                                         monthly_used_tokens=0, monthly_limit_tokens=1_000_000,
                                         daily_used_tokens=0, daily_limit_tokens=100_000))
    print(router.explain(decision))
    router.snapshots.reset_kill_switches(changed_by="quickstart")
    print()

    print("4. Walking the fallback protocol for a rate-limited PRO request...")
    ctx = FallbackContext()
    error = ProviderRateLimitError(provider="claude")
    for attempt in range(1, 5):
        ctx.attempt_number = attempt
        advice = router.should_use_fallback_enhanced(
            error, "PRO", "req-42", "claude-haiku-4-5", "mistral-large-3", retry_context=ctx,
        )
        print(f"   attempt {attempt}: fallback={advice.should_fallback} "
              f"silent={advice.silent} suggestion={advice.suggestion}")
        if advice.should_fallback:
            router.record_fallback(advice, "req-42", "PRO", "claude-haiku-4-5",
                                   "mistral-large-3", success=True, retry_context=ctx)
            break
    print()

    print("5. Fallback report...")
    report = router.metrics.get_report()
    print(f"   total={report['summary']['total']} "
          f"savings={report['summary']['total_cost_savings']:.1f}")
    for rec in report["recommendations"]:
        print(f"   - {rec}")
    asyncio.run(router.metrics.flush())


if __name__ == "__main__":
    main()
