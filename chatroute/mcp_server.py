"""
chatroute MCP Server

Exposes the routing engine as MCP tools for any MCP-enabled agent.

Tools:
  - route(text, plan, ...)                 → model selection decision
  - explain(text, plan, ...)               → human-readable routing explanation
  - fallback_decision(error_message, ...)  → retry / compress / fallback advice
  - fallback_report()                      → fallback statistics and recommendations

Usage:
    python -m chatroute.mcp_server
    # or
    from chatroute.mcp_server import create_server
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional

# ---------------------------------------------------------------------------
# Graceful MCP availability check
# ---------------------------------------------------------------------------
try:
    from mcp.server.fastmcp import FastMCP
    MCP_AVAILABLE = True
except ImportError:
    MCP_AVAILABLE = False
    FastMCP = None  # type: ignore

from chatroute.fallback import FallbackContext
from chatroute.router import Router, RoutingInput


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------

def create_server(router: Optional[Router] = None) -> "FastMCP":
    """Create and return the FastMCP server with chatroute tools.

    Args:
        router: Router shared by all tools.  A default one is built when
            None, so kill-switches and fallback metrics persist for the
            server's lifetime.

    Returns:
        A configured ``FastMCP`` instance ready to run.

    Raises:
        ImportError: If the ``mcp`` package is not installed.
    """
    if not MCP_AVAILABLE:
        raise ImportError(
            "The 'mcp' package is required to run the chatroute MCP server. "
            "Install it with: pip install mcp"
        )

    router = router or Router()

    mcp = FastMCP(
        name="chatroute",
        instructions=(
            "chatroute: plan-aware model routing for chat. "
            "Use route() to pick a model, explain() for reasoning, "
            "fallback_decision() after an upstream failure, and "
            "fallback_report() for fallback statistics."
        ),
    )

    def _input(text, plan, user_id, monthly_used_tokens, monthly_limit_tokens,
               daily_used_tokens, daily_limit_tokens, region, is_high_stakes,
               request_id) -> RoutingInput:
        return RoutingInput(
            text=text,
            plan=plan,
            user_id=user_id,
            monthly_used_tokens=monthly_used_tokens,
            monthly_limit_tokens=monthly_limit_tokens,
            daily_used_tokens=daily_used_tokens,
            daily_limit_tokens=daily_limit_tokens,
            region=region,
            is_high_stakes_context=is_high_stakes,
            request_id=request_id,
        )

    # ------------------------------------------------------------------
    # Tool: route
    # ------------------------------------------------------------------
    @mcp.tool()
    def route(
        text: str,
        plan: str = "STARTER",
        user_id: str = "mcp",
        monthly_used_tokens: int = 0,
        monthly_limit_tokens: int = 1_000_000,
        daily_used_tokens: int = 0,
        daily_limit_tokens: int = 100_000,
        region: str = "IN",
        is_high_stakes: bool = False,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Route a chat message to the most appropriate model.

        Args:
            text: The user's message.
            plan: Plan tier (STARTER, LITE, PLUS, PRO, APEX, SOVEREIGN).
            user_id: Caller identifier, used for telemetry.
            monthly_used_tokens: Tokens already used this month.
            monthly_limit_tokens: Monthly token allowance.
            daily_used_tokens: Tokens already used today.
            daily_limit_tokens: Daily token allowance.
            region: ``"IN"`` or ``"INTL"``.
            is_high_stakes: Force high-stakes handling.
            request_id: Optional request id for telemetry.

        Returns:
            The routing decision as a dict, or ``{"error": ...}`` for an
            unknown plan or region.
        """
        try:
            request = _input(text, plan, user_id, monthly_used_tokens, monthly_limit_tokens,
                             daily_used_tokens, daily_limit_tokens, region, is_high_stakes,
                             request_id)
            decision = router.route(request)
        except ValueError as exc:
            return {"error": str(exc)}
        result = decision.to_dict()
        result["budget_pressure"] = round(decision.budget_pressure, 4)
        result["estimated_cost"] = round(decision.estimated_cost, 6)
        result["confidence"] = round(decision.confidence, 4)
        return result

    # ------------------------------------------------------------------
    # Tool: explain
    # ------------------------------------------------------------------
    @mcp.tool()
    def explain(
        text: str,
        plan: str = "STARTER",
        monthly_used_tokens: int = 0,
        monthly_limit_tokens: int = 1_000_000,
        daily_used_tokens: int = 0,
        daily_limit_tokens: int = 100_000,
        region: str = "IN",
    ) -> str:
        """Explain how a message would be routed.

        Args:
            text: The user's message.
            plan: Plan tier.
            monthly_used_tokens: Tokens already used this month.
            monthly_limit_tokens: Monthly token allowance.
            daily_used_tokens: Tokens already used today.
            daily_limit_tokens: Daily token allowance.
            region: ``"IN"`` or ``"INTL"``.

        Returns:
            Multi-line explanation string.
        """
        try:
            decision = router.route(_input(text, plan, "mcp", monthly_used_tokens,
                                           monthly_limit_tokens, daily_used_tokens,
                                           daily_limit_tokens, region, False, None))
        except ValueError as exc:
            return f"Error: {exc}"
        return router.explain(decision)

    # ------------------------------------------------------------------
    # Tool: fallback_decision
    # ------------------------------------------------------------------
    @mcp.tool()
    def fallback_decision(
        error_message: str,
        plan: str,
        request_id: str,
        primary_model: str,
        fallback_model: str,
        status: Optional[int] = None,
        attempt_number: int = 1,
        compression_attempted: bool = False,
        has_fallback_provider: bool = True,
    ) -> Dict[str, Any]:
        """Decide whether to retry, compress, or fall back after a failure.

        Approved fallbacks are recorded, so they show up in fallback_report().

        Args:
            error_message: Upstream error message.
            plan: Plan tier of the user.
            request_id: Logical request id (drives UNKNOWN-error sampling).
            primary_model: Model id that failed.
            fallback_model: Candidate replacement model id.
            status: HTTP status of the failure, if any.
            attempt_number: 1-based attempt that just failed.
            compression_attempted: Whether the context was already compressed.
            has_fallback_provider: Whether a fallback provider is configured.

        Returns:
            The fallback decision as a dict.
        """
        ctx = FallbackContext(
            attempt_number=attempt_number,
            compression_attempted=compression_attempted,
        )
        decision = router.should_use_fallback_enhanced(
            {"message": error_message, "status": status},
            plan,
            request_id,
            primary_model,
            fallback_model,
            has_fallback_provider=has_fallback_provider,
            retry_context=ctx,
        )
        if decision.should_fallback:
            router.record_fallback(decision, request_id, plan, primary_model,
                                   fallback_model, success=True, retry_context=ctx)
        return decision.to_dict()

    # ------------------------------------------------------------------
    # Tool: fallback_report
    # ------------------------------------------------------------------
    @mcp.tool()
    def fallback_report() -> Dict[str, Any]:
        """Return fallback statistics, recent events and recommendations.

        Returns:
            Dict with keys: summary, recent_fallbacks, recommendations.
        """
        report = router.metrics.get_report()
        report["recent_fallbacks"] = [m.to_dict() for m in report["recent_fallbacks"]]
        return report

    return mcp


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Run the chatroute MCP server (stdio transport by default)."""
    parser = argparse.ArgumentParser(
        description="chatroute MCP Server: expose model routing over MCP."
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="MCP transport (default: stdio).",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host for SSE transport (default: 127.0.0.1).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8766,
        help="Port for SSE transport (default: 8766).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Directory containing config.json (default: packaged defaults).",
    )
    args = parser.parse_args()

    if not MCP_AVAILABLE:
        print(
            "ERROR: The 'mcp' package is not installed.\n"
            "Install it with: pip install mcp",
            file=sys.stderr,
        )
        sys.exit(1)

    server = create_server(Router(config_path=args.config))

    if args.transport == "stdio":
        server.run(transport="stdio")
    else:
        server.settings.host = args.host
        server.settings.port = args.port
        server.run(transport="sse")


if __name__ == "__main__":
    main()
