"""
Fallback metrics for chatroute.

Every approved fallback is recorded into a capacity-bounded in-memory
buffer while running aggregates are updated in O(1).  When the buffer is
full the whole batch is detached and handed to an async flush callback
(e.g. a bulk insert); if that callback fails, up to half the capacity is
re-admitted and the rest is dropped.  An optional background task also
flushes whenever more than ``AUTO_FLUSH_THRESHOLD`` records are waiting.

Appends and flushes detach the buffer under one lock, so a record is
delivered by exactly one flush no matter how overflow and timer flushes
interleave with concurrent appends.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from .fallback import FallbackContext, FallbackDecision, FallbackReason

_log = logging.getLogger(__name__)

FlushCallback = Callable[[List["FallbackMetric"]], Awaitable[None]]

MAX_METRICS_IN_MEMORY = 1_000
AUTO_FLUSH_THRESHOLD = 100
AUTO_FLUSH_INTERVAL_SECONDS = 300.0


@dataclass
class FallbackMetric:
    """One fallback event."""
    request_id: str
    plan: str
    primary_provider: str
    fallback_provider: str
    reason: FallbackReason
    cost_savings: float
    success: bool
    retry_attempts: int = 0
    compression_attempted: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_decision(
        cls,
        decision: FallbackDecision,
        request_id: str,
        plan: str,
        primary_provider: str,
        fallback_provider: str,
        success: bool,
        retry_context: Optional[FallbackContext] = None,
    ) -> "FallbackMetric":
        """Build a metric from an approved :class:`FallbackDecision`.

        Raises:
            ValueError: If the decision did not approve a fallback.
        """
        if not decision.should_fallback or decision.reason is None:
            raise ValueError("Only approved fallbacks are recorded as metrics")
        ctx = retry_context or FallbackContext()
        return cls(
            request_id=request_id,
            plan=str(getattr(plan, "value", plan)),
            primary_provider=primary_provider,
            fallback_provider=fallback_provider,
            reason=decision.reason,
            cost_savings=decision.cost_savings,
            success=success,
            retry_attempts=ctx.attempt_number,
            compression_attempted=ctx.compression_attempted,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "plan": self.plan,
            "primary_provider": self.primary_provider,
            "fallback_provider": self.fallback_provider,
            "reason": self.reason.value,
            "cost_savings": self.cost_savings,
            "success": self.success,
            "retry_attempts": self.retry_attempts,
            "compression_attempted": self.compression_attempted,
        }


@dataclass
class _Aggregates:
    """Running totals, updated incrementally per record."""
    total: int = 0
    by_reason: Counter = field(default_factory=Counter)
    by_provider: Counter = field(default_factory=Counter)
    by_plan: Counter = field(default_factory=Counter)
    total_cost_savings: float = 0.0
    success_count: int = 0
    compression_attempts: int = 0
    avg_retry_attempts: float = 0.0

    def add(self, metric: FallbackMetric) -> None:
        self.total += 1
        self.by_reason[metric.reason.value] += 1
        self.by_provider[metric.primary_provider] += 1
        self.by_plan[metric.plan] += 1
        self.total_cost_savings += metric.cost_savings
        if metric.success:
            self.success_count += 1
        if metric.compression_attempted:
            self.compression_attempts += 1
        self.avg_retry_attempts += (metric.retry_attempts - self.avg_retry_attempts) / self.total

    def snapshot(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_reason": dict(self.by_reason),
            "by_provider": dict(self.by_provider),
            "by_plan": dict(self.by_plan),
            "total_cost_savings": self.total_cost_savings,
            "success_count": self.success_count,
            "compression_attempts": self.compression_attempts,
            "avg_retry_attempts": self.avg_retry_attempts,
        }


class FallbackMetricsAggregator:
    """Bounded recorder of fallback events with incremental statistics.

    Example::

        metrics = FallbackMetricsAggregator()
        metrics.set_flush_callback(store_batch)     # async def store_batch(batch)
        metrics.record_fallback(FallbackMetric.from_decision(...))
        print(metrics.get_report()["recommendations"])
    """

    def __init__(
        self,
        capacity: int = MAX_METRICS_IN_MEMORY,
        flush_callback: Optional[FlushCallback] = None,
        auto_flush_threshold: int = AUTO_FLUSH_THRESHOLD,
    ) -> None:
        if capacity < 2:
            raise ValueError(f"capacity must be >= 2, got {capacity}")
        if auto_flush_threshold < 0:
            raise ValueError(f"auto_flush_threshold must be >= 0, got {auto_flush_threshold}")
        self.capacity = capacity
        self.auto_flush_threshold = auto_flush_threshold
        self._flush_callback = flush_callback
        self._lock = threading.Lock()
        self._buffer: Deque[FallbackMetric] = deque(maxlen=capacity)
        self._stats = _Aggregates()
        self._pending: Set[asyncio.Task] = set()
        self._delivering = False
        self._queued: List[List[FallbackMetric]] = []
        self._auto_flush_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._buffer)

    def set_flush_callback(self, callback: Optional[FlushCallback]) -> None:
        """Install the async persistence callback (None to detach)."""
        self._flush_callback = callback
        _log.info("Fallback metrics flush callback configured")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_fallback(self, metric: FallbackMetric) -> None:
        """Append *metric*; a full buffer is flushed before the append."""
        with self._lock:
            batch = self._detach_locked() if len(self._buffer) >= self.capacity else None
            self._buffer.append(metric)
            self._stats.add(metric)

        _log.info(
            "Fallback recorded: reason=%s plan=%s %s->%s retries=%d compressed=%s saved=%.4f",
            metric.reason.value, metric.plan, metric.primary_provider,
            metric.fallback_provider, metric.retry_attempts,
            metric.compression_attempted, metric.cost_savings,
        )

        if batch:
            _log.warning("Fallback metrics buffer full (%d), flushing", len(batch))
            self._dispatch(batch)

    def _detach_locked(self) -> List[FallbackMetric]:
        batch = list(self._buffer)
        self._buffer.clear()
        return batch

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def _dispatch(self, batch: List[FallbackMetric]) -> None:
        callback = self._flush_callback
        if callback is None:
            _log.info("Cleared %d fallback metrics (no flush callback)", len(batch))
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._deliver(batch, callback))
            return
        task = loop.create_task(self._deliver(batch, callback))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, batch: List[FallbackMetric], callback: FlushCallback) -> bool:
        # Only one delivery awaits the callback at a time. A batch arriving
        # while another is in flight is queued and handed to the active
        # deliverer, which drains the queue before it returns.
        with self._lock:
            if self._delivering:
                self._queued.append(batch)
                return True
            self._delivering = True
        try:
            delivered = await self._deliver_one(batch, callback)
            while True:
                with self._lock:
                    if not self._queued:
                        self._delivering = False
                        break
                    queued = self._queued.pop(0)
                await self._deliver_one(queued, callback)
        except asyncio.CancelledError:
            with self._lock:
                self._delivering = False
                leftover, self._queued = self._queued, []
            for queued in leftover:
                self._readmit(queued)
            raise
        return delivered

    async def _deliver_one(self, batch: List[FallbackMetric], callback: FlushCallback) -> bool:
        try:
            await callback(batch)
        except Exception:
            _log.exception("Fallback metrics flush of %d records failed", len(batch))
            self._readmit(batch)
            return False
        _log.info("Flushed %d fallback metrics to storage", len(batch))
        return True

    def _readmit(self, batch: List[FallbackMetric]) -> None:
        with self._lock:
            room = self.capacity - len(self._buffer)
            keep = batch[:min(self.capacity // 2, room)]
            if keep:
                merged: Deque[FallbackMetric] = deque(keep, maxlen=self.capacity)
                merged.extend(self._buffer)
                self._buffer = merged
        if len(keep) < len(batch):
            _log.warning("Dropped %d fallback metrics after failed flush", len(batch) - len(keep))

    async def flush(self) -> int:
        """Detach the live buffer and deliver it.

        Returns:
            Number of records handed off (0 when the buffer was empty or
            the callback failed). A batch queued behind a delivery already
            in flight counts as handed off.
        """
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._detach_locked()

        callback = self._flush_callback
        if callback is None:
            _log.info("Cleared %d fallback metrics (no flush callback)", len(batch))
            return len(batch)
        return len(batch) if await self._deliver(batch, callback) else 0

    async def auto_flush(self) -> int:
        """Flush only when more than ``auto_flush_threshold`` records wait."""
        if len(self._buffer) > self.auto_flush_threshold:
            return await self.flush()
        return 0

    def start_auto_flush(self, interval: float = AUTO_FLUSH_INTERVAL_SECONDS) -> asyncio.Task:
        """Start the periodic flush task on the running event loop."""
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        if self._auto_flush_task is not None and not self._auto_flush_task.done():
            return self._auto_flush_task

        async def _run() -> None:
            while True:
                await asyncio.sleep(interval)
                await self.auto_flush()

        self._auto_flush_task = asyncio.get_running_loop().create_task(_run())
        return self._auto_flush_task

    async def stop_auto_flush(self) -> None:
        task, self._auto_flush_task = self._auto_flush_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def drain(self) -> None:
        """Wait for overflow flushes already scheduled on the loop."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = self._stats.snapshot()
            in_memory = len(self._buffer)
        stats["metrics_in_memory"] = in_memory
        stats["memory_limit"] = self.capacity
        stats["success_rate"] = (
            stats["success_count"] / stats["total"] * 100 if stats["total"] else 0.0
        )
        return stats

    def get_recent_metrics(self, count: int = 20) -> List[FallbackMetric]:
        with self._lock:
            return list(self._buffer)[-count:] if count > 0 else []

    def get_report(self) -> Dict[str, Any]:
        """Summary, recent events, and recommendations from the aggregates."""
        summary = self.get_stats()
        return {
            "summary": summary,
            "recent_fallbacks": self.get_recent_metrics(20),
            "recommendations": self._recommendations(summary),
        }

    @staticmethod
    def _recommendations(summary: Dict[str, Any]) -> List[str]:
        total = summary["total"]
        if not total:
            return []
        recommendations: List[str] = []

        for reason, count in summary["by_reason"].items():
            pct = count / total * 100
            if reason == FallbackReason.RATE_LIMIT.value and pct > 20:
                recommendations.append(
                    f"High rate limit errors ({pct:.1f}%) - Consider upgrading API tier"
                )
            elif reason == FallbackReason.TIMEOUT.value and pct > 15:
                recommendations.append(
                    f"High timeout rate ({pct:.1f}%) - Check network/provider status"
                )
            elif reason == FallbackReason.CONTEXT_LENGTH_EXCEEDED.value and pct > 10:
                recommendations.append(
                    f"Context length issues ({pct:.1f}%) - Improve compression strategy"
                )

        for provider, count in summary["by_provider"].items():
            pct = count / total * 100
            if pct > 30:
                recommendations.append(
                    f"{provider} has {pct:.1f}% fallback rate - Consider alternative"
                )

        if summary["avg_retry_attempts"] < 1.5:
            recommendations.append(
                f"Low avg retries ({summary['avg_retry_attempts']:.1f}) - "
                f"Fallback may be triggering too early"
            )

        compression_rate = summary["compression_attempts"] / total * 100
        if compression_rate < 50 and summary["by_reason"].get(FallbackReason.CONTEXT_LENGTH_EXCEEDED.value):
            recommendations.append(
                f"Low compression attempts ({compression_rate:.1f}%) - "
                f"Enable compression before fallback"
            )

        if summary["total_cost_savings"] > 1000:
            recommendations.append(
                f"Total cost savings: {summary['total_cost_savings']:.2f} - Fallback strategy working"
            )

        return recommendations
