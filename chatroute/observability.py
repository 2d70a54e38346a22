"""
Observability hooks for chatroute.

The router reports each decision and each degraded path to a sink.  Sinks
are fire-and-forget: :func:`emit` catches anything a sink raises so that a
broken log pipeline can never fail a chat request.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

_log = logging.getLogger(__name__)


@dataclass
class RoutingEvent:
    """Structured record of one routing decision."""
    request_id: str
    user_id: str
    plan: str
    model_chosen: str
    was_downgraded: bool
    pressure_level: str
    tokens_estimated: int
    model_original: Optional[str] = None
    downgrade_reason: Optional[str] = None
    region: str = "IN"
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def pressure_level(pressure: float) -> str:
    """Bucket a pressure scalar into LOW / MEDIUM / HIGH."""
    if pressure > 0.8:
        return "HIGH"
    if pressure > 0.5:
        return "MEDIUM"
    return "LOW"


class ObservabilitySink(Protocol):
    """Receiver for routing telemetry."""

    def log_routing(self, event: RoutingEvent) -> None: ...

    def log_warn(self, message: str, **context: Any) -> None: ...


class LoggingSink:
    """Default sink: writes events through the standard ``logging`` module."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("chatroute.routing")

    def log_routing(self, event: RoutingEvent) -> None:
        self.logger.info(
            "route request=%s plan=%s model=%s pressure=%s downgraded=%s",
            event.request_id, event.plan, event.model_chosen,
            event.pressure_level, event.was_downgraded,
            extra={"routing_event": event.to_dict()},
        )

    def log_warn(self, message: str, **context: Any) -> None:
        self.logger.warning("%s %s", message, context, extra={"routing_context": context})


def emit(sink: Optional[ObservabilitySink], method: str, *args: Any, **kwargs: Any) -> None:
    """Call ``sink.<method>(...)``, logging and discarding any failure."""
    if sink is None:
        return
    try:
        getattr(sink, method)(*args, **kwargs)
    except Exception as exc:
        _log.debug("Observability sink %s.%s failed: %s", type(sink).__name__, method, exc)
