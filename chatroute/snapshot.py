"""
Runtime configuration snapshot for chatroute: kill-switches and the
hot-reloadable quality score table.

A :class:`ConfigSnapshot` is an immutable value.  :class:`SnapshotStore`
holds the current one and replaces it wholesale on every update, so a
routing decision that reads ``store.current`` once sees a single consistent
configuration even while an operator or background updater is changing it.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Optional

from .registry import PlanTier

_log = logging.getLogger(__name__)

DEFAULT_QUALITY_SCORE = 0.5


# ── Kill-switch state ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KillSwitchState:
    """Operator overrides applied on top of normal routing.

    Attributes:
        disable_gpt / disable_claude / disable_gemini / disable_mistral:
            Remove every model of that family from routing.
        force_flash_for_starter / _lite / _plus: Collapse the plan's
            candidates to a flash model (not for high-stakes requests).
        pressure_override: When set, budget pressure is raised to at least
            this value (clamped to 0.0–1.0).  It never lowers pressure.
        emergency_mode: Only flash models are allowed, for every plan.
        maintenance_mode: Routing returns the maintenance decision.
    """

    disable_gpt: bool = False
    disable_claude: bool = False
    disable_gemini: bool = False
    disable_mistral: bool = False

    force_flash_for_starter: bool = False
    force_flash_for_lite: bool = False
    force_flash_for_plus: bool = False

    pressure_override: Optional[float] = None

    emergency_mode: bool = False
    maintenance_mode: bool = False

    # env var → field
    ENV_VARS = MappingProxyType({
        "KILL_GPT": "disable_gpt",
        "KILL_CLAUDE": "disable_claude",
        "KILL_GEMINI": "disable_gemini",
        "KILL_MISTRAL": "disable_mistral",
        "FORCE_FLASH_STARTER": "force_flash_for_starter",
        "FORCE_FLASH_LITE": "force_flash_for_lite",
        "FORCE_FLASH_PLUS": "force_flash_for_plus",
        "PRESSURE_OVERRIDE": "pressure_override",
        "EMERGENCY_MODE": "emergency_mode",
        "MAINTENANCE_MODE": "maintenance_mode",
    })

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "KillSwitchState":
        """Build a state from environment variables, defaults for the rest."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for var, name in cls.ENV_VARS.items():
            raw = env.get(var)
            if raw is None:
                continue
            if name == "pressure_override":
                try:
                    values[name] = float(raw)
                except ValueError:
                    _log.warning("Ignoring non-numeric %s=%r", var, raw)
            else:
                values[name] = raw.strip().lower() in ("true", "1")
        return cls(**values)

    def active_kills(self) -> List[str]:
        """Labels of the switches currently active."""
        labels = []
        if self.disable_gpt:
            labels.append("GPT")
        if self.disable_claude:
            labels.append("Claude")
        if self.disable_gemini:
            labels.append("Gemini")
        if self.disable_mistral:
            labels.append("Mistral")
        if self.emergency_mode:
            labels.append("EMERGENCY_MODE")
        if self.maintenance_mode:
            labels.append("MAINTENANCE_MODE")
        return labels


@dataclass(frozen=True)
class SnapshotChange:
    """One recorded kill-switch change."""
    key: str
    old_value: Any
    new_value: Any
    changed_at: str
    changed_by: str


# ── Snapshot ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConfigSnapshot:
    """Immutable view of kill-switches and quality scores."""

    kill_switches: KillSwitchState = field(default_factory=KillSwitchState)
    quality_scores: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    version: int = 0
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not isinstance(self.quality_scores, MappingProxyType):
            object.__setattr__(
                self, "quality_scores", MappingProxyType(dict(self.quality_scores))
            )

    # -- kill-switch reads ------------------------------------------------

    def is_model_allowed(self, model_id: str) -> bool:
        """Return False when a kill-switch removes *model_id* from routing."""
        ks = self.kill_switches
        model_lower = model_id.lower()

        if ks.emergency_mode:
            return "flash" in model_lower
        if ks.disable_gpt and ("gpt" in model_lower or "openai" in model_lower):
            return False
        if ks.disable_claude and ("claude" in model_lower or "anthropic" in model_lower):
            return False
        if ks.disable_gemini and "gemini" in model_lower:
            return False
        if ks.disable_mistral and ("mistral" in model_lower or "magistral" in model_lower):
            return False
        return True

    def should_force_flash(self, plan: PlanTier) -> bool:
        ks = self.kill_switches
        if ks.emergency_mode:
            return True
        plan = PlanTier.coerce(plan)
        return (
            (plan is PlanTier.STARTER and ks.force_flash_for_starter)
            or (plan is PlanTier.LITE and ks.force_flash_for_lite)
            or (plan is PlanTier.PLUS and ks.force_flash_for_plus)
        )

    def get_effective_pressure(self, calculated: float) -> float:
        """Apply the pressure override.  The result is never below *calculated*."""
        override = self.kill_switches.pressure_override
        if override is None:
            return calculated
        return max(calculated, min(1.0, max(0.0, override)))

    def is_in_maintenance(self) -> bool:
        return self.kill_switches.maintenance_mode

    # -- quality scores ---------------------------------------------------

    def quality_score(self, model_id: str) -> float:
        """Quality score for *model_id*; unknown models score 0.5."""
        return self.quality_scores.get(model_id, DEFAULT_QUALITY_SCORE)

    def is_quality_drop(self, primary_model: str, fallback_model: str) -> bool:
        """True when the fallback scores strictly below the primary."""
        return self.quality_score(fallback_model) < self.quality_score(primary_model)


# ── Store ─────────────────────────────────────────────────────────────────────

class SnapshotStore:
    """Holds the current :class:`ConfigSnapshot` and swaps it atomically.

    Readers take ``store.current`` (a single attribute read) and use that
    snapshot for the whole decision.  Writers serialise on an internal lock,
    build a new snapshot, and replace the reference.
    """

    MAX_HISTORY = 100

    def __init__(
        self,
        kill_switches: Optional[KillSwitchState] = None,
        quality_scores: Optional[Mapping[str, float]] = None,
    ) -> None:
        self._write_lock = threading.Lock()
        self._history: Deque[SnapshotChange] = deque(maxlen=self.MAX_HISTORY)
        self._current = ConfigSnapshot(
            kill_switches=kill_switches or KillSwitchState(),
            quality_scores=dict(quality_scores or {}),
        )

    @classmethod
    def from_config(cls, config, environ: Optional[Mapping[str, str]] = None) -> "SnapshotStore":
        """Store seeded with *config*'s quality table and env kill-switches."""
        return cls(
            kill_switches=KillSwitchState.from_env(environ),
            quality_scores=config.get_quality_scores(),
        )

    @property
    def current(self) -> ConfigSnapshot:
        return self._current

    @property
    def last_updated(self) -> datetime:
        return datetime.fromtimestamp(self._current.updated_at, tz=timezone.utc)

    # ------------------------------------------------------------------
    # Kill-switch writes
    # ------------------------------------------------------------------

    def set_kill_switches(self, changed_by: str = "system", **changes: Any) -> ConfigSnapshot:
        """Apply one or more kill-switch changes as a single swap.

        Args:
            changed_by: Who made the change (recorded in history).
            **changes: ``KillSwitchState`` field values.

        Returns:
            The newly installed snapshot.

        Raises:
            ValueError: If a key is not a kill-switch field.
        """
        valid = {f.name for f in fields(KillSwitchState)}
        unknown = sorted(set(changes) - valid)
        if unknown:
            raise ValueError(f"Unknown kill-switch keys: {unknown}")

        with self._write_lock:
            old = self._current
            effective = {
                k: v for k, v in changes.items()
                if getattr(old.kill_switches, k) != v
            }
            if not effective:
                return old
            new_switches = replace(old.kill_switches, **effective)
            now = datetime.now(timezone.utc).isoformat()
            for key, value in effective.items():
                self._history.append(SnapshotChange(
                    key=key,
                    old_value=getattr(old.kill_switches, key),
                    new_value=value,
                    changed_at=now,
                    changed_by=changed_by,
                ))
                _log.warning(
                    "Kill switch changed: %s %r -> %r (by %s)",
                    key, getattr(old.kill_switches, key), value, changed_by,
                )
            self._current = replace(
                old, kill_switches=new_switches,
                version=old.version + 1, updated_at=time.time(),
            )
            return self._current

    def reset_kill_switches(self, changed_by: str = "system") -> ConfigSnapshot:
        """Return every kill-switch to its default."""
        defaults = KillSwitchState()
        return self.set_kill_switches(
            changed_by=changed_by,
            **{f.name: getattr(defaults, f.name) for f in fields(KillSwitchState)},
        )

    def reload_from_env(self, environ: Optional[Mapping[str, str]] = None) -> ConfigSnapshot:
        """Re-read kill-switches from the environment."""
        state = KillSwitchState.from_env(environ)
        return self.set_kill_switches(
            changed_by="env_reload",
            **{f.name: getattr(state, f.name) for f in fields(KillSwitchState)},
        )

    # ------------------------------------------------------------------
    # Quality score writes
    # ------------------------------------------------------------------

    def update_score(self, model_id: str, score: float) -> ConfigSnapshot:
        """Hot-update a single model's quality score."""
        if not (0.0 <= score <= 1.0):
            raise ValueError(f"quality score must be 0.0–1.0, got {score}")
        snapshot = self._swap_scores({model_id: score})
        _log.info("Quality score updated: %s -> %.2f", model_id, score)
        return snapshot

    def load_scores(self, scores: Mapping[str, float], source: str = "external") -> ConfigSnapshot:
        """Merge an externally sourced score table over the current one.

        Entries outside 0.0–1.0 or that are not numbers are skipped with a
        warning; the rest are applied in one swap.
        """
        accepted: Dict[str, float] = {}
        for model_id, score in scores.items():
            if isinstance(score, bool) or not isinstance(score, (int, float)) or not (0.0 <= score <= 1.0):
                _log.warning("Ignoring invalid quality score from %s: %s=%r", source, model_id, score)
                continue
            accepted[model_id] = float(score)
        snapshot = self._swap_scores(accepted)
        _log.info("Loaded %d quality scores from %s", len(accepted), source)
        return snapshot

    def load_scores_from_file(self, path: str) -> ConfigSnapshot:
        """Load a ``{model_id: score}`` JSON file; keep current scores on failure."""
        try:
            with open(path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object of model_id -> score")
        except (OSError, ValueError) as exc:
            _log.warning(
                "Could not load quality scores from %s: %s; keeping current table",
                path, exc,
            )
            return self._current
        return self.load_scores(data, source=path)

    def _swap_scores(self, updates: Mapping[str, float]) -> ConfigSnapshot:
        with self._write_lock:
            old = self._current
            merged = dict(old.quality_scores)
            merged.update(updates)
            self._current = replace(
                old, quality_scores=MappingProxyType(merged),
                version=old.version + 1, updated_at=time.time(),
            )
            return self._current

    # ------------------------------------------------------------------
    # History & status
    # ------------------------------------------------------------------

    def get_change_history(self, limit: int = 20) -> List[SnapshotChange]:
        return list(self._history)[-limit:]

    def get_status(self) -> Dict[str, Any]:
        snapshot = self._current
        return {
            "version": snapshot.version,
            "state": {
                f.name: getattr(snapshot.kill_switches, f.name)
                for f in fields(KillSwitchState)
            },
            "active_kills": snapshot.kill_switches.active_kills(),
            "recent_changes": self.get_change_history(5),
        }
