"""
Tests for kill-switches, the immutable config snapshot and its store.
"""

import json

import pytest

from chatroute import ConfigSnapshot, KillSwitchState, PlanTier, SnapshotStore


@pytest.fixture()
def store() -> SnapshotStore:
    return SnapshotStore(quality_scores={"claude-sonnet-4-5": 0.96, "gemini-2.0-flash": 0.60})


# ─────────────────────────────────────────────────────────────────────────────
# Environment loading
# ─────────────────────────────────────────────────────────────────────────────

class TestKillSwitchFromEnv:

    def test_defaults_without_env(self):
        assert KillSwitchState.from_env({}) == KillSwitchState()

    def test_flags_and_override(self):
        state = KillSwitchState.from_env({
            "KILL_GPT": "true",
            "KILL_CLAUDE": "1",
            "KILL_GEMINI": "no",
            "FORCE_FLASH_PLUS": "TRUE",
            "PRESSURE_OVERRIDE": "0.85",
        })
        assert state.disable_gpt is True
        assert state.disable_claude is True
        assert state.disable_gemini is False
        assert state.force_flash_for_plus is True
        assert state.pressure_override == 0.85

    def test_non_numeric_override_is_ignored(self):
        assert KillSwitchState.from_env({"PRESSURE_OVERRIDE": "high"}).pressure_override is None

    def test_active_kills(self):
        state = KillSwitchState(disable_gpt=True, emergency_mode=True)
        assert state.active_kills() == ["GPT", "EMERGENCY_MODE"]


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot reads
# ─────────────────────────────────────────────────────────────────────────────

class TestConfigSnapshot:

    def test_everything_allowed_by_default(self):
        snap = ConfigSnapshot()
        assert snap.is_model_allowed("gpt-5.1")
        assert snap.is_model_allowed("claude-haiku-4-5")

    @pytest.mark.parametrize("switch,model_id", [
        ("disable_gpt", "gpt-5.1"),
        ("disable_claude", "claude-sonnet-4-5"),
        ("disable_gemini", "gemini-2.5-flash"),
        ("disable_mistral", "mistral-large-3"),
    ])
    def test_family_switches(self, switch, model_id):
        snap = ConfigSnapshot(kill_switches=KillSwitchState(**{switch: True}))
        assert snap.is_model_allowed(model_id) is False
        assert snap.is_model_allowed("some-other-model") is True

    def test_emergency_mode_allows_only_flash(self):
        snap = ConfigSnapshot(kill_switches=KillSwitchState(emergency_mode=True))
        assert snap.is_model_allowed("gemini-2.0-flash")
        assert not snap.is_model_allowed("mistral-large-3")
        assert snap.should_force_flash(PlanTier.SOVEREIGN)

    def test_force_flash_per_plan(self):
        snap = ConfigSnapshot(kill_switches=KillSwitchState(force_flash_for_lite=True))
        assert snap.should_force_flash(PlanTier.LITE)
        assert snap.should_force_flash("lite")
        assert not snap.should_force_flash(PlanTier.STARTER)
        assert not snap.should_force_flash(PlanTier.PRO)

    def test_pressure_override_only_raises(self):
        snap = ConfigSnapshot(kill_switches=KillSwitchState(pressure_override=0.6))
        assert snap.get_effective_pressure(0.2) == 0.6
        assert snap.get_effective_pressure(0.9) == 0.9

    def test_pressure_override_is_clamped(self):
        snap = ConfigSnapshot(kill_switches=KillSwitchState(pressure_override=3.0))
        assert snap.get_effective_pressure(0.1) == 1.0

    def test_no_override(self):
        assert ConfigSnapshot().get_effective_pressure(0.42) == 0.42

    def test_quality_drop(self, store):
        snap = store.current
        assert snap.is_quality_drop("claude-sonnet-4-5", "gemini-2.0-flash")
        assert not snap.is_quality_drop("gemini-2.0-flash", "claude-sonnet-4-5")
        assert not snap.is_quality_drop("gemini-2.0-flash", "gemini-2.0-flash")

    def test_unknown_models_score_half(self, store):
        assert store.current.quality_score("unknown-model") == 0.5
        assert store.current.is_quality_drop("unknown-model", "gemini-2.0-flash") is False

    def test_quality_table_is_read_only(self, store):
        with pytest.raises(TypeError):
            store.current.quality_scores["gpt-5.1"] = 0.1


# ─────────────────────────────────────────────────────────────────────────────
# Store writes
# ─────────────────────────────────────────────────────────────────────────────

class TestSnapshotStore:

    def test_set_kill_switches_swaps_snapshot(self, store):
        before = store.current
        after = store.set_kill_switches(disable_gpt=True, changed_by="ops")
        assert store.current is after
        assert after.version == before.version + 1
        assert after.kill_switches.disable_gpt is True
        # the previous snapshot is untouched
        assert before.kill_switches.disable_gpt is False

    def test_multiple_changes_are_one_swap(self, store):
        before = store.current.version
        store.set_kill_switches(disable_gpt=True, disable_claude=True)
        assert store.current.version == before + 1

    def test_no_op_change_keeps_snapshot(self, store):
        before = store.current
        assert store.set_kill_switches(disable_gpt=False) is before

    def test_unknown_key_raises(self, store):
        with pytest.raises(ValueError, match="Unknown kill-switch"):
            store.set_kill_switches(disable_llama=True)

    def test_history_records_who_and_what(self, store):
        store.set_kill_switches(disable_mistral=True, changed_by="alice")
        change = store.get_change_history()[-1]
        assert (change.key, change.old_value, change.new_value, change.changed_by) == (
            "disable_mistral", False, True, "alice",
        )

    def test_history_is_bounded(self, store):
        for i in range(150):
            store.set_kill_switches(pressure_override=i / 1000)
        assert len(store.get_change_history(limit=500)) == SnapshotStore.MAX_HISTORY

    def test_reset(self, store):
        store.set_kill_switches(disable_gpt=True, maintenance_mode=True)
        store.reset_kill_switches()
        assert store.current.kill_switches == KillSwitchState()

    def test_reload_from_env(self, store):
        store.reload_from_env({"MAINTENANCE_MODE": "true"})
        assert store.current.is_in_maintenance()
        assert store.get_change_history()[-1].changed_by == "env_reload"

    def test_status(self, store):
        store.set_kill_switches(disable_claude=True)
        status = store.get_status()
        assert status["active_kills"] == ["Claude"]
        assert status["state"]["disable_claude"] is True
        assert status["version"] == store.current.version

    def test_from_config_reads_scores_and_env(self):
        from chatroute import Config
        s = SnapshotStore.from_config(Config(), environ={"KILL_GPT": "true"})
        assert s.current.kill_switches.disable_gpt is True
        assert s.current.quality_score("claude-sonnet-4-5") == 0.96


class TestQualityScoreUpdates:

    def test_update_score(self, store):
        store.update_score("gemini-2.0-flash", 0.99)
        assert store.current.is_quality_drop("gemini-2.0-flash", "claude-sonnet-4-5")

    def test_update_score_validates(self, store):
        with pytest.raises(ValueError):
            store.update_score("gpt-5.1", 1.5)

    def test_load_scores_skips_invalid(self, store):
        store.load_scores({"gpt-5.1": 0.9, "bad": 2.0, "worse": "high", "flag": True})
        snap = store.current
        assert snap.quality_score("gpt-5.1") == 0.9
        assert "bad" not in snap.quality_scores
        assert "worse" not in snap.quality_scores
        assert "flag" not in snap.quality_scores
        # existing entries survive a merge
        assert snap.quality_score("claude-sonnet-4-5") == 0.96

    def test_load_scores_from_file(self, store, tmp_path):
        path = tmp_path / "scores.json"
        path.write_text(json.dumps({"mistral-large-3": 0.8}))
        store.load_scores_from_file(str(path))
        assert store.current.quality_score("mistral-large-3") == 0.8

    def test_unreadable_file_keeps_table(self, store, tmp_path):
        before = store.current
        assert store.load_scores_from_file(str(tmp_path / "missing.json")) is before

    def test_malformed_file_keeps_table(self, store, tmp_path):
        path = tmp_path / "scores.json"
        path.write_text("[1, 2, 3]")
        before = store.current
        assert store.load_scores_from_file(str(path)) is before

    def test_last_updated_moves(self, store):
        before = store.current.updated_at
        store.update_score("gpt-5.1", 0.5)
        assert store.current.updated_at >= before
        assert store.last_updated.tzinfo is not None
