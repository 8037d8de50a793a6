"""
Gesture preset tests — scripted pointer gestures replayed headlessly.
run=False only builds the controller; run=True plays the whole gesture.
"""

import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from charges import ChargeState
from config import SimulationConfig
from presets import GesturePreset


PRESETS = [
    GesturePreset.rub_until_stuck,
    GesturePreset.hover_far,
    GesturePreset.pull_off_and_drop,
]


class TestSetupOnly:

    @pytest.mark.parametrize("preset_fn", PRESETS)
    def test_fresh_controller(self, preset_fn):
        result = preset_fn(run=False)
        ctrl = result["controller"]
        assert ctrl.clock_ms == 0.0
        assert ctrl.session.transferred_count == 0
        assert all(c.state == ChargeState.IDLE for c in ctrl.registry)

    @pytest.mark.parametrize("preset_fn", PRESETS)
    def test_config_passed_through(self, preset_fn):
        result = preset_fn(run=False, config=SimulationConfig(rows=4, cols=3))
        assert result["controller"].config.rows == 4

    def test_same_seed_same_layout(self):
        a = GesturePreset.rub_until_stuck(run=False, seed=5)["controller"]
        b = GesturePreset.rub_until_stuck(run=False, seed=5)["controller"]
        for ca, cb in zip(a.registry, b.registry):
            assert tuple(ca.position) == tuple(cb.position)


class TestRubUntilStuck:

    def test_balloon_sticks(self):
        result = GesturePreset.rub_until_stuck()
        assert result["stuck"]
        assert result["transferred"] >= 6

    def test_first_transfer_follows_arming(self):
        result = GesturePreset.rub_until_stuck()
        assert result["armed_ms"] is not None
        assert result["first_transfer_ms"] - result["armed_ms"] <= 110.0

    def test_sticks_after_first_transfer(self):
        result = GesturePreset.rub_until_stuck()
        assert result["stuck_ms"] >= result["first_transfer_ms"] + 600.0

    def test_higher_target_takes_longer(self):
        quick = GesturePreset.rub_until_stuck(config=SimulationConfig(transfer_needed=3))
        slow = GesturePreset.rub_until_stuck(config=SimulationConfig(transfer_needed=10))
        assert quick["stuck"] and slow["stuck"]
        assert quick["stuck_ms"] < slow["stuck_ms"]


class TestHoverFar:

    def test_nothing_transfers(self):
        result = GesturePreset.hover_far()
        assert result["min_distance"] > 160.0
        assert result["transferred"] == 0
        assert result["armed_ms"] is None
        assert result["first_transfer_ms"] is None

    def test_balloon_released(self):
        ctrl = GesturePreset.hover_far()["controller"]
        assert not ctrl.body.dragging
        assert not ctrl.body.stuck


class TestPullOffAndDrop:

    def test_pull_unsticks_and_drop_resticks(self):
        result = GesturePreset.pull_off_and_drop()
        assert result["stuck_after_pull"] is False
        assert result["stuck_after_drop"] is True

    def test_pull_keeps_count(self):
        result = GesturePreset.pull_off_and_drop()
        assert result["count_after_pull"] >= result["count_before"]

    def test_setup_only_skips_pull(self):
        result = GesturePreset.pull_off_and_drop(run=False)
        assert result["stuck_after_pull"] is None
        assert result["stuck_after_drop"] is None
