"""
Gesture Preset System
Scripted pointer gestures driven headlessly through BalloonController:
grab -> drag -> rub -> release, one tick per step. Each preset returns a
result dict so tests and the viewers (key 1-3) can replay the same gesture.
"""

import numpy as np

import config as cfg
from config import SimulationConfig
from controller import BalloonController

# Frame length used by all presets (ms)
_DT = 16.0

# Where the balloon gets rubbed: straight above the sweater centre
RUB_POINT = (cfg.SWEATER_X + cfg.SWEATER_W / 2, cfg.SWEATER_Y - cfg.BALLOON_RADIUS - 10)
# Far corner: well outside the proximity radius
FAR_POINT = (cfg.WALL_X - 120, cfg.BALLOON_RADIUS + 20)


def _new_controller(config=None, seed=0) -> BalloonController:
    return BalloonController(config or SimulationConfig(), rng=np.random.default_rng(seed))


class _Recorder:
    """Collects timings from the controller's event queue while a gesture runs."""

    def __init__(self, ctrl: BalloonController):
        self.ctrl = ctrl
        self.first_transfer_ms = None
        self.stuck_ms = None
        self.armed_ms = None
        self.transfers_started = 0

    def step(self, dt=_DT) -> None:
        was_active = self.ctrl.session.active
        self.ctrl.tick(dt)
        if self.ctrl.session.active and not was_active and self.armed_ms is None:
            self.armed_ms = self.ctrl.clock_ms
        for ev in self.ctrl.drain_events():
            if ev["type"] == "transfer_started":
                self.transfers_started += 1
                if self.first_transfer_ms is None:
                    self.first_transfer_ms = self.ctrl.clock_ms
            elif ev["type"] == "stuck" and self.stuck_ms is None:
                self.stuck_ms = self.ctrl.clock_ms


def drag_path(rec: _Recorder, start, end, steps: int, pointer_id: int = 0) -> None:
    """Move the held pointer from start to end in equal steps, one tick each."""
    for i in range(1, steps + 1):
        f = i / steps
        x = start[0] + (end[0] - start[0]) * f
        y = start[1] + (end[1] - start[1]) * f
        rec.ctrl.pointer_move(x, y, pointer_id)
        rec.step()


def rub_strokes(rec: _Recorder, centre, amplitude: float, max_ms: float,
                pointer_id: int = 0, until_stuck: bool = True) -> None:
    """Back-and-forth strokes of 2*amplitude per tick around `centre`."""
    side = 1
    t_end = rec.ctrl.clock_ms + max_ms
    while rec.ctrl.clock_ms < t_end:
        rec.ctrl.pointer_move(centre[0] + side * amplitude, centre[1], pointer_id)
        rec.step()
        side = -side
        if until_stuck and rec.ctrl.body.stuck:
            break


class GesturePreset:
    """Each preset: set up controller -> run scripted pointer input -> result dict."""

    @staticmethod
    def rub_until_stuck(run=True, config=None, seed=0, max_ms=6000.0) -> dict:
        """Grab the balloon, bring it over the sweater and rub until it sticks."""
        ctrl = _new_controller(config, seed)
        rec = _Recorder(ctrl)
        start = (ctrl.body.x, ctrl.body.y)
        if run:
            ctrl.pointer_down(*start)
            drag_path(rec, start, RUB_POINT, steps=30)
            rub_strokes(rec, RUB_POINT, amplitude=15.0, max_ms=max_ms)
            # let in-flight electrons land
            for _ in range(int(ctrl.config.transfer_time_ms / _DT) + 2):
                rec.step()
        return {
            "controller": ctrl,
            "elapsed_ms": ctrl.clock_ms,
            "armed_ms": rec.armed_ms,
            "first_transfer_ms": rec.first_transfer_ms,
            "stuck_ms": rec.stuck_ms,
            "stuck": ctrl.body.stuck,
            "transferred": ctrl.session.transferred_count,
        }

    @staticmethod
    def hover_far(run=True, config=None, seed=0, rub_ms=3000.0) -> dict:
        """Rub vigorously far from the sweater: nothing may transfer."""
        ctrl = _new_controller(config, seed)
        rec = _Recorder(ctrl)
        start = (ctrl.body.x, ctrl.body.y)
        min_distance = ctrl.detector.distance_to_substrate(ctrl.body)
        if run:
            ctrl.pointer_down(*start)
            drag_path(rec, start, FAR_POINT, steps=20)
            end = ctrl.clock_ms + rub_ms
            side = 1
            while ctrl.clock_ms < end:
                ctrl.pointer_move(FAR_POINT[0] + side * 20.0, FAR_POINT[1])
                rec.step()
                min_distance = min(min_distance, ctrl.detector.distance_to_substrate(ctrl.body))
                side = -side
            ctrl.pointer_up()
            rec.step()
        return {
            "controller": ctrl,
            "elapsed_ms": ctrl.clock_ms,
            "armed_ms": rec.armed_ms,
            "first_transfer_ms": rec.first_transfer_ms,
            "min_distance": min_distance,
            "transferred": ctrl.session.transferred_count,
        }

    @staticmethod
    def pull_off_and_drop(run=True, config=None, seed=0) -> dict:
        """Stick the balloon, pull it off, then drop it back near the sweater."""
        result = GesturePreset.rub_until_stuck(run=run, config=config, seed=seed)
        ctrl = result["controller"]
        rec = _Recorder(ctrl)
        out = {
            "controller": ctrl,
            "count_before": ctrl.session.transferred_count,
            "stuck_after_pull": None,
            "count_after_pull": None,
            "stuck_after_drop": None,
        }
        if not run or not ctrl.body.stuck:
            return out

        ctrl.pointer_up()                 # the latch already took the balloon away
        pos = (ctrl.body.x, ctrl.body.y)
        ctrl.pointer_down(*pos, pointer_id=1)
        lifted = (pos[0], 120.0)
        drag_path(rec, pos, lifted, steps=10, pointer_id=1)
        ctrl.pointer_up(pointer_id=1)
        for _ in range(30):
            rec.step()
        out["stuck_after_pull"] = ctrl.body.stuck
        out["count_after_pull"] = ctrl.session.transferred_count

        pos = (ctrl.body.x, ctrl.body.y)
        ctrl.pointer_down(*pos, pointer_id=2)
        low = (pos[0], cfg.SWEATER_Y - cfg.BALLOON_RADIUS - cfg.DRAG_MARGIN)
        drag_path(rec, pos, low, steps=40, pointer_id=2)
        ctrl.pointer_up(pointer_id=2)
        for _ in range(5):
            rec.step()
        out["stuck_after_drop"] = ctrl.body.stuck
        out["elapsed_ms"] = ctrl.clock_ms
        return out
