"""
Transfer Tests — scheduler pacing/selection, eased arcing flights, stick latch.
"""

import sys
import os
import math
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import config as cfg
from balloon import MovableBody, DragIntegrator
from charges import ChargeRegistry, ChargeEntity, ChargeSign, ChargeState
from transfer import (
    TransferSession, TransferScheduler, TransferAnimator, StickController,
    ease_out, arc_point,
)


# ── Helpers ──────────────────────────────────────────────

def registry_of(*specs) -> ChargeRegistry:
    reg = ChargeRegistry()
    reg.charges = [ChargeEntity(i, (x, y), s) for i, (x, y, s) in enumerate(specs)]
    return reg


def make_scheduler(reg, interval=110.0, seed=0):
    session = TransferSession()
    sched = TransferScheduler(reg, session, np.random.default_rng(seed), interval)
    return sched, session


def moving_charge(origin=(0.0, 0.0), target=(100.0, 0.0), offset=0.0) -> ChargeEntity:
    c = ChargeEntity(0, origin, ChargeSign.NEGATIVE)
    c.state = ChargeState.MOVING
    c.target = np.array(target, dtype=float)
    c.curve_offset = offset
    return c


# ── Easing / path ────────────────────────────────────────

class TestEasing:

    def test_ease_endpoints(self):
        assert ease_out(0.0) == 0.0
        assert ease_out(1.0) == 1.0
        assert ease_out(0.5) == pytest.approx(0.75)

    def test_ease_monotonic(self):
        us = np.linspace(0, 1, 50)
        eased = [ease_out(u) for u in us]
        assert all(b >= a for a, b in zip(eased, eased[1:]))

    def test_arc_endpoints(self):
        o, t = np.array([0.0, 0.0]), np.array([100.0, 50.0])
        np.testing.assert_allclose(arc_point(o, t, 20.0, 0.0), o)
        np.testing.assert_allclose(arc_point(o, t, 20.0, 1.0), t, atol=1e-9)

    def test_arc_peak_is_perpendicular(self):
        """ease = 0.5 at progress 1 - sqrt(0.5): midpoint, shifted by the full offset."""
        o, t = np.array([0.0, 0.0]), np.array([100.0, 0.0])
        p = arc_point(o, t, 20.0, 1.0 - math.sqrt(0.5))
        np.testing.assert_allclose(p, [50.0, 20.0], atol=1e-9)

    def test_degenerate_chord(self):
        o = np.array([5.0, 5.0])
        np.testing.assert_allclose(arc_point(o, o.copy(), 20.0, 0.5), o)


# ── Scheduler ────────────────────────────────────────────

class TestScheduler:

    def setup_method(self):
        self.reg = registry_of(
            (500, 400, ChargeSign.NEGATIVE),
            (300, 400, ChargeSign.NEGATIVE),
            (500, 380, ChargeSign.POSITIVE),
        )
        self.body = MovableBody(position=[500, 300])

    def test_stays_inactive_unarmed(self):
        sched, session = make_scheduler(self.reg)
        for t in range(0, 1000, 16):
            assert sched.update(t, self.body, armed=False) == []
        assert not session.active
        assert all(c.state == ChargeState.IDLE for c in self.reg)

    def test_arming_launches_immediately(self):
        sched, session = make_scheduler(self.reg)
        started = sched.update(0.0, self.body, armed=True)
        assert session.active
        assert [c.id for c in started] == [0]
        assert self.reg[0].state == ChargeState.MOVING
        assert self.reg[0].progress == 0.0

    def test_interval_paces_launches(self):
        sched, session = make_scheduler(self.reg)
        sched.update(0.0, self.body, armed=True)
        assert sched.update(100.0, self.body, armed=False) == []
        started = sched.update(110.0, self.body, armed=False)
        assert [c.id for c in started] == [1]
        assert session.last_transfer_started_at == 110.0

    def test_positive_never_launched(self):
        sched, session = make_scheduler(self.reg)
        for t in range(0, 2000, 16):
            sched.update(float(t), self.body, armed=True)
        assert self.reg[2].state == ChargeState.IDLE

    def test_exhaustion_deactivates(self):
        sched, session = make_scheduler(self.reg)
        sched.update(0.0, self.body, armed=True)
        sched.update(110.0, self.body, armed=False)
        assert session.active
        assert sched.update(220.0, self.body, armed=False) == []
        assert not session.active

    def test_arming_with_no_candidates(self):
        reg = registry_of((500, 400, ChargeSign.POSITIVE))
        sched, session = make_scheduler(reg)
        assert sched.update(0.0, self.body, armed=True) == []
        assert not session.active

    def test_target_on_sweater_side(self):
        sched, _ = make_scheduler(self.reg, seed=7)
        sched.update(0.0, self.body, armed=True)
        c = self.reg[0]
        reach = self.body.radius * 0.5 + 6
        assert np.linalg.norm(c.target - self.body.position) == pytest.approx(reach)
        assert c.target[1] > self.body.y        # sweater is below the balloon
        assert abs(c.curve_offset) <= cfg.CURVE_OFFSET_SPAN / 2

    def test_fresh_curve_offsets(self):
        sched, _ = make_scheduler(self.reg, seed=3)
        sched.update(0.0, self.body, armed=True)
        sched.update(110.0, self.body, armed=False)
        assert self.reg[0].curve_offset != self.reg[1].curve_offset


# ── Animator ─────────────────────────────────────────────

class TestAnimator:

    def setup_method(self):
        self.reg = ChargeRegistry()
        self.reg.charges = [moving_charge()]
        self.session = TransferSession()
        self.anim = TransferAnimator(self.reg, self.session, transfer_time_ms=600.0)
        self.body = MovableBody(position=[100.0, -30.0])

    def test_progress_advances_by_dt(self):
        self.anim.update(150.0, self.body)
        assert self.reg[0].progress == pytest.approx(0.25)

    def test_eased_interpolation(self):
        self.anim.update(300.0, self.body)
        np.testing.assert_allclose(self.reg[0].animated_position, [75.0, 0.0], atol=1e-9)

    def test_progress_clamped_and_attached(self):
        arrived = self.anim.update(1000.0, self.body)
        c = self.reg[0]
        assert c.progress == 1.0
        assert c.state == ChargeState.ATTACHED
        assert [a.id for a in arrived] == [0]
        assert self.session.transferred_count == 1

    def test_count_increments_once(self):
        self.anim.update(600.0, self.body)
        for _ in range(20):
            assert self.anim.update(16.0, self.body) == []
        assert self.session.transferred_count == 1

    def test_progress_monotonic(self):
        last = 0.0
        for _ in range(40):
            self.anim.update(16.0, self.body)
            assert self.reg[0].progress >= last
            last = self.reg[0].progress

    def test_attached_rides_with_body(self):
        self.anim.update(600.0, self.body)
        c = self.reg[0]
        np.testing.assert_allclose(c.anchor, [0.0, 30.0])
        self.body.position = np.array([300.0, 200.0])
        self.anim.update(16.0, self.body)
        np.testing.assert_allclose(c.animated_position, [300.0, 230.0])
        assert c.state == ChargeState.ATTACHED

    def test_idle_untouched(self):
        c = ChargeEntity(1, (10.0, 10.0), ChargeSign.NEGATIVE)
        self.reg.charges.append(c)
        self.anim.update(600.0, self.body)
        assert c.state == ChargeState.IDLE
        assert c.progress == 0.0


# ── Stick controller ─────────────────────────────────────

class TestStick:

    def setup_method(self):
        self.session = TransferSession()
        self.body = MovableBody(position=[300.0, 200.0])
        self.drag = DragIntegrator(self.body)
        self.stick = StickController(self.session, self.drag,
                                     transfer_needed=6, stick_distance=24.0)

    def test_no_latch_below_needed(self):
        self.session.transferred_count = 5
        assert not self.stick.update(self.body)
        assert not self.body.stuck

    def test_latch_snaps_onto_sweater(self):
        self.body.velocity[:] = [4.0, 4.0]
        self.session.transferred_count = 6
        assert self.stick.update(self.body)
        assert self.body.stuck
        assert self.body.y == pytest.approx(cfg.SWEATER_Y - self.body.radius)
        assert self.body.x == pytest.approx(300.0)
        np.testing.assert_array_equal(self.body.velocity, [0.0, 0.0])

    def test_latch_clamps_x_into_sweater(self):
        self.body.position = np.array([900.0, 200.0])
        self.session.transferred_count = 6
        self.stick.update(self.body)
        hi = cfg.SWEATER_X + cfg.SWEATER_W - self.body.radius - cfg.STICK_EDGE_MARGIN
        assert self.body.x == pytest.approx(hi)

    def test_latch_ends_drag(self):
        self.drag.on_pointer_down((300.0, 200.0), pointer_id=4)
        self.session.transferred_count = 6
        assert self.stick.update(self.body)
        assert self.body.stuck and not self.body.dragging
        assert self.drag.captured_pointer is None

    def test_no_relatch_far_away(self):
        self.session.transferred_count = 6
        self.stick.update(self.body)
        self.body.stuck = False
        self.body.position = np.array([300.0, 100.0])
        self.session.transferred_count = 9
        assert not self.stick.update(self.body)

    def test_relatch_when_dropped_close(self):
        self.session.transferred_count = 6
        self.stick.update(self.body)
        self.body.stuck = False
        self.body.position = np.array([300.0, cfg.SWEATER_Y - self.body.radius - 16])
        assert self.stick.update(self.body)
        assert self.body.stuck

    def test_no_relatch_while_held_close(self):
        self.session.transferred_count = 6
        self.stick.update(self.body)
        self.drag.on_pointer_down((self.body.x, self.body.y))
        self.drag.on_pointer_move((300.0, cfg.SWEATER_Y - self.body.radius - 16))
        assert not self.stick.update(self.body)
        assert self.body.dragging and not self.body.stuck

    def test_latch_never_touches_count(self):
        self.session.transferred_count = 7
        self.stick.update(self.body)
        assert self.session.transferred_count == 7

    def test_lowered_target_latches(self):
        self.stick.transfer_needed = 10
        self.session.transferred_count = 4
        assert not self.stick.update(self.body)
        self.stick.transfer_needed = 3
        assert self.stick.update(self.body)
        assert self.body.stuck
