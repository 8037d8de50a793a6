"""
Charge Transfer — Layer 1
Session bookkeeping, the paced scheduler that launches electrons from the
sweater, the eased animator that flies them onto the balloon, and the stick
latch that fires once enough have arrived.

Charge state machine:  IDLE -> MOVING -> ATTACHED (terminal)
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

import config as cfg
from balloon import MovableBody, DragIntegrator
from charges import ChargeRegistry, ChargeEntity, ChargeState

logger = logging.getLogger("balloon_sim")


@dataclass
class TransferSession:
    active: bool = False
    last_transfer_started_at: float = 0.0    # simulation clock, ms
    transferred_count: int = 0

    def reset(self) -> None:
        self.active = False
        self.last_transfer_started_at = 0.0
        self.transferred_count = 0


def ease_out(u: float) -> float:
    """Quadratic ease-out: fast start, soft landing."""
    return u * (2.0 - u)


class TransferScheduler:
    """
    Armed -> Active when the balloon is rubbed close to the sweater (or rub()
    is requested). While active, one electron launches every interval; the
    session goes inactive when no idle negative charge is left.
    """

    def __init__(self, registry: ChargeRegistry, session: TransferSession,
                 rng: np.random.Generator, interval_ms: float = 110.0):
        self.registry = registry
        self.session = session
        self.rng = rng
        self.interval_ms = interval_ms
        self.substrate_ref = np.array([cfg.SUBSTRATE_REF_X, cfg.SUBSTRATE_REF_Y])

    def update(self, now_ms: float, body: MovableBody, armed: bool) -> list[ChargeEntity]:
        """Advance the session; returns the charges launched this tick."""
        s = self.session
        started = []
        if not s.active:
            if not armed:
                return started
            s.active = True
            s.last_transfer_started_at = now_ms
            logger.debug(f"transfer session armed at t={now_ms:.0f}ms")
            launched = self.start_next(body)
            if launched is not None:
                started.append(launched)
            return started

        if now_ms - s.last_transfer_started_at >= self.interval_ms:
            launched = self.start_next(body)
            if launched is not None:
                s.last_transfer_started_at = now_ms
                started.append(launched)
        return started

    def start_next(self, body: MovableBody) -> ChargeEntity | None:
        """Launch the idle negative charge nearest the balloon, or end the session."""
        charge = self.registry.nearest_idle_negative(body.position)
        if charge is None:
            self.session.active = False
            logger.debug("transfer session exhausted")
            return None

        # aim at the side of the balloon facing the sweater
        facing = self.substrate_ref - body.position
        base = math.atan2(facing[1], facing[0])
        angle = base + self.rng.uniform(-cfg.TARGET_ANGLE_SPREAD, cfg.TARGET_ANGLE_SPREAD)
        reach = body.radius * 0.5 + 6.0
        charge.target = body.position + reach * np.array([math.cos(angle), math.sin(angle)])
        charge.progress = 0.0
        charge.curve_offset = float(self.rng.uniform(-0.5, 0.5) * cfg.CURVE_OFFSET_SPAN)
        charge.state = ChargeState.MOVING
        logger.debug(f"charge {charge.id} launched")
        return charge


class TransferAnimator:
    """Eased, arcing flights for MOVING charges; marks arrivals."""

    def __init__(self, registry: ChargeRegistry, session: TransferSession,
                 transfer_time_ms: float = 600.0):
        self.registry = registry
        self.session = session
        self.transfer_time_ms = transfer_time_ms

    def update(self, dt_ms: float, body: MovableBody) -> list[ChargeEntity]:
        """Advance every flight by dt; returns the charges that arrived this tick."""
        arrived = []
        for c in self.registry:
            if c.state == ChargeState.ATTACHED:
                # ride along with the balloon
                c.animated_position[:] = body.position + c.anchor
                continue
            if c.state != ChargeState.MOVING:
                continue

            c.progress = min(1.0, c.progress + dt_ms / self.transfer_time_ms)
            c.animated_position[:] = arc_point(c.position, c.target, c.curve_offset, c.progress)

            if c.progress >= 1.0:
                c.state = ChargeState.ATTACHED
                c.anchor = c.target - body.position
                self.session.transferred_count += 1
                arrived.append(c)
        return arrived


def arc_point(origin: np.ndarray, target: np.ndarray, curve_offset: float,
              progress: float) -> np.ndarray:
    """Point along the curved flight path at `progress` in [0, 1]."""
    ease = ease_out(progress)
    chord = target - origin
    point = origin + chord * ease
    length = float(np.hypot(chord[0], chord[1]))
    if length > 0.0:
        normal = np.array([-chord[1], chord[0]]) / length
        point = point + normal * math.sin(ease * math.pi) * curve_offset
    return point


class StickController:
    """
    Latches the balloon onto the sweater once enough electrons arrived.

    First latch happens on the tick the count reaches the target (or the
    target is lowered to the count). After the balloon is pulled off, it
    re-latches only when released within stick_distance of the sweater top.
    """

    def __init__(self, session: TransferSession, integrator: DragIntegrator,
                 transfer_needed: int = 6, stick_distance: float = 24.0):
        self.session = session
        self.integrator = integrator
        self.transfer_needed = transfer_needed
        self.stick_distance = stick_distance
        self._was_met = False

    def reset(self) -> None:
        self._was_met = False

    def update(self, body: MovableBody) -> bool:
        """Returns True when the balloon latched on this tick."""
        count = self.session.transferred_count
        met = count >= self.transfer_needed
        # a lowered target counts as crossing too
        crossed = met and not self._was_met
        self._was_met = met

        if body.stuck or count < self.transfer_needed:
            return False
        over_sweater = cfg.SWEATER_X <= body.x <= cfg.SWEATER_X + cfg.SWEATER_W
        dropped_close = (not body.dragging and over_sweater
                         and body.gap_to_substrate <= self.stick_distance)
        if not (crossed or dropped_close):
            return False

        self.latch(body)
        return True

    def latch(self, body: MovableBody) -> None:
        r = body.radius
        lo = cfg.SWEATER_X + r + cfg.STICK_EDGE_MARGIN
        hi = cfg.SWEATER_X + cfg.SWEATER_W - r - cfg.STICK_EDGE_MARGIN
        body.position = np.array([min(max(body.x, lo), hi), cfg.SWEATER_Y - r])
        body.velocity[:] = 0.0
        if body.dragging:
            # the held pointer loses the balloon; a fresh press is needed
            self.integrator.release()
        body.stuck = True
        logger.info(f"balloon stuck at x={body.x:.1f} after {self.session.transferred_count} transfers")
