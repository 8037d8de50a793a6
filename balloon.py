"""
Balloon — Layer 1
Movable body, pointer-driven drag with inertia, and the proximity / rub signals
derived from it.

Pointer handlers only record input (clamp + capture bookkeeping). Everything
time-dependent happens in integrate(), called once per tick.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

import config as cfg

logger = logging.getLogger("balloon_sim")


@dataclass
class MovableBody:
    """The draggable balloon. `dragging` and `stuck` are never both true."""
    position: np.ndarray = field(default_factory=lambda: np.array([cfg.BALLOON_X, cfg.BALLOON_Y]))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(2))
    radius: float = cfg.BALLOON_RADIUS
    dragging: bool = False
    stuck: bool = False

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        self.velocity = np.array(self.velocity, dtype=float)

    @property
    def x(self) -> float:
        return float(self.position[0])

    @property
    def y(self) -> float:
        return float(self.position[1])

    @property
    def gap_to_substrate(self) -> float:
        """Vertical clearance between the balloon's bottom and the sweater top."""
        return cfg.SWEATER_Y - (self.y + self.radius)


def clamp_to_playfield(point, radius: float, margin: float) -> np.ndarray:
    """Keep a body of `radius` inside the view, left of the wall, above the sweater."""
    x = min(max(float(point[0]), radius + margin), cfg.WALL_X - radius - margin)
    y = min(max(float(point[1]), radius + margin), cfg.SWEATER_Y - radius - margin)
    return np.array([x, y])


def _finite(point) -> bool:
    return bool(np.all(np.isfinite(np.asarray(point, dtype=float))))


class DragIntegrator:
    """Pointer capture + damped coasting for a MovableBody."""

    def __init__(self, body: MovableBody):
        self.body = body
        self.captured_pointer: int | None = None
        self.last_move_distance: float = 0.0

    # ──────────────────────────────────────────
    # Pointer input
    # ──────────────────────────────────────────
    def on_pointer_down(self, point, pointer_id: int = 0) -> bool:
        """Capture the pointer if it lands on the balloon. Returns True on capture."""
        if self.captured_pointer is not None:
            logger.debug(f"pointer {pointer_id} ignored: {self.captured_pointer} holds the balloon")
            return False
        if not _finite(point):
            logger.debug(f"pointer {pointer_id} down ignored: non-finite point {point!r}")
            return False
        b = self.body
        d = float(np.hypot(point[0] - b.position[0], point[1] - b.position[1]))
        if d > b.radius + cfg.GRAB_SLOP:
            return False
        self.captured_pointer = pointer_id
        b.dragging = True
        b.stuck = False
        b.velocity[:] = 0.0
        self.last_move_distance = 0.0
        return True

    def on_pointer_move(self, point, pointer_id: int = 0) -> bool:
        if pointer_id != self.captured_pointer:
            return False
        if not _finite(point):
            logger.debug(f"pointer {pointer_id} move ignored: non-finite point {point!r}")
            return False
        b = self.body
        clamped = clamp_to_playfield(point, b.radius, cfg.DRAG_MARGIN)
        displacement = clamped - b.position
        b.velocity = displacement * cfg.DRAG_VELOCITY_GAIN
        b.position = clamped
        self.last_move_distance = float(np.hypot(displacement[0], displacement[1]))
        b.stuck = False
        return True

    def on_pointer_up(self, pointer_id: int = 0) -> bool:
        if pointer_id != self.captured_pointer:
            return False
        self.release()
        return True

    def release(self) -> None:
        """Drop any capture (pointer up/cancel, shutdown, latch)."""
        self.body.dragging = False
        self.captured_pointer = None

    # ──────────────────────────────────────────
    # Per-tick integration
    # ──────────────────────────────────────────
    def integrate(self, dt_ms: float) -> None:
        """Damped coasting while the balloon is neither held nor stuck."""
        b = self.body
        if b.dragging or b.stuck:
            return
        b.velocity *= cfg.DAMPING
        b.position = clamp_to_playfield(
            b.position + b.velocity * (dt_ms / cfg.FRAME_MS), b.radius, cfg.FREE_MARGIN
        )

    def consume_move(self) -> None:
        """The move distance is an instantaneous signal: it lasts one tick."""
        self.last_move_distance = 0.0


class ProximityDetector:
    """Pure read-outs of the current body state; nothing is accumulated here."""

    def __init__(self, proximity_threshold: float = 160.0, rub_threshold: float = 6.0):
        self.proximity_threshold = proximity_threshold
        self.rub_threshold = rub_threshold
        self.reference = np.array([cfg.SUBSTRATE_REF_X, cfg.SUBSTRATE_REF_Y])

    def distance_to_substrate(self, body: MovableBody) -> float:
        d = body.position - self.reference
        return float(np.hypot(d[0], d[1]))

    def is_near(self, body: MovableBody) -> bool:
        return self.distance_to_substrate(body) < self.proximity_threshold

    def is_rubbing(self, body: MovableBody, integrator: DragIntegrator) -> bool:
        return body.dragging and integrator.last_move_distance >= self.rub_threshold

    @staticmethod
    def attraction_vector(body: MovableBody, max_len: float = 28.0) -> np.ndarray:
        """Short arrow from the balloon toward the sweater centre (UI indicator)."""
        centre = np.array([cfg.SWEATER_X + cfg.SWEATER_W / 2, cfg.SWEATER_Y + cfg.SWEATER_H / 2])
        f = centre - body.position
        length = float(np.hypot(f[0], f[1])) or 1.0
        scale = min(1.0, 120.0 / length)
        return f / length * scale * max_len
