"""
Charge Registry — Layer 1
Fixed charge sites on the sweater (substrate) and wall, their transfer state
machine fields, cosmetic induction and electric-field sampling.

The registry is an arena: one list of ChargeEntity records indexed by id,
mutated in place every tick. Entities are never removed individually; a reset
rebuilds the whole list.
"""

import enum
import logging
from collections import Counter
from dataclasses import dataclass, field

import numpy as np

import config as cfg

logger = logging.getLogger("balloon_sim")

SITE_SWEATER = "sweater"
SITE_WALL = "wall"


class ChargeSign(enum.IntEnum):
    NEGATIVE = -1
    POSITIVE = 1


class ChargeState(enum.Enum):
    IDLE = 0
    MOVING = 1
    ATTACHED = 2


@dataclass
class ChargeEntity:
    """One charge site. `position` is fixed; `animated_position` is what gets drawn."""
    id: int
    position: np.ndarray
    sign: ChargeSign
    mobile: bool = False
    site: str = SITE_SWEATER
    animated_position: np.ndarray = None
    state: ChargeState = ChargeState.IDLE
    progress: float = 0.0
    target: np.ndarray = field(default_factory=lambda: np.zeros(2))
    curve_offset: float = 0.0
    anchor: np.ndarray = field(default_factory=lambda: np.zeros(2))

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        if self.animated_position is None:
            self.animated_position = self.position.copy()
        else:
            self.animated_position = np.array(self.animated_position, dtype=float)
        self.target = np.array(self.target, dtype=float)
        self.anchor = np.array(self.anchor, dtype=float)

    @property
    def is_negative(self) -> bool:
        return self.sign == ChargeSign.NEGATIVE


def _balanced_flags(n: int, n_true: int, rng: np.random.Generator) -> np.ndarray:
    """Exactly n_true True values in random positions."""
    flags = np.zeros(n, dtype=bool)
    flags[:n_true] = True
    rng.shuffle(flags)
    return flags


class ChargeRegistry:
    """Owns every ChargeEntity of one simulation instance."""

    def __init__(self):
        self.charges: list[ChargeEntity] = []

    def __len__(self) -> int:
        return len(self.charges)

    def __iter__(self):
        return iter(self.charges)

    def __getitem__(self, charge_id: int) -> ChargeEntity:
        return self.charges[charge_id]

    # ──────────────────────────────────────────
    # Layout
    # ──────────────────────────────────────────
    def initialize(self, rows: int, cols: int, mobile_fraction: float,
                   rng: np.random.Generator) -> list[ChargeEntity]:
        """
        Build the sweater grid (rows x cols, jittered) and the wall column.

        Sweater polarity is balanced (the odd one out is negative) and the
        number of mobile charges is exactly round(mobile_fraction * total), so
        two layouts built with the same parameters have identical counts per
        sign, state and mobility; only the jitter differs.
        """
        points = []
        for r in range(rows):
            for c in range(cols):
                fx = c / (cols - 1) if cols > 1 else 0.5
                fy = r / (rows - 1) if rows > 1 else 0.5
                x = cfg.SWEATER_X + 24 + fx * (cfg.SWEATER_W - 48)
                y = cfg.SWEATER_Y + 20 + fy * (cfg.SWEATER_H - 40)
                points.append((x, y))
        sweater_pos = np.array(points, dtype=float).reshape(-1, 2)
        sweater_pos += (rng.random(sweater_pos.shape) - 0.5) * cfg.GRID_JITTER

        n_sweater = len(sweater_pos)
        negative = _balanced_flags(n_sweater, (n_sweater + 1) // 2, rng)

        wall_pos = []
        wall_signs = []
        for r in range(cfg.WALL_ROWS):
            y = cfg.WALL_Y + 20 + r * (cfg.WALL_H - 40) / max(cfg.WALL_ROWS - 1, 1)
            wall_pos.append((cfg.WALL_X + cfg.WALL_W * 0.3, y))
            wall_signs.append(ChargeSign.POSITIVE)
            wall_pos.append((cfg.WALL_X + cfg.WALL_W * 0.7, y))
            wall_signs.append(ChargeSign.NEGATIVE)

        total = n_sweater + len(wall_pos)
        mobile = _balanced_flags(total, int(round(mobile_fraction * total)), rng)

        self.charges = []
        for i, pos in enumerate(sweater_pos):
            sign = ChargeSign.NEGATIVE if negative[i] else ChargeSign.POSITIVE
            self.charges.append(ChargeEntity(i, pos, sign, bool(mobile[i]), SITE_SWEATER))
        for j, (pos, sign) in enumerate(zip(wall_pos, wall_signs)):
            cid = n_sweater + j
            self.charges.append(ChargeEntity(cid, pos, sign, bool(mobile[cid]), SITE_WALL))

        logger.info(f"Charge layout: {rows}x{cols} sweater + {len(wall_pos)} wall, "
                    f"{int(mobile.sum())} mobile")
        return self.charges

    # ──────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────
    def idle_negative_charges(self, site: str | None = SITE_SWEATER) -> list[ChargeEntity]:
        """Transfer candidates, in registry order (callers sort as they need)."""
        return [c for c in self.charges
                if c.state == ChargeState.IDLE and c.is_negative
                and (site is None or c.site == site)]

    def nearest_idle_negative(self, point) -> ChargeEntity | None:
        """Closest candidate to `point`; ties resolve to the lower id."""
        candidates = self.idle_negative_charges()
        if not candidates:
            return None
        pos = np.array([c.position for c in candidates])
        d2 = np.sum((pos - np.asarray(point, dtype=float)) ** 2, axis=1)
        # argmin returns the first minimum -> registry order on ties
        return candidates[int(np.argmin(d2))]

    def in_state(self, state: ChargeState) -> list[ChargeEntity]:
        return [c for c in self.charges if c.state == state]

    def counts(self) -> Counter:
        """Structural summary keyed by (site, sign, state)."""
        return Counter((c.site, int(c.sign), c.state.name) for c in self.charges)

    # ──────────────────────────────────────────
    # Induction (cosmetic)
    # ──────────────────────────────────────────
    def apply_induction(self, body, dt_ms: float, strength: float = 1.0) -> None:
        """
        Nudge idle mobile charges toward a nearby body, relax the rest home.

        Displacement decays linearly with distance and is zero past the
        cutoff. Smoothing is 6% per 16 ms frame, rescaled for other dt so the
        motion does not depend on frame rate. `state` is never touched.
        """
        if dt_ms <= 0:
            return
        alpha = 1.0 - (1.0 - cfg.INDUCTION_RATE) ** (dt_ms / cfg.FRAME_MS)
        for c in self.charges:
            if c.state != ChargeState.IDLE:
                continue
            if not c.mobile:
                c.animated_position[:] = c.position
                continue
            desired = c.position
            delta = body.position - c.position
            dist = float(np.hypot(delta[0], delta[1]))
            if 0.0 < dist < cfg.INDUCTION_CUTOFF and strength > 0.0:
                falloff = 1.0 - dist / cfg.INDUCTION_CUTOFF
                desired = c.position + (delta / dist) * cfg.INDUCTION_SHIFT * strength * falloff
            c.animated_position += (desired - c.animated_position) * alpha


# ──────────────────────────────────────────────
# Electric field (rendering hint: field lines)
# ──────────────────────────────────────────────
def electric_field(sources: np.ndarray, charges: np.ndarray,
                   points: np.ndarray) -> np.ndarray:
    """
    Coulomb superposition E = sum(q * r_hat / r^2), unit constant.

    Args:
        sources: (N, 2) source positions.
        charges: (N,) signed source magnitudes.
        points:  (M, 2) sample positions.
    Returns:
        (M, 2) field vectors. Coincident source/sample pairs contribute nothing.
    """
    sources = np.asarray(sources, dtype=float).reshape(-1, 2)
    charges = np.asarray(charges, dtype=float).reshape(-1)
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    if len(sources) == 0 or len(points) == 0:
        return np.zeros((len(points), 2))

    diff = points[:, None, :] - sources[None, :, :]          # (M, N, 2)
    dist = np.hypot(diff[..., 0], diff[..., 1])               # (M, N)
    with np.errstate(divide="ignore", invalid="ignore"):
        scale = np.where(dist > 0, charges[None, :] / dist ** 3, 0.0)
    return np.sum(diff * scale[..., None], axis=1)


def field_samples(registry: ChargeRegistry, body, body_charge: float,
                  step: float = 80.0) -> list[dict]:
    """Field vectors on a coarse grid over the playfield, for field-line drawing."""
    sources = [c.animated_position for c in registry]
    q = [float(c.sign) for c in registry]
    if body_charge:
        sources.append(body.position)
        q.append(body_charge)
    xs = np.arange(step / 2, cfg.VIEW_W, step)
    ys = np.arange(step / 2, cfg.VIEW_H, step)
    gx, gy = np.meshgrid(xs, ys)
    points = np.column_stack([gx.ravel(), gy.ravel()])
    vecs = electric_field(np.array(sources), np.array(q), points)
    return [
        {"x": round(float(p[0]), 1), "y": round(float(p[1]), 1),
         "ex": round(float(v[0]), 6), "ey": round(float(v[1]), 6)}
        for p, v in zip(points, vecs)
    ]
