"""
Balloon Sandbox Configuration
Layout constants (view units, y-down) + runtime-tunable SimulationConfig.

Values coming from the UI or config.json are clamped into range, never rejected.
"""

import json
import logging
import math
from dataclasses import dataclass, fields, replace

logger = logging.getLogger("balloon_sim")

# ──────────────────────────────────────────────
# Playfield layout (view units, origin top-left)
# ──────────────────────────────────────────────
VIEW_W: float = 1000.0
VIEW_H: float = 640.0

SWEATER_X: float = 120.0
SWEATER_Y: float = 360.0
SWEATER_W: float = 760.0
SWEATER_H: float = 140.0

WALL_X: float = 930.0
WALL_Y: float = 40.0
WALL_W: float = 50.0
WALL_H: float = 280.0
WALL_ROWS: int = 7

BALLOON_X: float = 820.0
BALLOON_Y: float = 160.0
BALLOON_RADIUS: float = 44.0

# Proximity is measured to a point slightly above the sweater's top centre
SUBSTRATE_REF_X: float = SWEATER_X + SWEATER_W / 2
SUBSTRATE_REF_Y: float = SWEATER_Y - 12.0

# ──────────────────────────────────────────────
# Fixed behaviour constants
# ──────────────────────────────────────────────
GRAB_SLOP: float = 8.0              # pointer may land this far outside the balloon
DRAG_MARGIN: float = 8.0            # clamp margin while dragging
FREE_MARGIN: float = 6.0            # clamp margin while coasting
DRAG_VELOCITY_GAIN: float = 0.6
DAMPING: float = 0.92               # per 16 ms frame
FRAME_MS: float = 16.0

INDUCTION_CUTOFF: float = 260.0
INDUCTION_SHIFT: float = 10.0       # max cosmetic displacement at zero distance
INDUCTION_RATE: float = 0.06        # exponential smoothing per 16 ms frame

GRID_JITTER: float = 8.0            # full width of the uniform position jitter
CURVE_OFFSET_SPAN: float = 40.0
TARGET_ANGLE_SPREAD: float = 0.45 * math.pi
STICK_EDGE_MARGIN: float = 12.0


# ──────────────────────────────────────────────
# Runtime configuration
# ──────────────────────────────────────────────
# name -> (min, max); anything outside is clamped with a warning
_BOUNDS = {
    "body_magnitude":       (0.2, 3.0),
    "mobile_fraction":      (0.0, 1.0),
    "stick_distance":       (8.0, 80.0),
    "rows":                 (1, 20),
    "cols":                 (1, 20),
    "transfer_needed":      (1, 400),
    "proximity_threshold":  (1.0, 2000.0),
    "rub_threshold":        (0.0, 200.0),
    "transfer_interval_ms": (1.0, 10000.0),
    "transfer_time_ms":     (1.0, 60000.0),
}

# Changing any of these rebuilds the charge grid and resets the session
LAYOUT_FIELDS = frozenset({"rows", "cols", "mobile_fraction"})


@dataclass(frozen=True)
class SimulationConfig:
    """Everything the UI collaborators may inject, plus the per-variant constants."""
    body_sign: int = -1
    body_magnitude: float = 1.0
    mobile_fraction: float = 0.6
    show_field_lines: bool = False
    stick_distance: float = 24.0
    rows: int = 9
    cols: int = 7
    transfer_needed: int = 6
    proximity_threshold: float = 160.0
    rub_threshold: float = 6.0
    transfer_interval_ms: float = 110.0
    transfer_time_ms: float = 600.0
    seed: int | None = None

    def __post_init__(self):
        # frozen: route writes through object.__setattr__
        for name, (lo, hi) in _BOUNDS.items():
            raw = getattr(self, name)
            cast = int if isinstance(lo, int) else float
            try:
                value = cast(raw)
            except (TypeError, ValueError):
                value = cast(getattr(SimulationConfig, name))
                logger.warning(f"config: {name}={raw!r} is not numeric, using {value}")
            else:
                if isinstance(value, float) and math.isnan(value):
                    value = cast(getattr(SimulationConfig, name))
                    logger.warning(f"config: {name} is NaN, using {value}")
            clamped = min(hi, max(lo, value))
            if clamped != value:
                logger.warning(f"config: {name}={value} out of range, clamped to {clamped}")
            object.__setattr__(self, name, clamped)

        raw_sign = self.body_sign
        try:
            sign = float(raw_sign)
        except (TypeError, ValueError):
            sign = -1.0
        sign = 0 if sign == 0 else int(math.copysign(1, sign))
        if sign != raw_sign:
            logger.warning(f"config: body_sign={raw_sign!r} coerced to {sign}")
        object.__setattr__(self, "body_sign", sign)
        object.__setattr__(self, "show_field_lines", bool(self.show_field_lines))

    @property
    def induction_strength(self) -> float:
        """Neutral balloon induces nothing; either polarity attracts."""
        return self.body_magnitude * abs(self.body_sign)

    @classmethod
    def from_dict(cls, data: dict) -> "SimulationConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (data or {}).items():
            if key in known:
                kwargs[key] = value
            else:
                logger.warning(f"config: unknown key {key!r} ignored")
        return cls(**kwargs)

    def updated(self, **changes) -> "SimulationConfig":
        known = {f.name for f in fields(self)}
        for key in [k for k in changes if k not in known]:
            logger.warning(f"config: unknown key {key!r} ignored")
            changes.pop(key)
        return replace(self, **changes)

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(config_path: str = "config.json") -> dict:
    """Read the whole config file (run_id, logging, simulation sections)."""
    with open(config_path, "r") as f:
        return json.load(f)


def simulation_config_from_file(config_path: str = "config.json") -> SimulationConfig:
    return SimulationConfig.from_dict(load_config(config_path).get("simulation", {}))
