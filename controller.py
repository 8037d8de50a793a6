"""
BalloonController — Layer 2 (Simulation Logic)

Owns the charge registry, the balloon and the transfer session, and advances
them in a fixed order once per tick. Hosts (server.py / main.py) talk to it
through:
  ctrl.tick(dt_ms)            — advance one frame (monotonic clock, ms)
  ctrl.pointer_down/move/up   — record pointer input; no simulation work
  ctrl.reset() / ctrl.rub()   — discrete user commands
  ctrl.configure(**changes)   — settings from the control panel
  ctrl.snapshot()             — read-only projection for the renderer
  ctrl.pending_events         — list of dicts to consume (transfer/stick notices)

Nothing here raises into the host: bad input degrades to a no-op for that tick.
"""

import json
import logging
import math

import numpy as np

import config as cfg
from balloon import MovableBody, DragIntegrator, ProximityDetector
from charges import ChargeRegistry, ChargeState, field_samples
from config import SimulationConfig, LAYOUT_FIELDS
from transfer import TransferSession, TransferScheduler, TransferAnimator, StickController

logger = logging.getLogger("balloon_sim")

DEFAULT_INFO_MSG = "Drag the balloon and rub it on the sweater.  [R] Reset  [B] Rub  [F] Field"


class BalloonController:
    """Layer 2: tick pipeline + command handling for one simulation instance."""

    def __init__(self, config: SimulationConfig | None = None,
                 rng: np.random.Generator | None = None):
        self.config = config or SimulationConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        self.registry = ChargeRegistry()
        self.body = MovableBody()
        self.session = TransferSession()

        self.integrator = DragIntegrator(self.body)
        self.detector = ProximityDetector(self.config.proximity_threshold,
                                          self.config.rub_threshold)
        self.scheduler = TransferScheduler(self.registry, self.session, self.rng,
                                           self.config.transfer_interval_ms)
        self.animator = TransferAnimator(self.registry, self.session,
                                         self.config.transfer_time_ms)
        self.stick = StickController(self.session, self.integrator,
                                     self.config.transfer_needed, self.config.stick_distance)

        self.clock_ms = 0.0
        self._rub_requested = False

        self.status_msg = ""
        self.info_msg = DEFAULT_INFO_MSG
        self.pending_events: list[dict] = []

        self.registry.initialize(self.config.rows, self.config.cols,
                                 self.config.mobile_fraction, self.rng)

    # ──────────────────────────────────────────────────────────────────────────
    # Main loop
    # ──────────────────────────────────────────────────────────────────────────

    def tick(self, dt_ms: float) -> None:
        """
        Advance the simulation by dt_ms.

        Order: integrator -> detector -> scheduler -> animator -> stick, then
        the cosmetic induction pass. Negative or non-finite dt counts as 0.
        """
        try:
            dt_ms = float(dt_ms)
        except (TypeError, ValueError):
            dt_ms = 0.0
        if not math.isfinite(dt_ms) or dt_ms < 0.0:
            dt_ms = 0.0
        self.clock_ms += dt_ms
        body = self.body

        self.integrator.integrate(dt_ms)

        near = self.detector.is_near(body)
        rubbing = self.detector.is_rubbing(body, self.integrator)
        armed = (near and body.dragging and rubbing) or self._rub_requested
        self._rub_requested = False

        for c in self.scheduler.update(self.clock_ms, body, armed):
            self.pending_events.append({"type": "transfer_started", "id": c.id})

        for c in self.animator.update(dt_ms, body):
            self.pending_events.append({
                "type": "charge_attached", "id": c.id,
                "count": self.session.transferred_count,
            })

        if self.stick.update(body):
            self.pending_events.append({"type": "stuck", "x": body.x, "y": body.y})
            self.status_msg = "The balloon sticks to the sweater!"

        self.registry.apply_induction(body, dt_ms, self.config.induction_strength)
        self.integrator.consume_move()

    # ──────────────────────────────────────────────────────────────────────────
    # Pointer input (recorded only; consumed by the next tick)
    # ──────────────────────────────────────────────────────────────────────────

    def pointer_down(self, x: float, y: float, pointer_id: int = 0) -> bool:
        was_stuck = self.body.stuck
        captured = self.integrator.on_pointer_down((x, y), pointer_id)
        if captured and was_stuck:
            self._on_unstuck()
        return captured

    def pointer_move(self, x: float, y: float, pointer_id: int = 0) -> bool:
        was_stuck = self.body.stuck
        moved = self.integrator.on_pointer_move((x, y), pointer_id)
        if not moved:
            logger.debug(f"pointer {pointer_id} move ignored")
        elif was_stuck:
            self._on_unstuck()
        return moved

    def pointer_up(self, pointer_id: int = 0) -> bool:
        released = self.integrator.on_pointer_up(pointer_id)
        if not released:
            logger.debug(f"pointer {pointer_id} up ignored")
        return released

    def pointer_cancel(self, pointer_id: int = 0) -> bool:
        return self.pointer_up(pointer_id)

    def release_pointer(self) -> None:
        """Drop whatever pointer holds the balloon (disconnect / shutdown)."""
        if self.integrator.captured_pointer is not None:
            logger.debug(f"releasing pointer {self.integrator.captured_pointer}")
        self.integrator.release()

    def _on_unstuck(self) -> None:
        self.pending_events.append({"type": "unstuck"})
        self.status_msg = ""
        logger.info(f"balloon pulled off (transferred={self.session.transferred_count})")

    # ──────────────────────────────────────────────────────────────────────────
    # Commands
    # ──────────────────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Rebuild charges, balloon and session from defaults."""
        self.integrator.release()
        self.body.position = np.array([cfg.BALLOON_X, cfg.BALLOON_Y])
        self.body.velocity[:] = 0.0
        self.body.stuck = False
        self.body.dragging = False
        self._relayout()
        self.pending_events.append({"type": "reset"})
        self.status_msg = ""
        logger.info("Simulation reset")

    def rub(self) -> None:
        """Arm the transfer scheduler on the next tick, as if rubbed."""
        self._rub_requested = True

    def configure(self, **changes) -> None:
        """Apply control-panel settings; layout changes rebuild the charge grid."""
        old = self.config
        self.config = old.updated(**changes)
        c = self.config

        self.detector.proximity_threshold = c.proximity_threshold
        self.detector.rub_threshold = c.rub_threshold
        self.scheduler.interval_ms = c.transfer_interval_ms
        self.animator.transfer_time_ms = c.transfer_time_ms
        self.stick.transfer_needed = c.transfer_needed
        self.stick.stick_distance = c.stick_distance

        if any(getattr(old, name) != getattr(c, name) for name in LAYOUT_FIELDS):
            self.body.stuck = False
            self._relayout()
            self.pending_events.append({"type": "relayout"})
        logger.info(f"Configuration updated: {changes}")

    def stop(self) -> None:
        """Host is going away: release capture. The host cancels its own loop."""
        self.release_pointer()
        self._rub_requested = False

    def _relayout(self) -> None:
        self.registry.initialize(self.config.rows, self.config.cols,
                                 self.config.mobile_fraction, self.rng)
        self.session.reset()
        self.stick.reset()
        self._rub_requested = False

    # ──────────────────────────────────────────────────────────────────────────
    # Renderer boundary
    # ──────────────────────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Read-only projection of the current state (plain Python values)."""
        b = self.body
        snap = {
            "t": round(self.clock_ms, 3),
            "body": {
                "x": b.x, "y": b.y, "radius": float(b.radius),
                "stuck": b.stuck, "dragging": b.dragging,
                "sign": self.config.body_sign,
                "magnitude": self.config.body_magnitude,
            },
            "charges": [
                {
                    "id": c.id,
                    "x": float(c.animated_position[0]),
                    "y": float(c.animated_position[1]),
                    "sign": int(c.sign),
                    "state": c.state.name.lower(),
                    "site": c.site,
                }
                for c in self.registry
            ],
            "transferred_count": self.session.transferred_count,
            "transfer_needed": self.config.transfer_needed,
            "session_active": self.session.active,
            "show_field_lines": self.config.show_field_lines,
            "status": self.status_msg,
            "info": self.info_msg,
        }
        if not b.stuck:
            v = self.detector.attraction_vector(b)
            snap["indicator"] = [float(v[0]), float(v[1])]
        if self.config.show_field_lines:
            body_charge = self.config.body_sign * self.config.body_magnitude
            snap["field"] = field_samples(self.registry, b, body_charge)
        return snap

    def drain_events(self) -> list[dict]:
        events, self.pending_events = self.pending_events, []
        return events

    def attached_count(self) -> int:
        return len(self.registry.in_state(ChargeState.ATTACHED))

    # ──────────────────────────────────────────────────────────────────────────
    # Text command panel
    # ──────────────────────────────────────────────────────────────────────────

    def get_state_json(self) -> str:
        """Current settings + session as a compact single-line configure command."""
        return json.dumps({
            "cmd": "configure",
            "settings": {k: v for k, v in self.config.as_dict().items() if k != "seed"},
            "transferred": self.session.transferred_count,
        }, separators=(',', ':'))

    def execute_command(self, text: str) -> None:
        """Parse a JSON command string ({"cmd": reset|rub|configure, ...})."""
        if not text:
            return
        try:
            data = json.loads(text.replace('\r', ''))
        except json.JSONDecodeError as exc:
            logger.warning(f"command parse error: {exc}")
            self.status_msg = f"JSON error: {exc}"
            return
        if not isinstance(data, dict):
            self.status_msg = "Command must be a JSON object."
            return
        cmd = str(data.get("cmd", "")).lower().strip()
        if cmd == "reset":
            self.reset()
        elif cmd == "rub":
            self.rub()
        elif cmd == "configure":
            settings = data.get("settings", {})
            if isinstance(settings, dict):
                self.configure(**settings)
            else:
                self.status_msg = "configure: 'settings' must be an object."
        else:
            self.status_msg = f"Unknown cmd '{cmd}'. Use reset/rub/configure."
