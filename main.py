"""
Balloon & Static Electricity — Desktop Viewer (3-Tier Architecture)
Layer 3: Ursina rendering / input handling (orthographic 2D).
Layer 2: controller.py (BalloonController)
Layer 1: charges.py / balloon.py / transfer.py

Drag the balloon with the left mouse button and rub it on the sweater.
R reset, B rub, F field lines, N/O/P balloon sign, [ ] mobile fraction, 1-3 replays.
"""

import os
import random
import tempfile

import numpy as np
from ursina import (
    Ursina, Entity, Text, Mesh, Texture, camera, color, window, mouse, destroy,
    time as ursina_time,
)
from PIL import Image, ImageDraw

import config as cfg
import logger_setup
from config import SimulationConfig, simulation_config_from_file
from controller import BalloonController
from presets import GesturePreset

logger_setup.setup_logging()

try:
    _config = simulation_config_from_file()
except (OSError, ValueError):
    _config = SimulationConfig()

# ── Layer 2: controller instance ──────────────────────────────────────────────
ctrl = BalloonController(_config)

# view units -> world units
UNIT = 1 / 100.0
POINTER_ID = 0


def to_world(x: float, y: float, z: float = 0.0):
    return ((x - cfg.VIEW_W / 2) * UNIT, (cfg.VIEW_H / 2 - y) * UNIT, z)


def mouse_to_view():
    """mouse.position is in camera.ui space: height 1 == full view height."""
    mx, my = mouse.position[0], mouse.position[1]
    return mx * cfg.VIEW_H + cfg.VIEW_W / 2, cfg.VIEW_H / 2 - my * cfg.VIEW_H


# ──────────────────────────────────────────
# Knit texture generation (PIL)
# ──────────────────────────────────────────

_tex_dir = tempfile.mkdtemp(prefix="balloon_tex_")


def _make_knit_texture(base_rgb=(122, 45, 59), stitch_rgb=(150, 62, 78),
                       size=(380, 70), seed=0):
    """Rows of small V stitches so the sweater reads as fabric."""
    w, h = size
    img = Image.new("RGB", size, base_rgb)
    draw = ImageDraw.Draw(img)
    rng = random.Random(seed)
    step = 10
    for y in range(0, h, step):
        for x in range(0, w, step):
            j = rng.randint(-1, 1)
            draw.line([(x, y + j), (x + step // 2, y + step)], fill=stitch_rgb, width=2)
            draw.line([(x + step // 2, y + step), (x + step, y + j)], fill=stitch_rgb, width=2)
    path = os.path.join(_tex_dir, "sweater.png")
    img.save(path)
    return Texture(path)


# ──────────────────────────────────────────
# Ursina App
# ──────────────────────────────────────────

app = Ursina(borderless=False, title="Balloon & Static Electricity",
             size=(int(cfg.VIEW_W), int(cfg.VIEW_H)))
window.color = color.rgb(7, 24, 32)
camera.orthographic = True
camera.fov = cfg.VIEW_H * UNIT

# ── Substrates ────────────────────────────────────────────────────────────────
sweater_entity = Entity(
    model="quad",
    texture=_make_knit_texture(),
    scale=(cfg.SWEATER_W * UNIT, cfg.SWEATER_H * UNIT),
    position=to_world(cfg.SWEATER_X + cfg.SWEATER_W / 2, cfg.SWEATER_Y + cfg.SWEATER_H / 2, 1),
)
wall_entity = Entity(
    model="quad",
    color=color.rgb(59, 74, 90),
    scale=(cfg.WALL_W * UNIT, cfg.WALL_H * UNIT),
    position=to_world(cfg.WALL_X + cfg.WALL_W / 2, cfg.WALL_Y + cfg.WALL_H / 2, 1),
)

# ── Balloon ───────────────────────────────────────────────────────────────────
balloon_entity = Entity(model="circle", color=color.rgb(244, 201, 93),
                        scale=2 * cfg.BALLOON_RADIUS * UNIT)
indicator_entity = None

# ── Charges (L3 owns these, one per registry id) ─────────────────────────────
CHARGE_COLORS = {
    -1: color.rgb(101, 208, 255),
    1:  color.rgb(255, 122, 122),
}
charge_entities: list[Entity] = []
field_entity = None

# ── UI ────────────────────────────────────────────────────────────────────────
info_text = Text(text=ctrl.info_msg, position=(-0.75, 0.47), scale=1.0, color=color.white)
count_text = Text(text="", position=(-0.75, 0.43), scale=1.0, color=color.light_gray)
status_text = Text(text="", position=(-0.75, 0.39), scale=1.0, color=color.yellow)


def _rebuild_charges():
    global charge_entities
    for ent in charge_entities:
        destroy(ent)
    charge_entities = [
        Entity(model="circle", color=CHARGE_COLORS[int(c.sign)], scale=8 * UNIT)
        for c in ctrl.registry
    ]


def _update_indicator(snap):
    global indicator_entity
    if indicator_entity is not None:
        destroy(indicator_entity)
        indicator_entity = None
    vec = snap.get("indicator")
    if vec is None:
        return
    b = snap["body"]
    indicator_entity = Entity(model=Mesh(
        vertices=[to_world(b["x"], b["y"], -0.1), to_world(b["x"] + vec[0], b["y"] + vec[1], -0.1)],
        mode="line", thickness=2,
    ), color=color.rgba(255, 209, 102, 80))


def _update_field_lines(snap):
    global field_entity
    if field_entity is not None:
        destroy(field_entity)
        field_entity = None
    samples = snap.get("field")
    if not samples:
        return
    verts = []
    for f in samples:
        n = float(np.hypot(f["ex"], f["ey"])) or 1.0
        verts.append(to_world(f["x"], f["y"], 0.5))
        verts.append(to_world(f["x"] + f["ex"] / n * 18, f["y"] + f["ey"] / n * 18, 0.5))
    field_entity = Entity(model=Mesh(vertices=verts, mode="line", thickness=1),
                          color=color.rgba(255, 209, 102, 90))


def _handle_controller_event(ev: dict):
    t = ev.get("type")
    if t in ("reset", "relayout"):
        _rebuild_charges()
    elif t == "stuck":
        status_text.text = ctrl.status_msg
    elif t == "unstuck":
        status_text.text = ""


_rebuild_charges()

# ──────────────────────────────────────────
# Input
# ──────────────────────────────────────────

GESTURES = {
    "1": GesturePreset.rub_until_stuck,
    "2": GesturePreset.hover_far,
    "3": GesturePreset.pull_off_and_drop,
}
_last_mouse = None


def input(key):
    global ctrl
    if key == "left mouse down":
        ctrl.pointer_down(*mouse_to_view(), pointer_id=POINTER_ID)
    elif key == "left mouse up":
        ctrl.pointer_up(POINTER_ID)
    elif key == "r":
        ctrl.reset()
    elif key == "b":
        ctrl.rub()
    elif key == "f":
        ctrl.configure(show_field_lines=not ctrl.config.show_field_lines)
    elif key in ("n", "o", "p"):
        ctrl.configure(body_sign={"n": -1, "o": 0, "p": 1}[key])
    elif key in ("[", "]"):
        delta = -0.1 if key == "[" else 0.1
        ctrl.configure(mobile_fraction=round(ctrl.config.mobile_fraction + delta, 2))
    elif key in GESTURES:
        ctrl.stop()
        ctrl = GESTURES[key](run=True, config=ctrl.config)["controller"]
        _rebuild_charges()


# ──────────────────────────────────────────
# Update loop
# ──────────────────────────────────────────

_frame_count = 0


def update():
    global _frame_count, _last_mouse
    _frame_count += 1

    # ── Pointer move → controller (recorded only) ─────────────────────────────
    pos = mouse_to_view()
    if ctrl.body.dragging and pos != _last_mouse:
        ctrl.pointer_move(*pos, pointer_id=POINTER_ID)
    _last_mouse = pos

    # ── Simulation tick ───────────────────────────────────────────────────────
    ctrl.tick(ursina_time.dt * 1000.0)

    for ev in ctrl.drain_events():
        _handle_controller_event(ev)

    # ── Sync entities from snapshot ───────────────────────────────────────────
    snap = ctrl.snapshot()
    b = snap["body"]
    balloon_entity.position = to_world(b["x"], b["y"], 0)

    if len(charge_entities) != len(snap["charges"]):
        _rebuild_charges()
    for ent, c in zip(charge_entities, snap["charges"]):
        ent.position = to_world(c["x"], c["y"], -0.2)
        ent.scale = (10 if c["state"] == "moving" else 8) * UNIT

    count_text.text = f"Electrons transferred: {snap['transferred_count']} / {snap['transfer_needed']}"
    if ctrl.info_msg and info_text.text != ctrl.info_msg:
        info_text.text = ctrl.info_msg

    _update_indicator(snap)
    if _frame_count % 6 == 0 or not snap["show_field_lines"]:
        _update_field_lines(snap)


# ──────────────────────────────────────────
# Run
# ──────────────────────────────────────────

if __name__ == "__main__":
    app.run()
