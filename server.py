"""
Balloon Sandbox Web Server — Layer 3 (FastAPI + WebSocket)

Serves the canvas frontend and runs the simulation loop, streaming a snapshot
per frame to browser clients and feeding their pointer input back in.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

import config as cfg
import logger_setup
from config import SimulationConfig, simulation_config_from_file
from controller import BalloonController
from presets import GesturePreset

logger = logging.getLogger("balloon_sim")

STATIC_DIR = Path(__file__).parent / "static"
CONFIG_PATH = Path(__file__).parent / "config.json"


def _initial_config() -> SimulationConfig:
    try:
        return simulation_config_from_file(str(CONFIG_PATH))
    except (OSError, ValueError) as exc:
        logger.warning(f"config.json unreadable ({exc}); using defaults")
        return SimulationConfig()


# ── Controller ──────────────────────────────────────────────────────────────

ctrl = BalloonController(_initial_config())


# ── Lifespan (startup/shutdown) ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger_setup.setup_logging(str(CONFIG_PATH))
    task = asyncio.create_task(sim_loop())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    ctrl.stop()
    logger.info("Simulation loop stopped")


app = FastAPI(lifespan=lifespan)

# ── Client state ────────────────────────────────────────────────────────────

clients: list[WebSocket] = []
# which websocket owns which pointer id (pointer ids are per-client in browsers)
pointer_owner: dict[int, WebSocket] = {}

# Replays (keys 1-3): run headless and adopt the resulting controller state
GESTURES = {
    "1": (GesturePreset.rub_until_stuck,   "1: Rub until stuck"),
    "2": (GesturePreset.hover_far,         "2: Rub far away"),
    "3": (GesturePreset.pull_off_and_drop, "3: Pull off and drop"),
}

# ── Async simulation loop ───────────────────────────────────────────────────

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS
MAX_DT = 0.05


async def sim_loop():
    """Main loop running at ~60 fps."""
    last_time = time.perf_counter()

    while True:
        now = time.perf_counter()
        dt = now - last_time
        last_time = now

        # Clamp dt to avoid spiral-of-death after a stall
        if dt > MAX_DT:
            dt = MAX_DT

        ctrl.tick(dt * 1000.0)
        _sync_pointer_owners()

        # No client means no surface to draw on: keep simulating, skip the frame
        if clients:
            frame_msg = _build_frame_message()
            dead: list[WebSocket] = []
            for ws in clients:
                try:
                    await ws.send_text(frame_msg)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                _drop_client(ws)
        else:
            ctrl.pending_events.clear()

        elapsed = time.perf_counter() - now
        sleep_time = FRAME_DT - elapsed
        if sleep_time > 0:
            await asyncio.sleep(sleep_time)
        else:
            await asyncio.sleep(0)


def _build_frame_message() -> str:
    """Serialize the current snapshot + drained events into a JSON frame."""
    snap = ctrl.snapshot()
    body = snap["body"]
    frame = {
        "type": "frame",
        "t": snap["t"],
        "body": {
            "x": round(body["x"], 2), "y": round(body["y"], 2),
            "r": body["radius"], "stuck": body["stuck"],
            "dragging": body["dragging"], "sign": body["sign"],
        },
        "charges": [
            [c["id"], round(c["x"], 2), round(c["y"], 2), c["sign"], c["state"][0]]
            for c in snap["charges"]
        ],
        "transferred": snap["transferred_count"],
        "needed": snap["transfer_needed"],
        "active": snap["session_active"],
        "events": ctrl.drain_events(),
        "status": snap["status"],
        "info": snap["info"],
    }
    if "indicator" in snap:
        frame["indicator"] = [round(v, 2) for v in snap["indicator"]]
    if "field" in snap:
        frame["field"] = snap["field"]
    return json.dumps(frame, separators=(',', ':'))


def _init_message() -> str:
    return json.dumps({
        "type": "init",
        "view": [cfg.VIEW_W, cfg.VIEW_H],
        "sweater": [cfg.SWEATER_X, cfg.SWEATER_Y, cfg.SWEATER_W, cfg.SWEATER_H],
        "wall": [cfg.WALL_X, cfg.WALL_Y, cfg.WALL_W, cfg.WALL_H],
        "settings": ctrl.config.as_dict(),
    })


def _drop_client(ws: WebSocket) -> None:
    if ws in clients:
        clients.remove(ws)
    for pid, owner in list(pointer_owner.items()):
        if owner is ws:
            del pointer_owner[pid]
            ctrl.pointer_cancel(pid)


def _sync_pointer_owners() -> None:
    """Forget owners of pointers the controller let go of (e.g. on a stick latch)."""
    held = ctrl.integrator.captured_pointer
    for pid in [p for p in pointer_owner if p != held]:
        del pointer_owner[pid]


def _load_gesture(key: str) -> None:
    global ctrl
    fn, label = GESTURES[key]
    result = fn(run=True, config=ctrl.config)
    ctrl.stop()
    pointer_owner.clear()
    ctrl = result["controller"]
    ctrl.info_msg = f"Replay {label}"
    logger.info(f"Loaded gesture replay {label}")


# ── Client message handling ─────────────────────────────────────────────────

def handle_client_message(ws, msg: dict) -> dict | None:
    """Apply one decoded client message. Returns a reply dict, if any."""
    cmd = msg.get("cmd", "")
    pid = int(msg.get("pointer", 0))

    if cmd == "pointer_down":
        if ctrl.pointer_down(float(msg.get("x", 0.0)), float(msg.get("y", 0.0)), pid):
            pointer_owner[pid] = ws
    elif cmd == "pointer_move":
        if pointer_owner.get(pid) is ws:
            ctrl.pointer_move(float(msg.get("x", 0.0)), float(msg.get("y", 0.0)), pid)
    elif cmd in ("pointer_up", "pointer_cancel"):
        if pointer_owner.get(pid) is ws:
            del pointer_owner[pid]
            ctrl.pointer_up(pid)
    elif cmd == "reset":
        pointer_owner.clear()
        ctrl.reset()
    elif cmd == "rub":
        ctrl.rub()
    elif cmd == "configure":
        settings = msg.get("settings", {})
        if isinstance(settings, dict):
            ctrl.configure(**settings)
        return {"type": "settings", "data": ctrl.config.as_dict()}
    elif cmd == "gesture":
        key = str(msg.get("key", ""))
        if key in GESTURES:
            _load_gesture(key)
    elif cmd == "execute":
        ctrl.execute_command(msg.get("text", ""))
    elif cmd == "get_state":
        return {"type": "state_json", "data": ctrl.get_state_json()}
    return None


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)
    await ws.send_text(_init_message())

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            try:
                reply = handle_client_message(ws, msg)
            except (TypeError, ValueError) as exc:
                logger.debug(f"bad client message {msg!r}: {exc}")
                continue
            if reply is not None:
                await ws.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        _drop_client(ws)


# ── Static files + root route ───────────────────────────────────────────────

app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.get("/")
async def root():
    return FileResponse(str(STATIC_DIR / "index.html"))


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
