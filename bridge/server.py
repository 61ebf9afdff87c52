"""
FastAPI server for the simulator <-> planner bridge.
Speaks the simulator's "42" event envelope over a WebSocket and exposes the
same planning cycle over plain HTTP for tools and tests.
"""

import json
import time
import logging
from pathlib import Path
from typing import Any, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel
import uvicorn

from data.formats.data_format import TelemetryError

app = FastAPI(title="Highway Planner Bridge Server")

EVENT_PREFIX = "42"
MANUAL_MESSAGE = '42["manual",{}]'

# Log planning cycles that eat a noticeable share of the 20 ms tick.
SLOW_CYCLE_SECONDS = 0.01


def _get_bridge_logger() -> logging.Logger:
    log_path = Path(__file__).resolve().parents[1] / "tmp" / "logs" / "planner_bridge.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    bridge_logger = logging.getLogger("planner_bridge")
    bridge_logger.setLevel(logging.INFO)

    if not any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path)
               for h in bridge_logger.handlers):
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        handler.setFormatter(formatter)
        bridge_logger.addHandler(handler)
        bridge_logger.propagate = False

    return bridge_logger


logger = _get_bridge_logger()

# Global state
planner_stack: Optional[Any] = None  # object with process_telemetry(dict) -> dict
latest_telemetry: Optional[dict] = None
latest_plan: Optional[dict] = None
cycle_count: int = 0
manual_count: int = 0
last_cycle_time: Optional[float] = None


class TelemetryPayload(BaseModel):
    """Telemetry body as sent by the simulator (yaw in degrees, speed in mph)."""
    x: float
    y: float
    yaw: float
    speed: float
    s: float
    d: float
    previous_path_x: List[float] = []
    previous_path_y: List[float] = []
    end_path_s: Optional[float] = None
    end_path_d: Optional[float] = None
    sensor_fusion: List[List[float]] = []


def configure(stack: Optional[Any]) -> None:
    """Attach the planner stack that serves every cycle (None detaches)."""
    global planner_stack, latest_telemetry, latest_plan, cycle_count, manual_count, last_cycle_time
    planner_stack = stack
    latest_telemetry = None
    latest_plan = None
    cycle_count = 0
    manual_count = 0
    last_cycle_time = None


def decode_event(message: str) -> Optional[Tuple[str, Any]]:
    """
    Split a socket frame into ``(event, data)``.

    Returns:
        None for frames that are not events (no ``42`` prefix, or not a JSON
        array); ``data`` is None when the simulator sends a null payload.
    """
    if not message or len(message) <= len(EVENT_PREFIX) or not message.startswith(EVENT_PREFIX):
        return None
    try:
        body = json.loads(message[len(EVENT_PREFIX):])
    except json.JSONDecodeError:
        logger.warning(f"Undecodable event frame: {message[:80]!r}")
        return None
    if not isinstance(body, list) or not body or not isinstance(body[0], str):
        return None
    data = body[1] if len(body) > 1 else None
    return body[0], data


def encode_event(event: str, data: Any) -> str:
    return EVENT_PREFIX + json.dumps([event, data], separators=(",", ":"))


def _run_cycle(payload: dict) -> dict:
    """Plan one cycle through the configured stack and remember the result."""
    global latest_telemetry, latest_plan, cycle_count, last_cycle_time

    if planner_stack is None:
        raise RuntimeError("Planner stack not configured")

    start_time = time.time()
    plan = planner_stack.process_telemetry(payload)
    duration = time.time() - start_time

    latest_telemetry = payload
    latest_plan = plan
    cycle_count += 1
    last_cycle_time = time.time()

    if duration > SLOW_CYCLE_SECONDS:
        logger.warning(f"[SLOW] planning cycle {cycle_count} took {duration:.3f}s")
    if plan.get("fallback"):
        logger.warning(f"Cycle {cycle_count} used fallback plan: {plan.get('fallback_reason')}")
    return plan


def handle_socket_message(message: str) -> Optional[str]:
    """Reply frame for one incoming socket frame, or None when no reply is due."""
    global manual_count

    decoded = decode_event(message)
    if decoded is None:
        return None
    event, data = decoded

    if data is None:
        manual_count += 1
        return MANUAL_MESSAGE
    if event != "telemetry":
        return None

    try:
        plan = _run_cycle(data)
    except (TelemetryError, RuntimeError) as e:
        manual_count += 1
        logger.error(f"Cannot plan this cycle, handing over to manual: {e}")
        return MANUAL_MESSAGE

    return encode_event("control", {"next_x": plan["next_x"], "next_y": plan["next_y"]})


@app.websocket("/socket.io/")
@app.websocket("/")
async def simulator_socket(websocket: WebSocket):
    """Simulator connection: one telemetry frame in, one control frame out.

    The simulator's client connects on ``/socket.io/?EIO=...&transport=websocket``.
    """
    await websocket.accept()
    logger.info("Simulator connected")
    try:
        while True:
            message = await websocket.receive_text()
            reply = handle_socket_message(message)
            if reply is not None:
                await websocket.send_text(reply)
    except WebSocketDisconnect:
        logger.info("Simulator disconnected")


@app.post("/api/telemetry")
async def receive_telemetry(telemetry: TelemetryPayload):
    """
    Run one planning cycle on a telemetry body.

    Returns:
        Plan with ``next_x``/``next_y`` and cycle diagnostics
    """
    if planner_stack is None:
        raise HTTPException(status_code=503, detail="Planner stack not configured")
    try:
        return _run_cycle(telemetry.model_dump())
    except TelemetryError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.get("/api/plan/latest")
async def get_latest_plan():
    """Most recent plan produced by either transport."""
    if latest_plan is None:
        raise HTTPException(status_code=404, detail="No plan available")
    return latest_plan


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "planner_configured": planner_stack is not None,
        "cycles": cycle_count,
        "manual_replies": manual_count,
        "has_plan": latest_plan is not None,
        "last_cycle_time": last_cycle_time,
    }


def run_server(host: str = "0.0.0.0", port: int = 4567):
    """Run the bridge server."""
    print(f"Starting Highway Planner Bridge Server on {host}:{port}")
    print("Endpoints:")
    print("  WS   /                 - Simulator event socket (42[\"telemetry\", ...])")
    print("  POST /api/telemetry    - Plan one cycle from a JSON telemetry body")
    print("  GET  /api/plan/latest  - Get latest plan")
    print("  GET  /api/health       - Health check")

    uvicorn.run(app, host=host, port=port)
