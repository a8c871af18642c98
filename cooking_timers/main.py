"""
main.py
───────
Cooking timers — FastAPI front end.

Exposes:
  REST  /api/timers        CRUD + start / pause / reset
  REST  /api/timers/quick  start an N-minute timer from a recipe step
  REST  /api/presets       quick-start durations
  WS    /ws                real-time push to the frontend
"""

import os
import json
import asyncio
import logging
import platform
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .errors import InvalidArgument, StorageFailure, TimerNotFound
from .models import COMMON_PRESETS, QuickTimerCreate, TimerCreate, TimerUpdate, TimerView
from .notifications import LocalAlertScheduler
from .presentation import PresentationSync
from .storage import TimerStore
from .timer_engine import TimerEngine

logger = logging.getLogger(__name__)


# ── WebSocket connection registry ─────────────────────────────────────────────

class ConnectionManager:
    def __init__(self):
        self.active: List[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, ws: WebSocket):
        await ws.accept()
        async with self._lock:
            self.active.append(ws)

    async def disconnect(self, ws: WebSocket):
        async with self._lock:
            self.active = [c for c in self.active if c is not ws]

    async def broadcast(self, data: dict):
        async with self._lock:
            dead = []
            for ws in self.active:
                try:
                    await ws.send_json(data)
                except Exception as e:
                    logger.warning(f"Dropping websocket client: {e}")
                    dead.append(ws)
            self.active = [c for c in self.active if c not in dead]


def _dump(views: List[TimerView]) -> list:
    return [v.model_dump(mode="json") for v in views]


# ── App factory ───────────────────────────────────────────────────────────────

def create_app(
    engine: Optional[TimerEngine] = None,
    alerts: Optional[LocalAlertScheduler] = None,
) -> FastAPI:
    """
    Build the API around `engine`.  Without one, a store under
    config.DATA_DIR and a LocalAlertScheduler are created.
    """
    ws_manager = ConnectionManager()
    loop_ref: dict = {"loop": None}

    def push(data: dict):
        """Schedule a broadcast from any thread onto the server's event loop."""
        loop = loop_ref["loop"]
        if loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(ws_manager.broadcast(data), loop)

    if engine is None:
        alerts = alerts or LocalAlertScheduler(
            on_alert=lambda timer_id, title, body: push(
                {"event": "timer_alert", "timer_id": timer_id, "title": title, "body": body}
            ),
            desktop=config.DESKTOP_NOTIFICATIONS,
        )
        engine = TimerEngine(TimerStore(config.DATA_DIR), alerts)

    sync = PresentationSync(
        engine,
        on_snapshot=lambda views: push({"event": "timers", "timers": _dump(views)}),
        on_complete=lambda view: push(
            {"event": "timer_complete", "timer": view.model_dump(mode="json")}
        ),
        interval=config.TICK_INTERVAL,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop_ref["loop"] = asyncio.get_running_loop()
        unsubscribe = engine.store.subscribe(
            lambda event, timer_id: push({"event": "timer_changed", "change": event, "timer_id": timer_id})
        )
        logger.info(f"[COOKING TIMERS] PID={os.getpid()} | Platform={platform.system()} | Store={engine.store.root}")
        sync.start()

        yield   # Application runs here

        sync.stop(timeout=2)
        unsubscribe()
        if alerts is not None:
            alerts.shutdown()
        loop_ref["loop"] = None
        logger.info("[COOKING TIMERS] Shutdown complete.")

    app = FastAPI(title="Cooking Timers", version="1.0.0", lifespan=lifespan)
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],    # Dev: allow all; restrict in production
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error mapping ─────────────────────────────────────────────────────────

    @app.exception_handler(TimerNotFound)
    async def not_found_handler(request: Request, exc: TimerNotFound):
        return JSONResponse(status_code=404, content={"detail": "Timer not found", "timer_id": exc.timer_id})

    @app.exception_handler(InvalidArgument)
    async def invalid_argument_handler(request: Request, exc: InvalidArgument):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StorageFailure)
    async def storage_failure_handler(request: Request, exc: StorageFailure):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Timer store unavailable"})

    # ── WebSocket endpoint ────────────────────────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws_manager.connect(ws)
        try:
            views = await asyncio.to_thread(engine.list)
            await ws.send_json({"event": "timers", "timers": _dump(views)})
            while True:
                text = await ws.receive_text()
                try:
                    data = json.loads(text)
                except ValueError:
                    logger.warning("Ignoring websocket frame that is not JSON")
                    continue
                # Handle ping keepalive
                if isinstance(data, dict) and data.get("type") == "ping":
                    await ws.send_json({"type": "pong"})
        except WebSocketDisconnect:
            pass
        finally:
            await ws_manager.disconnect(ws)

    # ── Timer endpoints ───────────────────────────────────────────────────────

    @app.get("/api/timers", response_model=list[TimerView])
    def list_timers(status: Optional[str] = None):
        return engine.list(status=status)

    @app.post("/api/timers", response_model=TimerView, status_code=201)
    def create_timer(body: TimerCreate):
        return engine.create(name=body.name, duration_seconds=body.duration_seconds)

    @app.post("/api/timers/quick", response_model=TimerView, status_code=201)
    def quick_timer(body: QuickTimerCreate):
        return engine.start_new(body.minutes, name=body.name)

    @app.delete("/api/timers/completed")
    def clear_completed():
        return {"removed": engine.clear_completed()}

    @app.get("/api/timers/{timer_id}", response_model=TimerView)
    def get_timer(timer_id: str):
        return engine.get(timer_id)

    @app.patch("/api/timers/{timer_id}", response_model=TimerView)
    def update_timer(timer_id: str, body: TimerUpdate):
        if body.name is None:
            return engine.get(timer_id)
        return engine.rename(timer_id, body.name)

    @app.delete("/api/timers/{timer_id}", status_code=204)
    def delete_timer(timer_id: str):
        engine.delete(timer_id)

    @app.post("/api/timers/{timer_id}/start", response_model=TimerView)
    def start_timer(timer_id: str):
        return engine.start(timer_id)

    @app.post("/api/timers/{timer_id}/pause", response_model=TimerView)
    def pause_timer(timer_id: str):
        return engine.pause(timer_id)

    @app.post("/api/timers/{timer_id}/reset", response_model=TimerView)
    def reset_timer(timer_id: str):
        return engine.reset(timer_id)

    # ── Presets ───────────────────────────────────────────────────────────────

    @app.get("/api/presets")
    def list_presets():
        return [
            {"name": p.name, "seconds": p.seconds, "formatted_duration": p.formatted_duration}
            for p in COMMON_PRESETS
        ]

    # ── Health / info ─────────────────────────────────────────────────────────

    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "pid": os.getpid(),
            "platform": platform.system(),
            "python": platform.python_version(),
        }

    return app


# ── Entry point ───────────────────────────────────────────────────────────────

def run():
    import uvicorn
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("cooking_timers.main:create_app", factory=True, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
