"""
FastAPI application entry point.

Routes:
  WS   /            live state + commands (legacy clients connect to the root)
  WS   /ws

  GET  /api/state
  GET  /api/clients
  POST /api/save
  GET  /api/data-file
  POST /api/commands

  GET  /api/races/current/stats
  GET  /api/races/current/riders.csv
  POST /api/races/current/riders/import

  GET  /results
  GET  /operator

Static:
  /  → built UI from STATIC_DIR, when present
"""
from __future__ import annotations

import asyncio
import logging
import socket
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import (
    APIRouter, FastAPI, HTTPException, Request, Response, WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ValidationError

from mxcounter import config
from mxcounter.broadcast.session_registry import SessionRegistry
from mxcounter.coordinator import RaceCoordinator
from mxcounter.race.commands import command_from_dict, parse_command
from mxcounter.race.stats import parse_riders_csv, race_stats, riders_to_csv
from mxcounter.results.publisher import ResultsPublisher
from mxcounter.storage import data_file_info, load_state

log = logging.getLogger("uvicorn.error")

router = APIRouter()


def _coordinator(request: Request) -> RaceCoordinator:
    return request.app.state.coordinator


def _local_ip() -> Optional[str]:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
    except OSError:
        return None


# ── Debug / status ────────────────────────────────────────────────────────────

@router.get("/api/state")
async def get_state(request: Request):
    return _coordinator(request).snapshot()["data"]


@router.get("/api/clients")
async def get_clients(request: Request):
    return {"connectedClients": _coordinator(request).registry.subscriber_count()}


@router.post("/api/save")
async def force_save(request: Request):
    ok = await _coordinator(request).flush()
    if not ok:
        return {"success": False, "message": "Saving data failed, see server log"}
    return {"success": True, "message": "Data saved successfully"}


@router.get("/api/data-file")
async def get_data_file(request: Request):
    return data_file_info(request.app.state.state_file)


# ── Commands over HTTP ────────────────────────────────────────────────────────

@router.post("/api/commands")
async def post_command(request: Request):
    raw = await request.body()
    try:
        command = parse_command(raw)
    except ValidationError as exc:
        raise HTTPException(400, [e["msg"] for e in exc.errors()])
    applied = await _coordinator(request).dispatch(command)
    return {"applied": applied}


# ── Current race ──────────────────────────────────────────────────────────────

def _require_current_race(request: Request):
    race = _coordinator(request).current_race()
    if race is None:
        raise HTTPException(404, "No race selected")
    return race


@router.get("/api/races/current/stats")
async def get_race_stats(request: Request):
    return race_stats(_require_current_race(request))


@router.get("/api/races/current/riders.csv")
async def export_riders(request: Request):
    race = _require_current_race(request)
    return Response(
        riders_to_csv(race.riders),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{race.id}-riders.csv"'},
    )


class ImportBody(BaseModel):
    csv: str


@router.post("/api/races/current/riders/import")
async def import_riders(body: ImportBody, request: Request):
    _require_current_race(request)
    coordinator = _coordinator(request)
    imported = 0
    for payload in parse_riders_csv(body.csv):
        if await coordinator.dispatch(command_from_dict(payload)):
            imported += 1
    return {"imported": imported}


# ── Results & UI ──────────────────────────────────────────────────────────────

@router.get("/results")
async def get_results(request: Request):
    path: Path = request.app.state.results_file
    if not path.exists():
        raise HTTPException(404, "No results published yet")
    return FileResponse(str(path), media_type="text/html")


@router.get("/operator")
async def operator_page(request: Request):
    index = request.app.state.static_dir / "index.html"
    if not index.exists():
        raise HTTPException(404, "UI build not found")
    return FileResponse(str(index))


# ── WebSocket live state ──────────────────────────────────────────────────────

async def _pump(websocket: WebSocket, q: asyncio.Queue, keepalive: float) -> None:
    while True:
        try:
            msg = await asyncio.wait_for(q.get(), timeout=keepalive)
        except asyncio.TimeoutError:
            # Send keepalive ping
            await websocket.send_json({"type": "ping"})
            continue
        await websocket.send_json(msg)


@router.websocket("/")
@router.websocket("/ws")
async def ws_race(websocket: WebSocket):
    await websocket.accept()
    coordinator: RaceCoordinator = websocket.app.state.coordinator

    q = coordinator.connect()
    sender = asyncio.create_task(_pump(websocket, q, websocket.app.state.keepalive))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Text and binary frames carry the same JSON commands
            raw = message.get("text") or message.get("bytes")
            if raw:
                await coordinator.handle_message(raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        log.exception("WebSocket error")
    finally:
        sender.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await sender
        coordinator.disconnect(q)


# ── App factory ───────────────────────────────────────────────────────────────

def create_app(
    state_file: Path = config.STATE_FILE,
    results_file: Path = config.RESULTS_FILE,
    public_results_file: Optional[Path] = config.PUBLIC_RESULTS_FILE,
    publish_git_dir: Optional[Path] = config.PUBLISH_GIT_DIR,
    static_dir: Path = config.STATIC_DIR,
    keepalive: float = config.WS_KEEPALIVE_SECONDS,
) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state = await load_state(state_file)
        publisher = ResultsPublisher(
            results_file,
            public_file=public_results_file,
            git_dir=publish_git_dir,
            git_remote=config.PUBLISH_GIT_REMOTE,
        )
        app.state.coordinator = RaceCoordinator(state, state_file, SessionRegistry(), publisher)
        log.info("Race server ready, state file %s", state_file)
        ip = _local_ip()
        if ip:
            log.info("Network access: http://%s:%d (operator: /operator)", ip, config.PORT)
        yield
        log.info("Saving data before shutdown...")
        await app.state.coordinator.flush()
        await publisher.wait_background()

    app = FastAPI(title="mxcounter", lifespan=lifespan)
    app.state.state_file = state_file
    app.state.results_file = results_file
    app.state.static_dir = static_dir
    app.state.keepalive = keepalive

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    # Static files: built operator/viewer UI
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="ui")
    return app


app = create_app()


def run() -> None:
    uvicorn.run("mxcounter.main:app", host=config.HOST, port=config.PORT)
