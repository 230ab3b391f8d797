"""FastAPI application: run control, edit locks, and the live event stream."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from .config import HOST, LOG_DIR, LOG_FILE, LOG_RETENTION_DAYS, MAX_CONCURRENCY, MIN_CONCURRENCY, PORT, ensure_dirs
from .models import (
    ConcurrencyRequest,
    ForceReleaseRequest,
    LockRequest,
    ReleaseRequest,
    StartRequest,
    StopRequest,
)
from .orchestrator import SESSION_BUSY
from .service import CheckService
from .storage import ReviewStore

logger = logging.getLogger(__name__)

# Built on first use by the process entry point
_service: CheckService | None = None


def _get_service() -> CheckService:
    global _service
    if _service is None:
        _service = CheckService(ReviewStore())
    return _service


def _list_log_files() -> list[Path]:
    ensure_dirs()
    files = [p for p in LOG_DIR.glob("server.log*") if p.is_file()]
    return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)


def _cleanup_old_logs() -> None:
    cutoff_ts = (datetime.now() - timedelta(days=LOG_RETENTION_DAYS)).timestamp()
    for path in _list_log_files():
        if path.stat().st_mtime < cutoff_ts:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.debug("Failed to delete old log file: %s", path)


def _configure_logging() -> None:
    ensure_dirs()
    _cleanup_old_logs()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    file_handler = TimedRotatingFileHandler(
        filename=str(LOG_FILE),
        when="midnight",
        interval=1,
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    logging.basicConfig(level=logging.INFO, handlers=[stream_handler, file_handler], force=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = _get_service()
    await service.open()
    try:
        yield
    finally:
        await service.close()


app = FastAPI(title="Live Check", version="0.1.0", lifespan=lifespan)


# ── Runs ──────────────────────────────────────────────────────────────────

@app.post("/api/automation/check")
async def start_checks(req: StartRequest):
    result = _get_service().start(req.resource_ids, req.principal, concurrency=req.concurrency)
    if result["accepted"]:
        return result
    status_code = 409 if result.get("reason") == SESSION_BUSY else 400
    return JSONResponse(result, status_code=status_code)


@app.post("/api/automation/stop")
async def stop_checks(req: StopRequest):
    result = _get_service().stop(req.principal)
    if not result["accepted"]:
        return JSONResponse(result, status_code=409)
    return result


@app.post("/api/automation/reset")
async def reset_checks():
    service = _get_service()
    await service.reset()
    return {"status": "ok", "stats": service.stats_snapshot()}


@app.post("/api/automation/concurrency")
async def update_concurrency(req: ConcurrencyRequest):
    if not MIN_CONCURRENCY <= req.concurrency <= MAX_CONCURRENCY:
        return JSONResponse(
            {"error": f"Concurrency must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}"},
            status_code=400,
        )
    return _get_service().update_concurrency(req.concurrency)


@app.get("/api/automation/status")
async def automation_status():
    service = _get_service()
    return {"stats": service.stats_snapshot(), "recent_results": service.recent_results()}


async def _stream_frames(service: CheckService, request: Request, poll_seconds: float = 1.0):
    """SSE frames for one client: ``connected``, a stats snapshot, then every bus event."""
    async with service.bus.channel() as channel:
        yield {"event": "connected", "data": json.dumps({"message": "connected"})}
        yield {"event": "stats", "data": json.dumps(service.stats_snapshot())}
        while True:
            if await request.is_disconnected():
                break
            event = await channel.get(timeout=poll_seconds)
            if event is None:
                continue
            yield {"event": event.kind.value, "data": json.dumps(event.data, default=str)}


@app.get("/api/automation/stream")
async def automation_stream(request: Request):
    """SSE relay for bus events. Opens with a stats snapshot to catch up."""
    return EventSourceResponse(_stream_frames(_get_service(), request))


# ── Locks ─────────────────────────────────────────────────────────────────

@app.get("/api/locks")
async def list_locks():
    return {"locks": [lock.model_dump() for lock in _get_service().list_locks()]}


@app.post("/api/locks/acquire")
async def acquire_lock(req: LockRequest):
    result = _get_service().acquire_lock(req.resource_id, req.principal, req.display_name)
    if not result["granted"]:
        return JSONResponse(
            {**result, "error": f"locked by {result['held_by']}"},
            status_code=409,
        )
    return result


@app.post("/api/locks/release")
async def release_lock(req: ReleaseRequest):
    released = _get_service().release_lock(req.resource_id, req.principal)
    if not released:
        return JSONResponse(
            {"released": False, "error": "Not the lock owner or not locked"},
            status_code=400,
        )
    return {"released": True}


@app.post("/api/locks/force-release")
async def force_release_lock(req: ForceReleaseRequest):
    return {"released": _get_service().force_release_lock(req.resource_id)}


# ── Entrypoint ────────────────────────────────────────────────────────────

def main():
    """CLI entrypoint: start the server."""
    _configure_logging()
    logger.info("Starting Live Check at http://%s:%d", HOST, PORT)
    uvicorn.run(app, host=HOST, port=PORT, log_level="info", log_config=None)
