"""HTTP trigger surface for the sync engine.

A scheduler (or an operator) drives a job by calling
``POST /sync/jobs/{id}/process`` repeatedly; each call runs one batch and
returns its summary.

Run with::

    uvicorn texleg_sync.main:app --app-dir src
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import API_KEY, CORS_ORIGINS, PROFILE, load_settings
from .database import get_session_factory, init_database
from .errors import (
    InvalidTransition,
    JobConflict,
    JobNotFound,
    SyncDisabled,
    SystemicFailure,
)
from .jobs import SyncJobController
from .run_log import get_log_path

# ── Configure logging ────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:     %(message)s",
    stream=sys.stderr,
    force=True,
)
LOGGER = logging.getLogger(__name__)


class AppState:
    def __init__(self) -> None:
        self.controller: SyncJobController | None = None


state = AppState()


def _build_controller() -> SyncJobController:
    settings = load_settings()
    engine = init_database(settings.database_url)
    return SyncJobController(
        get_session_factory(engine),
        settings=settings,
        run_log_path=get_log_path(),
    )


def get_controller() -> SyncJobController:
    """FastAPI dependency; tests override it with a controller on a temp database."""
    if state.controller is None:
        state.controller = _build_controller()
    return state.controller


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    controller = get_controller()
    LOGGER.info(
        "Sync API ready (profile=%s, session=%s, sync_enabled=%s)",
        PROFILE,
        controller.settings.session_code,
        controller.settings.sync_enabled,
    )
    yield


app = FastAPI(title="TexLeg Sync", lifespan=lifespan)

# ── CORS middleware ──────────────────────────────────────────────────────────
_cors_origins = [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API key authentication middleware ────────────────────────────────────────
@app.middleware("http")
async def _api_key_middleware(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    """Require ``X-API-Key`` header when ``TEXLEG_API_KEY`` env var is set.

    Skips auth for the health endpoint and for OPTIONS (CORS preflight).
    """
    if API_KEY:
        exempt = {"/health", "/docs", "/openapi.json", "/redoc"}
        if request.url.path not in exempt and request.method != "OPTIONS":
            provided = request.headers.get("X-API-Key", "")
            if provided != API_KEY:
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Invalid or missing API key"},
                )
    return await call_next(request)


# ── Request logging middleware ───────────────────────────────────────────────
@app.middleware("http")
async def _request_logging_middleware(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    """Log every request with method, path, and response time."""
    t0 = time.perf_counter()
    response: Response = await call_next(request)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    LOGGER.info(
        "%s %s %d (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


# ── Typed failures → HTTP ────────────────────────────────────────────────────
@app.exception_handler(JobNotFound)
async def _not_found(_request: Request, exc: JobNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc), "job_id": exc.job_id})


@app.exception_handler(JobConflict)
async def _conflict(_request: Request, exc: JobConflict) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "active_job_id": exc.active_job_id},
    )


@app.exception_handler(InvalidTransition)
async def _invalid_transition(_request: Request, exc: InvalidTransition) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "status": exc.current, "requested": exc.target},
    )


@app.exception_handler(SyncDisabled)
async def _disabled(_request: Request, exc: SyncDisabled) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(SystemicFailure)
async def _systemic(_request: Request, exc: SystemicFailure) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"detail": exc.message, "job_id": exc.job_id, "status": "ERROR"},
    )


# ── Health endpoint ──────────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict:
    settings = load_settings()
    return {
        "status": "ok",
        "profile": PROFILE,
        "session_code": settings.session_code,
        "sync_enabled": settings.sync_enabled,
    }


# ── Sync jobs ────────────────────────────────────────────────────────────────


class CreateJobRequest(BaseModel):
    bill_types: list[str] | None = None
    incremental: bool = False


@app.get("/sync/jobs/active")
def active_job(controller: SyncJobController = Depends(get_controller)) -> dict:
    job = controller.get_active()
    return {"job": job.to_dict() if job else None}


@app.get("/sync/jobs")
def list_jobs(
    limit: int = Query(10, ge=1, le=100),
    controller: SyncJobController = Depends(get_controller),
) -> dict:
    return {"jobs": [job.to_dict() for job in controller.list_recent(limit)]}


@app.post("/sync/jobs", status_code=201)
def create_job(
    body: CreateJobRequest | None = None,
    controller: SyncJobController = Depends(get_controller),
) -> dict:
    body = body or CreateJobRequest()
    job = controller.create(bill_types=body.bill_types, incremental=body.incremental)
    return job.to_dict()


@app.get("/sync/jobs/{job_id}")
def get_job(job_id: str, controller: SyncJobController = Depends(get_controller)) -> dict:
    return controller.get(job_id).to_dict()


@app.post("/sync/jobs/{job_id}/start")
def start_job(job_id: str, controller: SyncJobController = Depends(get_controller)) -> dict:
    return controller.start(job_id).to_dict()


@app.post("/sync/jobs/{job_id}/resume")
def resume_job(job_id: str, controller: SyncJobController = Depends(get_controller)) -> dict:
    return controller.resume(job_id).to_dict()


@app.post("/sync/jobs/{job_id}/pause")
def pause_job(job_id: str, controller: SyncJobController = Depends(get_controller)) -> dict:
    return controller.pause(job_id).to_dict()


@app.post("/sync/jobs/{job_id}/stop")
def stop_job(job_id: str, controller: SyncJobController = Depends(get_controller)) -> dict:
    return controller.stop(job_id).to_dict()


@app.post("/sync/jobs/{job_id}/process")
def process_job(job_id: str, controller: SyncJobController = Depends(get_controller)) -> dict:
    """Run one batch.  Call repeatedly (e.g. from cron) until ``is_complete``."""
    return controller.process(job_id).to_dict()
