"""
Campaign Engine - FastAPI Backend
Thin REST surface over the engine: campaigns, approvals, execution logs, errors.

Run: uvicorn campaign_engine.api.app:app --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from campaign_engine import config
from campaign_engine.api.routers import approvals, campaigns, logs
from campaign_engine.db.connection import get_db_conn
from campaign_engine.engine.errors import (
    ApprovalConflictError,
    CampaignStateError,
    DuplicateApprovalError,
    EngineError,
    InvalidTransitionError,
    NotFoundError,
    WorkflowValidationError,
)
from campaign_engine.engine.factory import build_engine
from campaign_engine.engine.worker import PollingWorker
from campaign_engine.logging_config import setup_logging

ALLOWED_ORIGINS = os.environ.get("ENGINE_CORS_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")

_STATUS_FOR_ERROR = (
    (NotFoundError, 404),
    (WorkflowValidationError, 422),
    (CampaignStateError, 409),
    (InvalidTransitionError, 409),
    (DuplicateApprovalError, 409),
    (ApprovalConflictError, 409),
)


def create_app(engine=None, start_worker: bool = None) -> FastAPI:
    """Build the API around an engine (a fresh one on DB_PATH if none is given)."""
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT, config.LOG_FILE)
    engine = engine or build_engine()
    start_worker = config.ENABLE_WORKER if start_worker is None else start_worker

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        worker = None
        if start_worker:
            worker = PollingWorker(engine.orchestrator)
            worker.start()
        app.state.worker = worker
        yield
        if worker:
            worker.stop()

    app = FastAPI(
        title="Campaign Engine",
        description="Autonomous multi-channel campaign execution with human approval gates.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        for kind, status in _STATUS_FOR_ERROR:
            if isinstance(exc, kind):
                body = {"detail": str(exc)}
                if isinstance(exc, WorkflowValidationError):
                    body["problems"] = exc.problems
                return JSONResponse(status_code=status, content=body)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    # ─── ROUTERS ─────────────────────────────────────────────────
    app.include_router(campaigns.router)
    app.include_router(approvals.router)
    app.include_router(logs.router)

    # ─── HEALTH CHECK ────────────────────────────────────────────

    @app.get("/api/health")
    def health():
        try:
            with get_db_conn(engine.repo.db_path) as conn:
                tables = conn.execute(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type='table'"
                ).fetchone()[0]
            worker = getattr(app.state, "worker", None)
            return {
                "status": "healthy",
                "tables": tables,
                "db_path": engine.repo.db_path,
                "worker": {"enabled": bool(worker), "running": bool(worker and worker.running)},
            }
        except Exception as e:
            return JSONResponse(status_code=500, content={"status": "unhealthy", "error": str(e)})

    return app


def __getattr__(name):
    # `uvicorn campaign_engine.api.app:app` builds the app on first access only
    if name == "app":
        return create_app()
    raise AttributeError(name)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host=config.API_HOST, port=config.API_PORT)
