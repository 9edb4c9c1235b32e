"""
crewcall.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn crewcall.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from crewcall.api.deps import get_engine  # noqa: E402
from crewcall.api.routes.events import router as events_router  # noqa: E402
from crewcall.api.routes.levels import router as levels_router  # noqa: E402
from crewcall.api.routes.points import router as points_router  # noqa: E402
from crewcall.api.routes.settings import router as settings_router  # noqa: E402
from crewcall.api.routes.staff import router as staff_router  # noqa: E402
from crewcall.database.engine import init_db  # noqa: E402
from crewcall.engine.errors import (  # noqa: E402
    AdmissionDenied,
    CrewcallError,
    Forbidden,
    InvalidTransition,
    LevelInUse,
    NotFound,
    StaffHasHistory,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return []


def status_for(exc: CrewcallError) -> int:
    """HTTP status for a business error."""
    if isinstance(exc, Forbidden):
        return 403
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, (AdmissionDenied, InvalidTransition, LevelInUse, StaffHasHistory)):
        return 409
    return 422


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine and seed defaults."""
    engine = get_engine()
    init_db(engine)
    logger.info("Crewcall API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Crewcall API shutting down")


app = FastAPI(
    title="Crewcall API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CrewcallError)
async def crewcall_error_handler(request: Request, exc: CrewcallError):
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


# Mount routers
app.include_router(events_router, prefix="/api")
app.include_router(points_router, prefix="/api")
app.include_router(levels_router, prefix="/api")
app.include_router(staff_router, prefix="/api")
app.include_router(settings_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
