"""
rollcall.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn rollcall.api.main:app --reload --port 8000

or ``rollcall-api`` (reads ``config.yaml`` for port and log level).
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from rollcall.api.deps import get_config, get_engine  # noqa: E402
from rollcall.api.routes.participations import router as participations_router  # noqa: E402
from rollcall.api.routes.sessions import router as sessions_router  # noqa: E402
from rollcall.database.engine import init_db  # noqa: E402
from rollcall.database.seed import seed_demo_data  # noqa: E402
from rollcall.errors import RollcallError, ValidationError  # noqa: E402

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"
LOG_DATEFMT = "%H:%M:%S"

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) ``cors_origins`` in config.yaml, if the file exists
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    try:
        cfg = get_config()
    except FileNotFoundError:
        return []
    return [origin.rstrip("/") for origin in cfg.cors_origins]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, optionally seed demo data."""
    engine = get_engine()
    if os.getenv("ROLLCALL_SEED_DEMO", "0") == "1":
        init_db(engine)
        seed_demo_data(engine)
    logger.info("Rollcall API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Rollcall API shutting down")


app = FastAPI(
    title="Rollcall API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RollcallError)
async def rollcall_error_handler(request: Request, exc: RollcallError) -> JSONResponse:
    """Render every typed engine error as ``{"error": {"kind", "message", ...}}``."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def _field_path(loc: tuple | list) -> str:
    # Drop the leading "body" / "query" / "header" segment.
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render pydantic / FastAPI input errors in the same envelope as ValidationError."""
    details: dict[str, str] = {}
    for err in exc.errors():
        details.setdefault(_field_path(err.get("loc", ())), err.get("msg", "invalid"))
    logger.info("%s %s rejected: %s", request.method, request.url.path, details)
    error = ValidationError("Invalid request: " + ", ".join(sorted(details)), details=details)
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


# Mount routers
app.include_router(sessions_router, prefix="/api")
app.include_router(participations_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


def main() -> None:
    """Console entry point: configure logging from config.yaml and serve."""
    import uvicorn

    cfg = get_config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    logger.info("Starting %s on port %d", cfg.service_name, cfg.api_port)
    uvicorn.run(app, host="0.0.0.0", port=cfg.api_port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
