"""Payee Rules API — Main entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from payee_rules import __version__
from payee_rules.config import settings
from payee_rules.core.database import async_session_factory, engine
from payee_rules.core.exceptions import MatchEngineError, NotFoundError, ValidationError
from payee_rules.core.logging import configure_logging
from payee_rules.core.middleware import RequestLoggingMiddleware
from payee_rules.models import Base

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    # Startup
    configure_logging()
    logger.info("Starting Payee Rules API", env=settings.app_env)
    if settings.db_create_all:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    yield
    # Shutdown
    logger.info("Shutting down Payee Rules API")
    await engine.dispose()


app = FastAPI(
    title="Payee Rules API",
    description="Automatic transaction categorization from per-tenant payee matching rules",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# ── Middleware ─────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# ── Exception handlers ────────────────────────────
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Validation error",
            "errors": [error.to_dict() for error in exc.errors],
        },
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(MatchEngineError)
async def match_engine_error_handler(request: Request, exc: MatchEngineError):
    logger.error("match_engine_error", rule_key=str(exc.rule_key), reason=exc.reason)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ── Health Check ──────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check():
    """Liveness probe — always returns healthy if the process is running."""
    return {"status": "healthy", "version": __version__}


@app.get("/ready", tags=["system"])
async def readiness_check():
    """Readiness probe — checks DB connectivity."""
    checks = {"database": "unknown", "api": "ok"}
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"
        return {"status": "degraded", "checks": checks}

    return {"status": "ready", "checks": checks}


# ── API Routes ────────────────────────────────────
from payee_rules.api.v1 import payee_rules  # noqa: E402

app.include_router(
    payee_rules.router,
    prefix="/api/v1/tenants/{tenant_id}/payee-rules",
    tags=["payee-rules"],
)
