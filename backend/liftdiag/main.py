"""
Lift Diagnostic Service API
FastAPI backend: analytics-backend record compilation, rule-based event linking,
LLM narrative generation (primary + fallback models), PDF summaries, and
async PostgreSQL storage of past diagnostics.
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from liftdiag import config
from liftdiag.db import init_db, storage_configured
from liftdiag.errors import DiagnosticError
from liftdiag.services.logging_config import setup_logging
from liftdiag.services.middleware import RequestTimingMiddleware

setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_FORMAT != "text")
logger = logging.getLogger("liftdiag-api")

APP_VERSION = "1.0.0"

# Startup validation
for var, value in [
    ("OPENAI_API_KEY", config.OPENAI_API_KEY),
    ("LOOKER_API_BASE_URL", config.LOOKER_API_BASE_URL),
    ("LOOKER_CLIENT_ID", config.LOOKER_CLIENT_ID),
    ("LOOKER_CLIENT_SECRET", config.LOOKER_CLIENT_SECRET),
]:
    if not value:
        logger.warning(f"MISSING env var: {var} — diagnostics will fail until it is set")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.ENABLE_STORAGE:
        await init_db()
    yield


app = FastAPI(
    title="Lift Diagnostic Service API",
    version=APP_VERSION,
    description="Maintenance-history diagnostics for lifts",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Error responses: {"error": ..., "details": ...}
# ---------------------------------------------------------------------------
@app.exception_handler(DiagnosticError)
async def diagnostic_error_handler(request: Request, exc: DiagnosticError):
    logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    content = {"error": exc.summary}
    if not config.is_production():
        content["details"] = {
            "type": type(exc).__name__,
            "message": str(exc),
            "requestId": getattr(request.state, "request_id", None),
            "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
        preview = getattr(exc, "preview", None)
        if preview:
            content["details"]["responsePreview"] = preview
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


# ---------------------------------------------------------------------------
# CORS — restricted to allowed origins from env
# ---------------------------------------------------------------------------
cors_origins = [o.strip() for o in config.CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
    expose_headers=["Content-Disposition", "X-Request-ID", "X-Process-Time"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from liftdiag.api.diagnostic_routes import router as diagnostic_router  # noqa: E402
from liftdiag.api.lookup_routes import router as lookup_router  # noqa: E402

app.include_router(diagnostic_router)
app.include_router(lookup_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": APP_VERSION,
        "storage_configured": config.ENABLE_STORAGE and storage_configured(),
        "llm_primary": config.LLM_PRIMARY_MODEL,
        "llm_models": config.model_priority_list(),
        "looker_configured": bool(config.LOOKER_API_BASE_URL and config.LOOKER_CLIENT_ID),
    }
