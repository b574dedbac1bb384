import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.api.deps import get_settings
from src.app_shell.config import validate_ops_rules
from src.components.newsletter.models import NewsletterError
from src.rules.loader import load_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules, validate and migrate on startup (fail-fast)
    try:
        rules = load_rules(settings.rules_path)
        validate_ops_rules(rules, settings.data_dir)
        SQLiteMigrator(settings.db_path).run_migrations()
        logger.info("Rules loaded from %s", settings.rules_path)
    except Exception:
        logger.critical("Startup failed", exc_info=True)
        raise

    yield


app = FastAPI(
    title="Newsletter Subscriptions API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# --- Error Mapping ---


@app.exception_handler(NewsletterError)
async def newsletter_error_handler(request: Request, exc: NewsletterError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %r", request.method, request.url.path, exc)
    return JSONResponse(
        content={"success": False, "message": exc.message},
        status_code=exc.status_code,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        content={"success": False, "message": "Invalid JSON format"},
        status_code=400,
    )


# --- Routers ---
from src.api.routes import public_newsletter  # noqa: E402

app.include_router(public_newsletter.router, prefix="", tags=["Newsletter"])


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "api"}
