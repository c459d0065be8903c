"""Simple Redirect FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /health router — delegated to redirector/health.py
  - rule API router — delegated to redirector/api.py
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()            → app.state.config
  2. configure_logging()      → only when a config file set logging options
  3. create_store()           → app.state.store
  4. InMemoryRuleEngine()     → app.state.engine
  5. RedirectCoordinator()    → app.state.coordinator (+ LogIndicator, LogNavigator)
     ConfigEditor()           → app.state.editor
  6. on_installed() / on_startup() — chosen by store.created
  7. app.state.ready = True   → log "Simple Redirect ready"

Shutdown sequence (reverse):
  app.state.ready = False → coordinator.close() → store.close()
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from redirector.api import router as rules_router
from redirector.config import Config, load_config
from redirector.editor import ConfigEditor
from redirector.engine.memory import InMemoryRuleEngine
from redirector.fallback import LogNavigator
from redirector.health import router as health_router
from redirector.indicator import LogIndicator
from redirector.lifecycle import RedirectCoordinator
from redirector.storage.factory import create_store
from redirector.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("Simple Redirect starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    # load_config() raises SystemExit on parse error or missing version field,
    # so the process exits non-zero before ready=True is ever set.
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Logging from the config file ─────────────────────────────────
    # Env vars (LOG_LEVEL / JSON_LOGS) apply when no config file was found.
    if config.path is not None:
        configure_logging(log_level=config.logging.level, json_output=config.logging.json)

    # ── Step 3: Persisted configuration store ────────────────────────────────
    # SQLiteStore.initialize() raises RuntimeError on an unknown schema
    # version; it propagates and startup is refused.
    store = await create_store(config)
    app.state.store = store

    # ── Step 4: Declarative engine ───────────────────────────────────────────
    engine = InMemoryRuleEngine(max_rules=config.engine.max_rules)
    app.state.engine = engine

    # ── Step 5: Coordinator + editor ─────────────────────────────────────────
    coordinator = RedirectCoordinator(
        store=store,
        engine=engine,
        indicator=LogIndicator(),
        navigator=LogNavigator(),
    )
    app.state.coordinator = coordinator
    app.state.editor = ConfigEditor(store)

    # ── Step 6: Install / startup signal ─────────────────────────────────────
    # Hydrates the cache and runs the first full sync. A rejected sync is
    # logged by the queue and does not block startup.
    if store.created:
        result = await coordinator.on_installed()
    else:
        result = await coordinator.on_startup()

    # ── Step 7: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info(
        "Simple Redirect ready",
        fresh_install=store.created,
        rules_installed=result.installed,
        sync_applied=result.applied,
    )

    # ── Server runs here ──────────────────────────────────────────────────────
    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("Simple Redirect shutting down...")
    app.state.ready = False

    await coordinator.close()
    await store.close()

    logger.info("Simple Redirect shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the Simple Redirect FastAPI application.

    Call this function directly in unit tests to get an isolated app instance:
        app = create_app()

    The module-level `app` is created at import time for uvicorn:
        uvicorn redirector.main:app --host 127.0.0.1 --port 4343
    """
    application = FastAPI(
        title="Simple Redirect",
        description="Pattern-based URL redirection with an allowlist and a global pause switch",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    # Initialize ready flag before lifespan — /health returns 503 on any
    # request that arrives before startup completes.
    application.state.ready = False

    application.include_router(health_router)
    application.include_router(rules_router)

    # Global exception handlers
    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
