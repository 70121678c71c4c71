"""FastAPI application, the main entrypoint for Spawnpoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.app.api.agents import router as agents_router
from backend.app.api.builds import router as builds_router
from backend.app.api.game_servers import router as game_servers_router
from backend.app.api.session_hosts import router as session_hosts_router
from backend.app.config import settings
from backend.app.db import dispose_db, engine, init_db
from backend.app.errors import ErrorCategory, category_for_status, error_body
from backend.app.services.agent_gateway import AgentGateway, build_client
from backend.app.services.allocator import AllocationCoordinator
from backend.app.services.public_ip import resolve_public_ip
from backend.app.services.reaper import start_reaper_task, stop_reaper_task

logger = logging.getLogger(__name__)

# Configure logging for our app modules so INFO/DEBUG logs are visible.
# Uvicorn's log_level="info" only affects its own logger, not ours.
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s:%(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Store or address failures here are fatal: let them propagate
    await init_db()
    client = build_client()
    gateway = AgentGateway(client)
    public_ip = await resolve_public_ip(client)
    logger.info("Heartbeat endpoint is %s:%d", public_ip, settings.port)

    app.state.coordinator = AllocationCoordinator(gateway, public_ip)
    start_reaper_task()
    yield
    # Shutdown
    await stop_reaper_task()
    await gateway.close()
    await dispose_db()


app = FastAPI(
    title="Spawnpoint",
    description="Game server fleet orchestrator",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Exception handlers ---


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies are a 400 with field-level detail, not FastAPI's default 422."""
    return JSONResponse(
        status_code=400,
        content=error_body(
            "Request validation failed",
            ErrorCategory.VALIDATION.value,
            ErrorCategory.VALIDATION,
            errors=jsonable_encoder(exc.errors()),
        ),
    )


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    category = category_for_status(exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), category.value, category),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a clean JSON 500 instead of a stack trace."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(
            "Internal server error", ErrorCategory.INTERNAL.value, ErrorCategory.INTERNAL
        ),
    )


# Include routers
app.include_router(game_servers_router)
app.include_router(session_hosts_router)
app.include_router(builds_router)
app.include_router(agents_router)


# --- Health check ---


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check with DB connectivity verification."""
    db_ok = "ok"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        db_ok = "error"
        logger.exception("Health check: database connectivity failed")

    return {
        "status": "ok" if db_ok == "ok" else "degraded",
        "database": db_ok,
    }
