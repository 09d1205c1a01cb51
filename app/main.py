"""
main.py — FastAPI application for the Metakocka ERP sync service

Wires logging, database setup, the background scheduler, rate limiting,
request-ID middleware, error handlers, and the routers.

Business Rules:
- Every response carries an X-Request-ID header (8 hex chars)
- HTTP and validation errors return ErrorResponse JSON
- The scheduler starts with the app unless disabled or under TESTING

Called by: uvicorn (app.main:app)
Depends on: config, database, logging_config, scheduler, routers
"""

import asyncio
import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from .config import settings
from .database import init_db
from .http_client import close_clients
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers.integrations import router as integrations_router
from .routers.inventory import router as inventory_router
from .schemas.errors import error_body

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info("Database ready")

    scheduler_task = None
    if settings.scheduler_enabled and not os.environ.get("TESTING"):
        from .scheduler import start_scheduler

        scheduler_task = asyncio.create_task(start_scheduler())

    yield

    if scheduler_task:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
    await close_clients()
    logger.info("Shutdown complete")


app = FastAPI(title="ERP Sync", version=APP_VERSION, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Middleware ────────────────────────────────────────────────────────


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    start = time.perf_counter()
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({elapsed_ms:.0f}ms)")
    response.headers["X-Request-ID"] = request_id
    return response


# ── Error handlers ────────────────────────────────────────────────────


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_body(request, exc.status_code, str(exc.detail)))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = [{"loc": list(e.get("loc", [])), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(status_code=422, content=error_body(request, 422, "Validation error", detail))


# ── Routes ────────────────────────────────────────────────────────────


@app.get("/health")
async def health():
    return {"status": "ok", "version": APP_VERSION}


app.include_router(integrations_router)
app.include_router(inventory_router)
