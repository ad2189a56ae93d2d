# app/main.py
"""
Application entry point: lifecycle management, middleware and error rendering.
"""

import time
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.document_store import document_store
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import collaboration, health, matching, payments, schedule
from app.services.errors import CollaborationServiceError
from app.services.redis_client import fast_redis

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the document store pool and Redis locks; close them in reverse order."""
    logger.info("UvoCollab backend starting", environment=settings.environment, debug=settings.debug)

    async with AsyncExitStack() as resources:
        try:
            await db_pool.initialize()
            resources.push_async_callback(db_pool.close)
            await document_store.ensure_schema()
            await fast_redis.initialize()
            resources.push_async_callback(fast_redis.close)
        except Exception as e:
            logger.error("Startup failed, releasing opened resources", error=str(e))
            raise

        logger.info("Document store and Redis ready")
        yield
        logger.info("UvoCollab backend shutting down")


app = FastAPI(
    title="UvoCollab Backend",
    description="Collaboration lifecycle and guest matching service",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

app.include_router(health.router)
app.include_router(collaboration.router)
app.include_router(payments.router)
app.include_router(schedule.router)
app.include_router(matching.router)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    logger.info("Request validation failed", path=request.url.path, errors=len(errors))
    return JSONResponse(
        status_code=400,
        content={"error": f"{field}: {message}" if field else message},
    )


@app.exception_handler(CollaborationServiceError)
async def service_exception_handler(request: Request, exc: CollaborationServiceError):
    logger.warning(
        "Unhandled service error",
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(elapsed_ms, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
