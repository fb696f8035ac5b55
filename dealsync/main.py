"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from dealsync.api import api_router
from dealsync.config import get_settings
from dealsync.connectors.oauth import OAuth2AuthManager, RedisStateStore
from dealsync.core.exceptions import (
    AuthorizationError,
    DealSyncError,
    SyncConfigNotFoundError,
    SyncJobConflictError,
    SyncJobNotFoundError,
    TokenNotFoundError,
)
from dealsync.core.redis_client import close_redis, get_redis
from dealsync.database import close_db, get_engine, init_db

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

NOT_FOUND_ERRORS = (SyncConfigNotFoundError, SyncJobNotFoundError, TokenNotFoundError)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting dealsync API...")

    await init_db()
    logger.info("Database initialized")

    redis = await get_redis()
    logger.info("Redis connected")

    auth_manager = OAuth2AuthManager(RedisStateStore(redis), settings=settings)
    await auth_manager.init()
    app.state.auth_manager = auth_manager
    logger.info(f"OAuth2 services configured: {auth_manager.status()}")

    yield

    # Shutdown
    logger.info("Shutting down dealsync API...")

    await auth_manager.close()
    await close_db()
    await close_redis()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="dealsync API",
    description="Gmail and Drive sync ingestion for deal registration imports",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, message: str, data: dict = None) -> JSONResponse:
    content = {"success": False, "error": message}
    if data:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


# Exception handlers
@app.exception_handler(DealSyncError)
async def domain_exception_handler(request: Request, exc: DealSyncError):
    """Map domain errors onto the response envelope."""
    if isinstance(exc, NOT_FOUND_ERRORS):
        return error_response(404, str(exc))
    if isinstance(exc, SyncJobConflictError):
        return error_response(409, str(exc), {"existing_job_id": exc.existing_job_id})
    if isinstance(exc, AuthorizationError):
        logger.warning(f"Authorization error on {request.url.path}: {exc}")
    return error_response(400, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "Invalid request", {"detail": jsonable_errors(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return error_response(
        500,
        str(exc) if settings.debug else "An unexpected error occurred",
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg")}
        for error in exc.errors()
    ]


# Include API routes
app.include_router(api_router)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
    }


# Ready check endpoint
@app.get("/ready")
async def ready_check():
    """Readiness check endpoint."""
    try:
        redis = await get_redis()
        await redis.ping()

        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))

        return {
            "status": "ready",
            "redis": "connected",
            "database": "connected",
        }
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "error": str(e),
            },
        )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dealsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
