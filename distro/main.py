"""
Distro - FastAPI Application

Royalty, payout, analytics and API key backend for a music distribution
platform.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from distro.core.database import Base, async_session_maker, engine
from distro.core.errors import ConflictError, ExternalDependencyError, NotFoundError, ValidationError
from distro.core.logging import configure_logging
from distro.routers.analytics import router as analytics_router
from distro.routers.api_keys import router as api_keys_router
from distro.routers.payouts import batches_router as payout_batches_router
from distro.routers.payouts import router as payouts_router
from distro.routers.royalties import router as royalties_router
from distro.routers.users import router as users_router
from distro.services.api_keys import api_key_cleanup_loop

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Create tables on startup (for development)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    cleanup_task = asyncio.create_task(api_key_cleanup_loop(async_session_maker))
    logger.info("API key cleanup task started")

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    logger.info("API key cleanup task stopped")
    await engine.dispose()


app = FastAPI(
    title="Distro",
    description="Royalties, payouts, analytics and API keys for music distribution",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(ExternalDependencyError)
async def external_dependency_handler(request: Request, exc: ExternalDependencyError):
    logger.error(f"External dependency failure on {request.url.path}: {exc}")
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


# Include routers
app.include_router(users_router)
app.include_router(royalties_router)
app.include_router(payouts_router)
app.include_router(payout_batches_router)
app.include_router(analytics_router)
app.include_router(api_keys_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
