"""
Subscription Key Service - FastAPI Backend
Issues, reconciles and rotates metered provider keys for subscribed users.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import missing_required_settings, settings
from database import engine, Base
import models  # noqa: F401
from routers import health, keys
from services.errors import CredentialServiceError


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print(f"🚀 Starting {settings.SERVICE_NAME}...")
    missing = missing_required_settings()
    if missing:
        print(f"⚠️ Missing configuration, key requests will fail: {', '.join(missing)}")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title=settings.SERVICE_NAME,
    description="Issue and rotate metered provider keys backed by a per-user credit ledger",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(CredentialServiceError)
async def credential_service_error_handler(request: Request, exc: CredentialServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed (%s): %s", request.method, request.url.path, type(exc).__name__, exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.public_message},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": message},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "An unexpected error occurred"},
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(keys.router, prefix="/api", tags=["Keys"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.SERVICE_NAME,
        "status": "running",
        "version": settings.SERVICE_VERSION,
        "environment": settings.ENVIRONMENT or "unknown",
    }
