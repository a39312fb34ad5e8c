"""
Cancha Leconte API Server

FastAPI server for the admin panel and the public friend registration flow.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
import uvicorn
from slowapi.errors import RateLimitExceeded  # type: ignore

from cancha.api.routes import router, limiter as routes_limiter
from cancha.database import db
from cancha.services.maintenance_service import get_maintenance_service
from cancha.services.security_service import apply_security_headers, redact_headers
from cancha.utils.constants import validate_security_config
from cancha.utils.datetime_utils import utcnow
from cancha.utils.errors import AppError, ErrorCode, RateLimitError, ServerError, ValidationError

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up Cancha Leconte API...")

    # Raises in production when JWT_SECRET is missing or weak
    validate_security_config()
    logger.info("✓ Security configuration checked")

    try:
        await db.init_database()
        logger.info("✓ Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    try:
        get_maintenance_service().start()
        logger.info("✓ Maintenance worker started")
    except Exception as e:
        logger.error(f"Failed to start maintenance worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Cancha Leconte API...")

    try:
        get_maintenance_service().stop()
        logger.info("✓ Maintenance worker stopped")
    except Exception as e:
        logger.error(f"Error stopping maintenance worker: {e}", exc_info=True)

    try:
        await db.close_database()
        logger.info("✓ Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}", exc_info=True)


app = FastAPI(
    title="Cancha Leconte API",
    description="Admin panel and friend registration API for Cancha Leconte football games",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter


def _error_response(error: AppError) -> JSONResponse:
    response = JSONResponse(status_code=error.status_code, content=error.to_dict())
    if isinstance(error, RateLimitError):
        response.headers["Retry-After"] = str(error.retry_after)
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return _error_response(exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    retry_after = exc.limit.limit.get_expiry() if getattr(exc, "limit", None) else 60
    logger.warning(f"Rate limit {exc.detail} exceeded on {request.method} {request.url.path}")
    return _error_response(RateLimitError(retry_after, code=ErrorCode.RATE_LIMIT_EXCEEDED))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = None
    if errors:
        location = [part for part in errors[0].get("loc", ()) if part not in ("body", "query", "path")]
        if location:
            field = str(location[-1])
    return _error_response(ValidationError(field=field))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path} "
        f"(headers: {redact_headers(request.headers)}): {exc}",
        exc_info=exc,
    )
    # Responses from this handler bypass the security headers middleware
    return apply_security_headers(_error_response(ServerError()))


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    return apply_security_headers(response)


# CORS origins come from the ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"status": "ok", "timestamp": utcnow().isoformat()}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
