"""Mento Backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from . import __version__
from .config import get_settings
from .errors import ApiError, RateLimited, Unauthenticated
from .logging_config import configure_logging, get_logger
from .rate_limit import limiter
from .routes import (
    admin_router,
    auth_router,
    catalog_router,
    job_seekers_router,
    jobs_router,
    kyc_router,
    reviews_router,
    subscriptions_router,
    users_router,
    workers_router,
)

API_PREFIX = "/api"

logger = get_logger("mento.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    logger.info(
        f"Starting Mento Backend API (env={settings.environment}, debug={settings.debug}, "
        f"sms={'msg91' if settings.is_msg91_enabled else 'local'}, "
        f"payments={'on' if settings.is_razorpay_enabled else 'off'})"
    )
    yield
    logger.info("Shutting down Mento Backend API")


app = FastAPI(
    title="Mento Backend API",
    description="Marketplace backend for service workers, job seekers and customers",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# Error envelope
# =============================================================================


def error_response(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
        headers=headers,
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    headers = None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    elif isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.status_code, exc.message, headers)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return error_response(400, message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, "Too many requests. Please try again later.")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "Internal server error")


# Rate limiting
app.state.limiter = limiter

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
for router in (
    auth_router,
    users_router,
    kyc_router,
    subscriptions_router,
    workers_router,
    job_seekers_router,
    reviews_router,
    jobs_router,
    catalog_router,
    admin_router,
):
    app.include_router(router, prefix=API_PREFIX)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "mento-backend",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    from .database import USERS_TABLE, get_supabase_client

    db_status = "disconnected"
    try:
        db = get_supabase_client()
        db.table(USERS_TABLE).select("id").limit(1).execute()
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        db_status = f"error: {str(e)[:50]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
    }
