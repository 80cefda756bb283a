import os
import time
import uuid

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront import __version__
from storefront.api.v1 import auth, cart, checkout, orders, products
from storefront.core.config import settings
from storefront.core.exceptions import APIError
from storefront.core.logging_config import configure_logging
from storefront.core.rate_limiter import limiter
from storefront.db.session import engine
from storefront.utils.response import error_response

# --------------------------------------------------
# LOGGING AND MONITORING
# --------------------------------------------------
configure_logging()
logger = structlog.get_logger()

if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=f"storefront-checkout@{__version__}",
        traces_sample_rate=0.1,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
    )
    logger.info("sentry_initialized")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=__version__,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=None,
)

# --------------------------------------------------
# MIDDLEWARE
# --------------------------------------------------
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

cors_origins = list(settings.BACKEND_CORS_ORIGINS)
# Cookies need the exact frontend origin.
if settings.FRONTEND_URL and settings.FRONTEND_URL not in cors_origins:
    cors_origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "X-Process-Time"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "same-origin"
    if settings.ENVIRONMENT == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.middleware("http")
async def request_context(request: Request, call_next):
    """
    Bind request and correlation ids to every log line written while the
    request runs, and log how long it took.
    """
    request_id = str(uuid.uuid4())
    correlation_id = request.headers.get("X-Correlation-ID") or request_id
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        correlation_id=correlation_id,
        method=request.method,
        path=request.url.path,
    )
    logger.info("request_started", client_ip=request.client.host if request.client else None)

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_ms=round(elapsed * 1000, 2),
    )
    return response


# --------------------------------------------------
# ROUTERS
# --------------------------------------------------
app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/auth", tags=["Authentication"])
app.include_router(products.router, prefix=f"{settings.API_V1_STR}/products", tags=["Products"])
app.include_router(cart.router, prefix=f"{settings.API_V1_STR}/cart", tags=["Cart"])
app.include_router(checkout.router, prefix=f"{settings.API_V1_STR}/checkout", tags=["Checkout"])
app.include_router(orders.router, prefix=f"{settings.API_V1_STR}/orders", tags=["Orders"])
# Browser form post; answers with redirects, not JSON
app.include_router(checkout.form_router, tags=["Checkout"])


# --------------------------------------------------
# OPERATIONAL ENDPOINTS
# --------------------------------------------------
@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": __version__,
    }


@app.get("/health/database")
def database_health_check():
    """Round-trip to the database; 503 when it cannot be reached."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("database_health_check_failed", error=str(exc))
        return error_response(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            message="Database unavailable",
            code="database_unavailable",
        )

    return {
        "status": "healthy",
        "dialect": engine.dialect.name,
        "pool": engine.pool.status(),
    }


@app.get("/")
def root():
    return {
        "message": settings.PROJECT_NAME,
        "docs": f"{settings.API_V1_STR}/docs",
        "checkout": f"{settings.API_V1_STR}/checkout",
        "version": __version__,
    }


@app.get(f"{settings.API_V1_STR}/version")
def get_version():
    return {
        "version": __version__,
        "commit": os.getenv("GIT_COMMIT", "unknown"),
    }


# --------------------------------------------------
# EXCEPTION HANDLERS
# --------------------------------------------------
@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("api_error", code=exc.code, status_code=exc.status_code)
    return error_response(
        status_code=exc.status_code,
        message=exc.message,
        errors=exc.errors,
        code=exc.code,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limited", limit=str(exc.detail))
    return error_response(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        message="Too many requests. Please try again later.",
        code="rate_limited",
    )


@app.exception_handler(StarletteHTTPException)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        message = detail.get("message", "Request failed")
        errors = detail.get("errors", [])
    elif isinstance(detail, list):
        message, errors = "Request failed", detail
    else:
        message, errors = str(detail or "Request failed"), []

    return error_response(
        status_code=exc.status_code,
        message=message,
        errors=errors,
        code="http_error",
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Same {field, message} shape the checkout uses for shipping errors
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"][1:]) or str(error["loc"][0]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation failed",
        errors=errors,
        code="validation_error",
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    message = "Internal server error"
    if settings.DEBUG and settings.ENVIRONMENT != "production":
        message = f"Internal server error: {exc}"

    return error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=message,
        code="internal_error",
    )
