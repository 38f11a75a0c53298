"""
FastAPI Server for the Lead Marketplace core
Exposes unlock, wallet, report and referral endpoints to the presentation layer
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config.config import validate_config
from config.logging import setup_logging
from config.sentry import init_sentry
from src.database.engine import dispose_engine
from src.api.router import router as api_router
from src.api.rate_limit import limiter
from src.services.notification_service import notification_dispatcher, log_sink

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("Starting Lead Marketplace core API...")

    init_sentry()

    # NOTE: schema is managed outside the core (init_db() for local setups)

    notification_dispatcher.subscribe(log_sink)
    notification_dispatcher.start()

    yield

    # Shutdown
    logger.info("Shutting down Lead Marketplace core API...")

    await notification_dispatcher.stop()

    await dispose_engine()
    logger.info("Database connections closed")


app = FastAPI(
    title="Lead Marketplace Core API",
    description="Slot allocation and credit ledger for the lead marketplace",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter

app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Enforces API_RATE_LIMIT on every route without its own limit
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Adds security headers to every response

    The core serves JSON only, so the policy is locked down entirely.
    """
    response = await call_next(request)

    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Cache-Control"] = "no-store"

    return response


# All core endpoints live under /api
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """
    Root endpoint
    """
    return {
        "service": "Lead Marketplace Core API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """
    Health check endpoint
    """
    return {"status": "healthy"}


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Return the original status code; dict details are the response body
    """
    # Log 4xx as warning, 5xx as error
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

    content = exc.detail if isinstance(exc.detail, dict) else {"detail": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content
    )


# Error handler for unexpected exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    if isinstance(exc, HTTPException):
        raise exc

    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": str(exc) if getattr(app, 'debug', False) else "An error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Raises with the list of missing settings
    validate_config()
    logger.info("Configuration validated successfully")

    # Listen on localhost only; the presentation layer reaches the core through the proxy
    uvicorn.run(
        "api_server:app",
        host="127.0.0.1",
        port=8003,
        reload=True,
        log_level="info",
    )
