"""
Sentinel - FastAPI Application Entry Point

Real-time incident map backend: ingests the live report stream, answers
filtered/sorted view queries with risk scores, and records exactly-once votes.

DESIGN PRINCIPLES:
- The store is the source of truth; the engine holds a normalized projection
- Severity is classified once at creation and never recomputed
- A vote is counted at most once per user per report
"""

import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentinel.core.logging import configure_logging
from sentinel.core.settings import settings
from sentinel.routes import health, reports
from sentinel.services.engine import get_engine

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Live spatial aggregation and voting for geotagged incident reports",
    debug=settings.DEBUG
)


# Global exception handler to catch ALL exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and log them with full traceback."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Internal server error: {str(exc)}"}
    )


# Pydantic validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(exc)}
    )


def jsonable_errors(exc: RequestValidationError):
    # ctx may hold exception instances that are not JSON serializable
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


# CORS configuration - origins come from settings, never "*"
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Application lifecycle events
@app.on_event("startup")
async def startup_event():
    """
    Start the report subscription.
    Failures are logged; the engine keeps retrying in the background.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    try:
        get_engine().start()
    except Exception as e:
        logger.error(f"Engine startup failed: {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.APP_NAME}")
    get_engine().stop()


# Include routers
app.include_router(health.router)
app.include_router(reports.router)


# Root endpoint
@app.get("/")
async def root():
    """
    Root endpoint - API information.
    """
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "view": "/reports/view?mode=nearby&lat={lat}&lng={lng}"
    }


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn
    uvicorn.run("sentinel.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
