"""
FastAPI WebServer - Main Application
Fingerprint template matching service with a ProcessPool for engine calls.
"""

from concurrent.futures import ProcessPoolExecutor
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from fmrmatch import __version__
from fmrmatch.logger import configure_logging, get_logger, log_access, log_shutdown, log_startup
from .config import (
    HOST, PORT_HTTPS, PORT_HTTP,
    LOG_DIR, LOG_MAX_BYTES, LOG_BACKUP_COUNT,
    CORS_ORIGINS, CORS_ALLOW_CREDENTIALS,
    MAX_WORKERS, SEARCH_TIMEOUT, MATCH_THRESHOLD, VERBOSE
)

# Import routes
from .routes import match_router
from .routes import match_routes
from .routes.match_routes import get_client_ip


# Create FastAPI app
app = FastAPI(
    title="fmrmatch",
    version=__version__,
    description="ISO/IEC 19794-2 fingerprint template matching service"
)


# Global resources
process_pool = None

logger = get_logger("server")


@app.on_event("startup")
async def startup():
    """Initialize server resources on startup."""
    global process_pool

    configure_logging(LOG_DIR, verbose=VERBOSE, max_bytes=LOG_MAX_BYTES, backup_count=LOG_BACKUP_COUNT)
    logger.info("Starting fmrmatch webserver...")

    if MAX_WORKERS > 0:
        process_pool = ProcessPoolExecutor(max_workers=MAX_WORKERS)
        logger.info(f"ProcessPoolExecutor initialized ({MAX_WORKERS} workers)")
    else:
        process_pool = None
        logger.info("ProcessPool disabled, engine calls use the default thread executor")

    # Set global references in route modules
    match_routes.set_globals(process_pool)

    # Log startup info
    log_startup({
        'version': __version__,
        'host': HOST,
        'port_https': PORT_HTTPS,
        'port_http': PORT_HTTP,
        'max_workers': MAX_WORKERS,
        'search_timeout': SEARCH_TIMEOUT,
        'threshold': MATCH_THRESHOLD,
        'log_dir': LOG_DIR,
    })


@app.on_event("shutdown")
async def shutdown():
    """Cleanup resources on shutdown."""
    global process_pool

    logger.info("Shutting down fmrmatch webserver...")
    log_shutdown()

    # Shutdown ProcessPool
    if process_pool:
        process_pool.shutdown(wait=True)
        logger.info("ProcessPool shut down")
    process_pool = None
    match_routes.set_globals(None)


# Middleware for request logging
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    start = time.time()

    response = await call_next(request)

    duration = (time.time() - start) * 1000

    log_access(
        ip=get_client_ip(request),
        method=request.method,
        endpoint=request.url.path,
        status_code=response.status_code,
        duration_ms=duration
    )

    return response


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(match_router, prefix="/api", tags=["Matching"])


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "max_workers": MAX_WORKERS,
        "process_pool": process_pool is not None,
        "threshold": MATCH_THRESHOLD,
    }


# Export app
__all__ = ['app']
