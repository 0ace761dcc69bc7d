"""
FastAPI Application Entry Point

This module initializes the FastAPI application and configures:
- Logging
- API routes
- Middleware (IP logging, CORS)
- Application metadata
- Tracking context lifecycle (startup/shutdown)
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ip_tracker.api import endpoints
from ip_tracker.core.rate_limit import limiter
from ip_tracker.core.setting import settings
from ip_tracker.core.tracker_manager import initialize_tracker, shutdown_tracker
from ip_tracker.middleware.ip_logging import add_ip_logging_middleware

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="IP Tracker Service",
    description="Request attribution and resource-scoped analytics logging",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI documentation
    redoc_url="/redoc",  # ReDoc documentation
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

add_ip_logging_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Health"])
async def root():
    """
    Root endpoint.

    Requests here are recorded in the root partition like any other GET /.
    """
    return {
        "message": "IP Tracker Service",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy"}


app.include_router(endpoints.router, tags=["IP Tracking"])


@app.on_event("startup")
async def startup_event():
    """Build the tracking context and start the event writer."""
    await initialize_tracker()


@app.on_event("shutdown")
async def shutdown_event():
    """Write out queued events and stop the writer."""
    await shutdown_tracker()
