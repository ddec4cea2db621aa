"""
FastAPI application entry point for the Allocation Pulse API.

This module wires the analysis router into the application, configures
logging and CORS, and starts the ASGI server when executed directly.

Settings are injected into endpoints through core.dependencies so tests can
override them with app.dependency_overrides.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from allocation_pulse import __version__
from allocation_pulse.api.analysis import router as analysis_router
from allocation_pulse.core.config import get_settings

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup the effective analysis defaults are logged so a deployment's
    window and pivot are visible in its logs.
    """
    # Startup
    settings = get_settings()
    logger.info("Allocation Pulse API starting")
    logger.info(
        f"Defaults: window=[{settings.window_start}, {settings.window_end}) "
        f"pivot={settings.pivot_at} bucket={settings.bucket_minutes}min tz={settings.timezone}"
    )

    yield

    # Shutdown
    logger.info("Allocation Pulse API shutting down")


# Create FastAPI application
app = FastAPI(
    title="Allocation Pulse API",
    version=__version__,
    description=(
        "Per-capita allocation change rates around a calendar event, "
        "segmented by zip-level geographic lean and normalized against "
        "a same-weekday, same-time-of-day baseline."
    ),
    lifespan=lifespan,
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(analysis_router, prefix="/analysis", tags=["analysis"])


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    """
    Root endpoint providing API information.

    Returns:
        Dict with API name and version
    """
    return {
        "name": "Allocation Pulse API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "allocation_pulse.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
