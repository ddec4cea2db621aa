"""
Allocation Pulse API package initialization.

This package contains FastAPI router modules:
- analysis: Pipeline runs, zip lean resolution and default parameters
"""

from fastapi import APIRouter

# Import router modules
from allocation_pulse.api.analysis import router as analysis_router

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(analysis_router, prefix="/analysis", tags=["analysis"])

# Export all routers for selective imports
__all__ = [
    "api_router",
    "analysis_router",
]
