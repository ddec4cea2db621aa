"""
Allocation Pulse Package.

Event-anomaly analytics: per-capita rates of allocation changes, segmented by
zip-level geographic lean and compared against a same-weekday, same-time-of-day
pre-event baseline.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration and dependencies
    - models: Pydantic schemas and enums
    - services: Analytical pipeline
    - jobs: Batch report generation
"""

__version__ = "1.0.0"
