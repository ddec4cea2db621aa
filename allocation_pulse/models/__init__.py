"""
Package initialization file for Allocation Pulse models.

Exports all Pydantic schemas and enumerations from schemas.py and enums.py,
making them importable from allocation_pulse.models directly.

Usage:
    from allocation_pulse.models import (
        AnalysisParams,
        LeanSegment,
        RateRecord,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from allocation_pulse.models.enums import (
    LeanSegment,
    LeanBand,
    TableType,
    Period,
    DeltaDirection,
)


# =============================================================================
# Schemas
# =============================================================================

from allocation_pulse.models.schemas import (
    MINUTES_PER_DAY,
    # Validation
    ValidationError,
    # Parameters
    SegmentScheme,
    AnalysisParams,
    # Input records
    GeoUnitRecord,
    ZipMappingRecord,
    EntityRecord,
    EventRecord,
    # Output records
    ZipLeanRecord,
    RateRecord,
    BaselineRecord,
    DeltaRecord,
    DeltaDistributionRecord,
    CoverageReport,
    # API bodies
    ZipLeanRequest,
    AnalysisRequest,
    AnalysisResponse,
)


__all__ = [
    # Enums
    'LeanSegment',
    'LeanBand',
    'TableType',
    'Period',
    'DeltaDirection',
    # Schemas
    'MINUTES_PER_DAY',
    'ValidationError',
    'SegmentScheme',
    'AnalysisParams',
    'GeoUnitRecord',
    'ZipMappingRecord',
    'EntityRecord',
    'EventRecord',
    'ZipLeanRecord',
    'RateRecord',
    'BaselineRecord',
    'DeltaRecord',
    'DeltaDistributionRecord',
    'CoverageReport',
    'ZipLeanRequest',
    'AnalysisRequest',
    'AnalysisResponse',
]
