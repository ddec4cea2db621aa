"""
FastAPI router module for analysis runs.

Implements:
- POST /analysis/run: full pipeline over tables supplied in the request body
- POST /analysis/zip-lean: zip lean resolution with both segment schemes
- GET /analysis/defaults: default AnalysisParams derived from settings

Input tables go through the same ingestion validation as the CSV report job.
A SchemaViolation is a client error and maps to HTTP 422 with the individual
validation errors in the detail; anything unexpected maps to HTTP 500.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel, Field

from allocation_pulse.core.dependencies import SettingsDep
from allocation_pulse.models import (
    AnalysisParams,
    AnalysisRequest,
    AnalysisResponse,
    TableType,
    ZipLeanRecord,
    ZipLeanRequest,
)
from allocation_pulse.services.ingestion import (
    SchemaViolation,
    frame_from_records,
    prepare_table,
)
from allocation_pulse.services.pipeline import (
    prepare_inputs,
    records_from_frame,
    resolve_zip_lean,
    run_analysis,
)


# Configure logging
logger = logging.getLogger(__name__)


router = APIRouter()


# =============================================================================
# Local Pydantic Models for API Responses
# =============================================================================

class ZipLeanResponse(BaseModel):
    """Response model for the zip lean endpoint."""
    zip_lean: List[ZipLeanRecord] = Field(
        default_factory=list,
        description="One record per resolved zip code"
    )
    zips_mapped: int = Field(..., ge=0, description="Distinct zip codes in the crosswalk")
    zips_resolved: int = Field(..., ge=0, description="Zip codes with at least one matched region")


# =============================================================================
# Helper Functions
# =============================================================================

def _schema_violation_detail(exc: SchemaViolation) -> Dict[str, Any]:
    return {
        "message": str(exc),
        "table": exc.table_type.value,
        "errors": [error.model_dump() for error in exc.errors],
    }


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/defaults", response_model=AnalysisParams)
async def get_defaults(settings: SettingsDep) -> AnalysisParams:
    """
    Default run parameters.

    Returns:
        AnalysisParams built from the current settings.
    """
    return AnalysisParams.from_settings(settings)


@router.post("/zip-lean", response_model=ZipLeanResponse)
async def resolve_zip_leans(
    settings: SettingsDep,
    request: ZipLeanRequest = Body(...),
) -> ZipLeanResponse:
    """
    Resolve the per-zip lean and both segment labels.

    Schemes omitted from the request fall back to the settings defaults.
    """
    try:
        defaults = AnalysisParams.from_settings(settings)
        fine_scheme = request.fine_scheme or defaults.fine_scheme
        coarse_scheme = request.coarse_scheme or defaults.coarse_scheme

        widths = {
            'zip_code_width': settings.zip_code_width,
            'region_code_width': settings.region_code_width,
        }
        geo_units = prepare_table(
            frame_from_records(request.geo_units, TableType.GEO_UNITS),
            TableType.GEO_UNITS,
            settings.timezone,
            **widths,
        )
        zip_mapping = prepare_table(
            frame_from_records(request.zip_mappings, TableType.ZIP_MAPPING),
            TableType.ZIP_MAPPING,
            settings.timezone,
            **widths,
        )

        zip_lean = resolve_zip_lean(geo_units, zip_mapping, fine_scheme, coarse_scheme)
        logger.info(f"Resolved {len(zip_lean)} zip leans")

        return ZipLeanResponse(
            zip_lean=records_from_frame(zip_lean, ZipLeanRecord),
            zips_mapped=int(zip_mapping['zip_code'].nunique()),
            zips_resolved=len(zip_lean),
        )

    except SchemaViolation as e:
        logger.warning(f"Rejected zip lean request: {e}")
        raise HTTPException(status_code=422, detail=_schema_violation_detail(e))
    except Exception as e:
        logger.exception("Error resolving zip leans")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to resolve zip leans: {str(e)}"
        )


@router.post("/run", response_model=AnalysisResponse)
async def run(
    settings: SettingsDep,
    request: AnalysisRequest = Body(...),
) -> AnalysisResponse:
    """
    Run the full pipeline over the supplied tables.

    Steps:
    1. Validate and normalize the four input tables
    2. Resolve zip leans and annotate entities
    3. Compute overall and per-segment rates with slot baselines
    4. Collect deltas around the pivot

    Args:
        settings: Injected settings (defaults, timezone, code widths)
        request: Tables and optional explicit parameters

    Returns:
        AnalysisResponse with every output table and the coverage report
    """
    try:
        params = request.params or AnalysisParams.from_settings(settings)

        inputs = prepare_inputs(
            frame_from_records(request.geo_units, TableType.GEO_UNITS),
            frame_from_records(request.zip_mappings, TableType.ZIP_MAPPING),
            frame_from_records(request.entities, TableType.ENTITIES),
            frame_from_records(request.events, TableType.EVENTS),
            timezone=params.timezone,
            zip_code_width=settings.zip_code_width,
            region_code_width=settings.region_code_width,
        )

        result = run_analysis(inputs, params)
        return result.to_response()

    except SchemaViolation as e:
        logger.warning(f"Rejected analysis request: {e}")
        raise HTTPException(status_code=422, detail=_schema_violation_detail(e))
    except Exception as e:
        logger.exception("Error running analysis")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to run analysis: {str(e)}"
        )
