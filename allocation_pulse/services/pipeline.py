"""
Analysis Pipeline Service.

Runs the full transformation for one fixed input snapshot:

    raw tables
      -> ingestion (validate + normalize)           services/ingestion.py
      -> ZipLean + segments                          services/geo_resolver.py
      -> annotated entities + CohortSizer            services/cohort.py
      -> window filter + per-capita rates            services/bucketizer.py
      -> slot baselines                              services/baseline.py
      -> deltas + delta distribution                 services/deltas.py
      -> AnalysisResult (frames + CoverageReport)

The run is a pure in-memory batch: no wall-clock reads, no randomness, and
every output frame is sorted deterministically, so identical inputs give
identical outputs. The annotated entity table is shared read-only by every
stage after resolution.

Usage:
    from allocation_pulse.services.pipeline import load_inputs, run_analysis

    inputs = load_inputs(settings)
    result = run_analysis(inputs, AnalysisParams.from_settings(settings))
    response = result.to_response()
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar
import logging

import pandas as pd
from pydantic import BaseModel

from allocation_pulse.core.config import Settings
from allocation_pulse.models import (
    AnalysisParams,
    AnalysisResponse,
    BaselineRecord,
    CoverageReport,
    DeltaDistributionRecord,
    DeltaRecord,
    RateRecord,
    SegmentScheme,
    TableType,
    ZipLeanRecord,
)
from allocation_pulse.services.baseline import normalize_rates
from allocation_pulse.services.bucketizer import (
    attach_segments,
    bucketize_events,
    filter_to_window,
)
from allocation_pulse.services.cohort import CohortSizer, prepare_entities
from allocation_pulse.services.deltas import delta_distribution, event_deltas
from allocation_pulse.services.geo_resolver import (
    annotate_entities,
    assign_segments,
    build_zip_lean,
)
from allocation_pulse.services.ingestion import (
    DEFAULT_REGION_CODE_WIDTH,
    DEFAULT_ZIP_CODE_WIDTH,
    load_table,
    prepare_table,
)


logger = logging.getLogger(__name__)

RecordModel = TypeVar('RecordModel', bound=BaseModel)


# =============================================================================
# Containers
# =============================================================================


@dataclass(frozen=True)
class InputTables:
    """The four normalized input tables of one run."""
    geo_units: pd.DataFrame
    zip_mapping: pd.DataFrame
    entities: pd.DataFrame
    events: pd.DataFrame


@dataclass(frozen=True)
class AnalysisResult:
    """All output frames of one run plus its coverage report."""
    params: AnalysisParams
    coverage: CoverageReport
    zip_lean: pd.DataFrame
    entities: pd.DataFrame
    overall_rates: pd.DataFrame
    segment_rates: pd.DataFrame
    overall_baseline: pd.DataFrame
    segment_baseline: pd.DataFrame
    deltas: pd.DataFrame
    delta_distribution: pd.DataFrame

    def frames(self) -> Dict[str, pd.DataFrame]:
        """Output tables keyed by report name, in a fixed order."""
        return {
            'zip_lean': self.zip_lean,
            'entities': self.entities,
            'overall_rates': self.overall_rates,
            'segment_rates': self.segment_rates,
            'overall_baseline': self.overall_baseline,
            'segment_baseline': self.segment_baseline,
            'deltas': self.deltas,
            'delta_distribution': self.delta_distribution,
        }

    def to_response(self) -> AnalysisResponse:
        """Convert frames into the pydantic response model."""
        return AnalysisResponse(
            params=self.params,
            coverage=self.coverage,
            zip_lean=records_from_frame(self.zip_lean, ZipLeanRecord),
            overall_rates=records_from_frame(self.overall_rates, RateRecord),
            segment_rates=records_from_frame(self.segment_rates, RateRecord),
            overall_baseline=records_from_frame(self.overall_baseline, BaselineRecord),
            segment_baseline=records_from_frame(self.segment_baseline, BaselineRecord),
            deltas=records_from_frame(self.deltas, DeltaRecord),
            delta_distribution=records_from_frame(self.delta_distribution, DeltaDistributionRecord),
        )


# =============================================================================
# Conversion Helpers
# =============================================================================


def records_from_frame(frame: pd.DataFrame, model: Type[RecordModel]) -> List[RecordModel]:
    """
    Build pydantic records from a frame, mapping NaN/NaT to None.

    Null is how undefined rates, missing baselines and unresolved segments
    are represented in every output model.
    """
    if frame.empty:
        return []
    cleaned = frame.astype(object).where(frame.notna(), None)
    return [model(**row) for row in cleaned.to_dict('records')]


# =============================================================================
# Input Preparation
# =============================================================================


def prepare_inputs(
    geo_units: pd.DataFrame,
    zip_mapping: pd.DataFrame,
    entities: pd.DataFrame,
    events: pd.DataFrame,
    timezone: str,
    zip_code_width: int = DEFAULT_ZIP_CODE_WIDTH,
    region_code_width: int = DEFAULT_REGION_CODE_WIDTH,
) -> InputTables:
    """
    Validate and normalize four raw tables.

    Raises:
        SchemaViolation: On the first table that fails validation.
    """
    widths = {'zip_code_width': zip_code_width, 'region_code_width': region_code_width}
    return InputTables(
        geo_units=prepare_table(geo_units, TableType.GEO_UNITS, timezone, **widths),
        zip_mapping=prepare_table(zip_mapping, TableType.ZIP_MAPPING, timezone, **widths),
        entities=prepare_table(entities, TableType.ENTITIES, timezone, **widths),
        events=prepare_table(events, TableType.EVENTS, timezone, **widths),
    )


def load_inputs(settings: Settings, data_dir: Optional[str] = None) -> InputTables:
    """
    Read the four CSV tables named in settings.

    Args:
        settings: Application settings (file names, timezone, code widths).
        data_dir: Directory override; defaults to settings.data_dir.

    Raises:
        FileNotFoundError: If a table file is missing.
        SchemaViolation: If a table fails validation.
    """
    root = Path(data_dir or settings.data_dir)
    files = {
        TableType.GEO_UNITS: settings.geo_units_file,
        TableType.ZIP_MAPPING: settings.zip_mapping_file,
        TableType.ENTITIES: settings.entities_file,
        TableType.EVENTS: settings.events_file,
    }

    tables = {}
    for table_type, file_name in files.items():
        path = root / file_name
        if not path.exists():
            raise FileNotFoundError(f"Input table {table_type.value} not found at {path}")
        tables[table_type] = load_table(
            path,
            table_type,
            timezone=settings.timezone,
            zip_code_width=settings.zip_code_width,
            region_code_width=settings.region_code_width,
        )

    return InputTables(
        geo_units=tables[TableType.GEO_UNITS],
        zip_mapping=tables[TableType.ZIP_MAPPING],
        entities=tables[TableType.ENTITIES],
        events=tables[TableType.EVENTS],
    )


# =============================================================================
# Pipeline
# =============================================================================


def resolve_zip_lean(
    geo_units: pd.DataFrame,
    zip_mapping: pd.DataFrame,
    fine_scheme: SegmentScheme,
    coarse_scheme: SegmentScheme,
) -> pd.DataFrame:
    """ZipLean table with lean_band and segment assigned."""
    return assign_segments(build_zip_lean(geo_units, zip_mapping), fine_scheme, coarse_scheme)


def _count_nulls(*frames: pd.DataFrame, column: str) -> int:
    return sum(int(frame[column].isna().sum()) for frame in frames)


def run_analysis(inputs: InputTables, params: AnalysisParams) -> AnalysisResult:
    """
    Run every stage over normalized input tables.

    Args:
        inputs: Output of prepare_inputs() or load_inputs().
        params: Explicit run parameters.

    Returns:
        AnalysisResult with all frames and the coverage report.
    """
    labels = list(params.coarse_scheme.labels)
    logger.info(
        f"Running analysis over [{params.window_start}, {params.window_end}) "
        f"pivot={params.pivot_at} bucket={params.bucket_minutes}min"
    )

    # Stage 1: geographic resolution
    zip_lean = resolve_zip_lean(
        inputs.geo_units, inputs.zip_mapping, params.fine_scheme, params.coarse_scheme
    )
    entities = annotate_entities(prepare_entities(inputs.entities), zip_lean)
    sizer = CohortSizer(entities)

    # Stage 2: window filter + segment join
    in_window = filter_to_window(inputs.events, params.window_start, params.window_end)
    events = attach_segments(in_window, entities)
    orphan_events = int((~in_window['entity_id'].isin(entities['entity_id'])).sum())

    # Stage 3: per-capita rates
    fill_window = (params.window_start, params.window_end) if params.fill_empty_buckets else None
    overall = bucketize_events(
        events, sizer, params.bucket_minutes, by_segment=False, fill_window=fill_window
    )
    by_segment = bucketize_events(
        events,
        sizer,
        params.bucket_minutes,
        by_segment=True,
        segment_labels=labels,
        fill_window=fill_window,
    )

    # Stage 4: slot baselines
    overall_rates, overall_baseline = normalize_rates(overall, params.pivot_at)
    segment_rates, segment_baseline = normalize_rates(by_segment, params.pivot_at)

    # Stage 5: deltas
    deltas = event_deltas(events, params.pivot_at, params.delta_window_hours)
    distribution = delta_distribution(deltas, params.bucket_minutes, segment_labels=labels)

    coverage = CoverageReport(
        zips_mapped=int(inputs.zip_mapping['zip_code'].nunique()),
        zips_resolved=len(zip_lean),
        entities_total=len(entities),
        entities_unresolved=int(entities['segment'].isna().sum()),
        events_loaded=len(inputs.events),
        events_in_window=len(in_window),
        events_without_entity=orphan_events,
        rate_records=len(overall_rates) + len(segment_rates),
        rate_records_null_rate=_count_nulls(overall_rates, segment_rates, column='rate'),
        rate_records_missing_baseline=_count_nulls(
            overall_rates, segment_rates, column='baseline_rate'
        ),
    )
    logger.info(f"Analysis complete: {coverage.model_dump()}")

    return AnalysisResult(
        params=params,
        coverage=coverage,
        zip_lean=zip_lean,
        entities=entities,
        overall_rates=overall_rates,
        segment_rates=segment_rates,
        overall_baseline=overall_baseline,
        segment_baseline=segment_baseline,
        deltas=deltas,
        delta_distribution=distribution,
    )
