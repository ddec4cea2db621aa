"""
Allocation Pulse Services Module

This module contains the analytical pipeline. Each service is a set of pure
functions over in-memory pandas frames; nothing here performs I/O except
ingestion.load_table and pipeline.load_inputs.

Services:
- ingestion: Table validation and normalization (codes, timestamps, ranges)
- geo_resolver: Zip <-> region crosswalk collapsed to ZipLean and segments
- cohort: Active-population counts per date and segment filter
- bucketizer: Window filter, fixed-width buckets, per-capita rates
- baseline: Per (weekday, time_of_day) pre-pivot baselines
- deltas: Per-event allocation deltas and bucketed distributions
- pipeline: End-to-end run producing AnalysisResult

All services are consumed by the API layer (allocation_pulse/api/) and the
report job (allocation_pulse/jobs/).
"""

# =============================================================================
# Ingestion Service Exports
# Schema validation, code zero-padding and timestamp normalization shared by
# CSV and API inputs
# =============================================================================

from allocation_pulse.services.ingestion import (
    SchemaViolation,
    load_table,
    prepare_table,
    frame_from_records,
    validate_table,
    require_valid,
    normalize_codes,
    normalize_timestamps,
    REQUIRED_COLUMNS,
)

# =============================================================================
# Geographic Resolver Exports
# =============================================================================

from allocation_pulse.services.geo_resolver import (
    build_zip_lean,
    bin_lean,
    assign_segments,
    annotate_entities,
    SegmentResolver,
)

# =============================================================================
# Cohort Sizer Exports
# =============================================================================

from allocation_pulse.services.cohort import (
    CohortSizer,
    prepare_entities,
    ACTIVE_UNTIL_SENTINEL,
)

# =============================================================================
# Event Bucketizer Exports
# =============================================================================

from allocation_pulse.services.bucketizer import (
    filter_to_window,
    floor_to_bucket,
    attach_segments,
    count_events,
    bucketize_events,
    RATE_COLUMNS,
)

# =============================================================================
# Baseline Normalizer Exports
# =============================================================================

from allocation_pulse.services.baseline import (
    add_slot_keys,
    compute_baseline,
    apply_baseline,
    normalize_rates,
)

# =============================================================================
# Direction/Distribution Aggregator Exports
# =============================================================================

from allocation_pulse.services.deltas import (
    event_deltas,
    delta_distribution,
    classify_direction,
)

# =============================================================================
# Pipeline Exports
# =============================================================================

from allocation_pulse.services.pipeline import (
    InputTables,
    AnalysisResult,
    prepare_inputs,
    load_inputs,
    resolve_zip_lean,
    run_analysis,
    records_from_frame,
)


__all__ = [
    # Ingestion
    'SchemaViolation',
    'load_table',
    'prepare_table',
    'frame_from_records',
    'validate_table',
    'require_valid',
    'normalize_codes',
    'normalize_timestamps',
    'REQUIRED_COLUMNS',
    # Geographic resolver
    'build_zip_lean',
    'bin_lean',
    'assign_segments',
    'annotate_entities',
    'SegmentResolver',
    # Cohort sizer
    'CohortSizer',
    'prepare_entities',
    'ACTIVE_UNTIL_SENTINEL',
    # Bucketizer
    'filter_to_window',
    'floor_to_bucket',
    'attach_segments',
    'count_events',
    'bucketize_events',
    'RATE_COLUMNS',
    # Baseline
    'add_slot_keys',
    'compute_baseline',
    'apply_baseline',
    'normalize_rates',
    # Deltas
    'event_deltas',
    'delta_distribution',
    'classify_direction',
    # Pipeline
    'InputTables',
    'AnalysisResult',
    'prepare_inputs',
    'load_inputs',
    'resolve_zip_lean',
    'run_analysis',
    'records_from_frame',
]
