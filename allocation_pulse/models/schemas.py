"""
Pydantic request/response models for the Allocation Pulse backend.

This module provides type-safe data validation and serialization for:
- Analysis parameters and segment schemes (explicitly threaded through every
  pipeline stage instead of ambient configuration)
- Input table records accepted by the HTTP API
- Output records for zip lean, normalized rates, baselines, deltas and the
  coverage report
- Validation error details used by ingestion

Nullable output fields are the representation of the non-fatal error classes:
a null segment is an unresolved zip, a null rate is a zero population, a null
baseline_rate is a slot with no pre-pivot history.

All models use Pydantic v2 syntax.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from allocation_pulse.models.enums import DeltaDirection, Period

if TYPE_CHECKING:
    from allocation_pulse.core.config import Settings


# Minutes per day; bucket widths must divide it so time_of_day keys repeat daily
MINUTES_PER_DAY: int = 24 * 60


# =============================================================================
# Validation Models
# =============================================================================


class ValidationError(BaseModel):
    """
    Validation error detail.

    Used for reporting schema violations found in input tables.
    """
    field: str = Field(
        ...,
        description="Column (or table-level check) with the validation error"
    )
    message: str = Field(
        ...,
        description="Error message"
    )
    row_number: Optional[int] = Field(
        default=None,
        ge=1,
        description="1-based row number of the first offending row"
    )


# =============================================================================
# Analysis Parameter Models
# =============================================================================


class SegmentScheme(BaseModel):
    """
    An ordered binning scheme for the lean attribute.

    Bins are [-inf, c1), [c1, c2), ..., [cn, +inf): a value exactly on a cut
    point falls into the upper bin.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "coarse",
                "cut_points": [0.4, 0.6],
                "labels": ["low", "mid", "high"]
            }
        }
    )

    name: str = Field(..., min_length=1, description="Scheme name (fine, coarse)")
    cut_points: List[float] = Field(
        ...,
        min_length=1,
        description="Strictly ascending boundary values"
    )
    labels: List[str] = Field(
        ...,
        description="Bin labels, lowest bin first; one more than cut_points"
    )

    @model_validator(mode='after')
    def _check_shape(self) -> 'SegmentScheme':
        cuts = self.cut_points
        if any(later <= earlier for earlier, later in zip(cuts, cuts[1:])):
            raise ValueError(f"cut_points must be strictly ascending, got {cuts}")
        if len(self.labels) != len(cuts) + 1:
            raise ValueError(
                f"Scheme '{self.name}' needs {len(cuts) + 1} labels for "
                f"{len(cuts)} cut points, got {len(self.labels)}"
            )
        if len(set(self.labels)) != len(self.labels):
            raise ValueError(f"Scheme '{self.name}' has duplicate labels: {self.labels}")
        return self


class AnalysisParams(BaseModel):
    """
    Explicit parameters for one pipeline run.

    Every component receives the values it needs from this object; nothing in
    the pipeline reads global configuration. The baseline cut is implicitly
    the pivot's calendar date.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "window_start": "2016-09-26T00:00:00",
                "window_end": "2016-11-16T00:00:00",
                "pivot_at": "2016-11-08T19:00:00",
                "bucket_minutes": 60,
                "delta_window_hours": 72,
                "timezone": "America/New_York",
                "fill_empty_buckets": False
            }
        }
    )

    window_start: datetime = Field(..., description="Inclusive analysis window start")
    window_end: datetime = Field(..., description="Exclusive analysis window end")
    pivot_at: datetime = Field(..., description="Timestamp of the calendar event")
    bucket_minutes: int = Field(default=60, gt=0, description="Bucket width in minutes")
    delta_window_hours: int = Field(
        default=72,
        gt=0,
        description="Half-width of the window around the pivot for delta distributions"
    )
    timezone: str = Field(
        default='America/New_York',
        description="Timezone tz-aware inputs are converted into before dates are taken"
    )
    fine_scheme: SegmentScheme = Field(..., description="5-level display scheme")
    coarse_scheme: SegmentScheme = Field(..., description="3-level scheme for rate comparisons")
    fill_empty_buckets: bool = Field(
        default=False,
        description="Emit zero-count buckets for slots with no events"
    )

    @field_validator('bucket_minutes')
    @classmethod
    def _bucket_divides_day(cls, value: int) -> int:
        if MINUTES_PER_DAY % value != 0:
            raise ValueError(
                f"bucket_minutes must divide {MINUTES_PER_DAY} evenly, got {value}"
            )
        return value

    @field_validator('window_start', 'window_end', 'pivot_at')
    @classmethod
    def _naive_timestamps(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            raise ValueError("Analysis timestamps must be naive local times")
        return value

    @model_validator(mode='after')
    def _window_is_ordered(self) -> 'AnalysisParams':
        if self.window_start >= self.window_end:
            raise ValueError(
                f"window_start ({self.window_start}) must precede window_end ({self.window_end})"
            )
        return self

    @classmethod
    def from_settings(cls, settings: 'Settings', **overrides) -> 'AnalysisParams':
        """
        Build parameters from application settings.

        Args:
            settings: Loaded Settings instance.
            **overrides: Field values that replace the settings defaults.

        Returns:
            AnalysisParams with both segment schemes populated.
        """
        values = {
            'window_start': settings.window_start,
            'window_end': settings.window_end,
            'pivot_at': settings.pivot_at,
            'bucket_minutes': settings.bucket_minutes,
            'delta_window_hours': settings.delta_window_hours,
            'timezone': settings.timezone,
            'fine_scheme': SegmentScheme(
                name='fine',
                cut_points=settings.fine_cut_points,
                labels=settings.fine_labels,
            ),
            'coarse_scheme': SegmentScheme(
                name='coarse',
                cut_points=settings.coarse_cut_points,
                labels=settings.coarse_labels,
            ),
            'fill_empty_buckets': settings.fill_empty_buckets,
        }
        values.update(overrides)
        return cls(**values)


# =============================================================================
# Input Table Records (HTTP API bodies)
# Domain checks (state/lean ranges, duplicate ids) run in services/ingestion.py
# so CSV and API inputs share one validation path.
# =============================================================================


class GeoUnitRecord(BaseModel):
    """A county-equivalent region with its lean attribute."""
    region_id: str = Field(..., min_length=1, description="Region identifier (e.g. county FIPS)")
    lean: Optional[float] = Field(default=None, description="Lean attribute in [0, 1]")


class ZipMappingRecord(BaseModel):
    """One row of the many-to-many zip/region crosswalk."""
    zip_code: str = Field(..., min_length=1)
    region_id: str = Field(..., min_length=1)


class EntityRecord(BaseModel):
    """A user from the snapshot import."""
    entity_id: str = Field(..., min_length=1)
    zip_code: Optional[str] = Field(default=None)
    activated_at: datetime = Field(..., description="Activation timestamp")
    deactivated_at: Optional[datetime] = Field(
        default=None,
        description="Deactivation timestamp; null when still active"
    )


class EventRecord(BaseModel):
    """An allocation change made by an entity."""
    entity_id: str = Field(..., min_length=1)
    from_state: float = Field(..., description="Allocation before the change, in [0, 1]")
    to_state: float = Field(..., description="Allocation after the change, in [0, 1]")
    occurred_at: datetime = Field(...)


# =============================================================================
# Output Records
# =============================================================================


class ZipLeanRecord(BaseModel):
    """Resolved lean for a zip code."""
    zip_code: str
    sample_count: int = Field(..., ge=1, description="Number of matched regions")
    mean_lean: float = Field(..., ge=0, le=1, description="Mean of matched region leans")
    lean_band: Optional[str] = Field(default=None, description="Fine scheme label")
    segment: Optional[str] = Field(default=None, description="Coarse scheme label")


class RateRecord(BaseModel):
    """
    Per-capita event rate for one bucket, paired with its seasonal baseline.

    segment is null for the unsegmented (all entities) series.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "bucket_start": "2016-11-09T10:00:00",
                "segment": "high",
                "event_count": 5,
                "active_population": 100,
                "rate": 0.05,
                "weekday": 3,
                "time_of_day": "10:00",
                "period": "post",
                "baseline_rate": 0.01,
                "baseline_samples": 6,
                "excess_rate": 0.04,
                "relative_rate": 5.0
            }
        }
    )

    bucket_start: datetime
    segment: Optional[str] = None
    event_count: int = Field(..., ge=0)
    active_population: int = Field(..., ge=0)
    rate: Optional[float] = Field(default=None, description="Null when active_population is 0")
    weekday: int = Field(..., ge=1, le=7, description="ISO weekday, Monday = 1")
    time_of_day: str = Field(..., description="HH:MM of the bucket start")
    period: Period
    baseline_rate: Optional[float] = Field(
        default=None,
        description="Null when the slot has no pre-pivot history"
    )
    baseline_samples: int = Field(default=0, ge=0)
    excess_rate: Optional[float] = None
    relative_rate: Optional[float] = None


class BaselineRecord(BaseModel):
    """Pre-pivot mean rate for a (weekday, time_of_day[, segment]) slot."""
    weekday: int = Field(..., ge=1, le=7)
    time_of_day: str
    segment: Optional[str] = None
    baseline_rate: Optional[float] = None
    baseline_samples: int = Field(..., ge=0)


class DeltaRecord(BaseModel):
    """A single allocation change near the pivot."""
    occurred_at: datetime
    entity_id: str
    segment: Optional[str] = None
    from_state: float
    to_state: float
    delta: float
    direction: DeltaDirection


class DeltaDistributionRecord(BaseModel):
    """Summary statistics of deltas for one bucket and segment."""
    bucket_start: datetime
    segment: Optional[str] = None
    event_count: int = Field(..., ge=1)
    mean_delta: float
    min_delta: float
    q1_delta: float
    median_delta: float
    q3_delta: float
    max_delta: float
    increases: int = Field(..., ge=0)
    decreases: int = Field(..., ge=0)
    unchanged: int = Field(..., ge=0)


class CoverageReport(BaseModel):
    """
    Data coverage counts for one run.

    Lets a consumer report on resolution gaps, undefined rates and missing
    baselines without reading logs.
    """
    zips_mapped: int = Field(default=0, ge=0)
    zips_resolved: int = Field(default=0, ge=0)
    entities_total: int = Field(default=0, ge=0)
    entities_unresolved: int = Field(default=0, ge=0)
    events_loaded: int = Field(default=0, ge=0)
    events_in_window: int = Field(default=0, ge=0)
    events_without_entity: int = Field(default=0, ge=0)
    rate_records: int = Field(default=0, ge=0)
    rate_records_null_rate: int = Field(default=0, ge=0)
    rate_records_missing_baseline: int = Field(default=0, ge=0)


# =============================================================================
# API Request / Response Models
# =============================================================================


class ZipLeanRequest(BaseModel):
    """Tables needed to resolve zip leans."""
    geo_units: List[GeoUnitRecord]
    zip_mappings: List[ZipMappingRecord]
    fine_scheme: Optional[SegmentScheme] = None
    coarse_scheme: Optional[SegmentScheme] = None


class AnalysisRequest(BaseModel):
    """Full set of input tables plus optional parameter overrides."""
    geo_units: List[GeoUnitRecord]
    zip_mappings: List[ZipMappingRecord]
    entities: List[EntityRecord]
    events: List[EventRecord]
    params: Optional[AnalysisParams] = Field(
        default=None,
        description="Run parameters; settings defaults are used when omitted"
    )


class AnalysisResponse(BaseModel):
    """Complete output of one pipeline run."""
    params: AnalysisParams
    coverage: CoverageReport
    zip_lean: List[ZipLeanRecord] = Field(default_factory=list)
    overall_rates: List[RateRecord] = Field(default_factory=list)
    segment_rates: List[RateRecord] = Field(default_factory=list)
    overall_baseline: List[BaselineRecord] = Field(default_factory=list)
    segment_baseline: List[BaselineRecord] = Field(default_factory=list)
    deltas: List[DeltaRecord] = Field(default_factory=list)
    delta_distribution: List[DeltaDistributionRecord] = Field(default_factory=list)
