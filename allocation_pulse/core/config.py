"""
Settings and environment management module for the Allocation Pulse backend.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults matching the 2016 US general election analysis
- Singleton pattern via @lru_cache for efficient access
- Segment scheme defaults (fine 5-level display bands, coarse 3-level segments)

Environment Variables:
- DATA_DIR: Directory holding the four input CSV tables (default: data)
- OUTPUT_DIR: Directory the event report job writes into (default: output)
- WINDOW_START / WINDOW_END: Analysis window bounds (ISO timestamps)
- PIVOT_AT: Timestamp of the calendar event being analyzed
- BUCKET_MINUTES: Bucket width in minutes (default: 60)
- TIMEZONE: Local timezone every timestamp is converted into before truncation
- COARSE_CUT_POINTS / COARSE_LABELS: JSON lists for the 3-level segment scheme
- FINE_CUT_POINTS / FINE_LABELS: JSON lists for the 5-level display scheme

Usage:
    from allocation_pulse.core.config import get_settings

    settings = get_settings()
    bucket_minutes = settings.bucket_minutes
"""

from datetime import datetime
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from allocation_pulse.models.enums import LeanBand, LeanSegment


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every analytical default lives here, but the pipeline itself never reads
    settings directly: callers convert them into an explicit AnalysisParams
    via AnalysisParams.from_settings() and thread that through each stage.

    Attributes:
        data_dir: Directory containing the input CSV tables.
        geo_units_file: File name of the region/lean reference table.
        zip_mapping_file: File name of the zip-to-region crosswalk.
        entities_file: File name of the entity snapshot.
        events_file: File name of the allocation change events.
        output_dir: Root directory for event report output.
        window_start: Inclusive start of the analysis window.
        window_end: Exclusive end of the analysis window.
        pivot_at: Timestamp of the event; its calendar date is the baseline cut.
        bucket_minutes: Bucket width in minutes. Must divide a day evenly.
        delta_window_hours: Half-width of the window used for delta distributions.
        timezone: Timezone used to derive local dates from tz-aware inputs.
        zip_code_width: Zero-pad width for purely numeric zip codes.
        region_code_width: Zero-pad width for purely numeric region codes.
        fine_cut_points / fine_labels: 5-level display scheme.
        coarse_cut_points / coarse_labels: 3-level segment scheme used for rates.
        fill_empty_buckets: Emit zero-count buckets so quiet slots reach the baseline.
        log_level: Root logging level for the API and the report job.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Input / Output Locations
    # =========================================================================

    data_dir: str = 'data'
    geo_units_file: str = 'geo_units.csv'
    zip_mapping_file: str = 'zip_mapping.csv'
    entities_file: str = 'entities.csv'
    events_file: str = 'events.csv'

    output_dir: str = 'output'

    # =========================================================================
    # Analysis Window Defaults
    # =========================================================================

    # Six weeks of pre-election history plus a week afterwards
    window_start: datetime = datetime(2016, 9, 26)
    window_end: datetime = datetime(2016, 11, 16)

    # Polls closing on the east coast; baseline uses buckets before 2016-11-08
    pivot_at: datetime = datetime(2016, 11, 8, 19, 0)

    bucket_minutes: int = 60

    delta_window_hours: int = 72

    # Naive timestamps are assumed to already be in this zone
    timezone: str = 'America/New_York'

    zip_code_width: int = 5
    region_code_width: int = 5

    # =========================================================================
    # Segment Schemes
    # Cut points are ascending; a value exactly on a cut point lands in the
    # upper bin. len(labels) must equal len(cut_points) + 1.
    # =========================================================================

    fine_cut_points: List[float] = [0.2, 0.4, 0.6, 0.8]
    fine_labels: List[str] = [band.value for band in LeanBand]

    coarse_cut_points: List[float] = [0.4, 0.6]
    coarse_labels: List[str] = [segment.value for segment in LeanSegment]

    fill_empty_buckets: bool = False

    log_level: str = 'INFO'


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The application settings instance with all configuration values.

    Raises:
        pydantic.ValidationError: If an environment variable cannot be coerced
            (e.g., BUCKET_MINUTES=abc).

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
