"""
Event Bucketizer Service.

Turns the irregular stream of allocation change events into per-capita rates
over fixed-width time buckets.

Steps:
    (a) floor each occurred_at to the bucket width (default 60 minutes)
    (b) attach the entity's segment (left join; events from entities missing
        in the snapshot get a null segment)
    (c) count events per bucket_start, and separately per
        (bucket_start, segment) for resolved segments only
    (d) denominator = CohortSizer.count_active(bucket_start.normalize(), segment)
    (e) rate = event_count / active_population, null when the population is 0

Timestamps reaching this module are tz-naive local times produced by
services.ingestion.normalize_timestamps, the same convention used for entity
activation dates, so bucket_start.normalize() is the local calendar date the
denominator must be taken on.

Optional zero fill:
    With fill_window set, every bucket in the window (and every segment label
    for segmented output) is emitted, with event_count 0 where nothing
    happened. Without it only buckets holding at least one event appear, which
    biases slot baselines upward when activity is sparse.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import pandas as pd

from allocation_pulse.services.cohort import CohortSizer


# =============================================================================
# Constants
# =============================================================================

DEFAULT_BUCKET_MINUTES: int = 60

RATE_COLUMNS: List[str] = [
    'bucket_start',
    'segment',
    'event_count',
    'active_population',
    'rate',
]

logger = logging.getLogger(__name__)


# =============================================================================
# Window & Bucket Helpers
# =============================================================================


def bucket_frequency(bucket_minutes: int) -> str:
    """pandas offset alias for a bucket width, e.g. 60 -> '60min'."""
    return f"{int(bucket_minutes)}min"


def filter_to_window(
    events: pd.DataFrame,
    window_start: datetime,
    window_end: datetime,
    column: str = 'occurred_at',
) -> pd.DataFrame:
    """
    Keep events with window_start <= occurred_at < window_end.

    Events outside the window are dropped, not retained.
    """
    start = pd.Timestamp(window_start)
    end = pd.Timestamp(window_end)
    mask = (events[column] >= start) & (events[column] < end)
    kept = events.loc[mask].reset_index(drop=True)
    dropped = len(events) - len(kept)
    if dropped:
        logger.info(f"Dropped {dropped} events outside [{start}, {end})")
    return kept


def floor_to_bucket(timestamps: pd.Series, bucket_minutes: int = DEFAULT_BUCKET_MINUTES) -> pd.Series:
    """
    Round timestamps down to the start of their bucket.

    With 60-minute buckets, 10:00 and 10:59 share the 10:00 bucket and 11:00
    starts the next one.
    """
    return pd.to_datetime(timestamps).dt.floor(bucket_frequency(bucket_minutes))


def window_buckets(
    window_start: datetime,
    window_end: datetime,
    bucket_minutes: int = DEFAULT_BUCKET_MINUTES,
) -> pd.DatetimeIndex:
    """Every bucket start from the floored window start up to (excluding) window_end."""
    freq = bucket_frequency(bucket_minutes)
    first = pd.Timestamp(window_start).floor(freq)
    return pd.date_range(start=first, end=pd.Timestamp(window_end), freq=freq, inclusive='left', name='bucket_start')


def attach_segments(events: pd.DataFrame, entities: pd.DataFrame) -> pd.DataFrame:
    """
    Join each event to its entity's segment.

    Returns:
        Copy of events with a segment column; None where the entity is
        unresolved or missing from the snapshot.
    """
    base = events.drop(columns=['segment'], errors='ignore')
    lookup = entities[['entity_id', 'segment']]
    joined = base.merge(lookup, on='entity_id', how='left', validate='many_to_one')
    joined['segment'] = joined['segment'].astype(object).where(joined['segment'].notna(), None)

    orphans = ~base['entity_id'].isin(lookup['entity_id'])
    if orphans.any():
        logger.warning(
            f"{int(orphans.sum())} events reference entities missing from the snapshot; "
            "they count only toward unsegmented totals"
        )
    return joined


def sort_records(
    records: pd.DataFrame,
    segment_labels: Optional[Sequence[str]] = None,
    time_column: str = 'bucket_start',
) -> pd.DataFrame:
    """Order by time, then by segment label order with the unsegmented row first."""
    if segment_labels:
        order = {label: i for i, label in enumerate(segment_labels)}
        rank = records['segment'].map(order).fillna(-1)
    else:
        rank = records['segment'].fillna('')
    return (
        records.assign(_rank=rank)
        .sort_values([time_column, '_rank'], kind='stable')
        .drop(columns='_rank')
        .reset_index(drop=True)
    )


# =============================================================================
# Rate Computation
# =============================================================================


def count_events(
    events: pd.DataFrame,
    bucket_minutes: int = DEFAULT_BUCKET_MINUTES,
    by_segment: bool = False,
) -> pd.DataFrame:
    """
    Count events per bucket (or per bucket and resolved segment).

    Args:
        events: Events with occurred_at and, for by_segment, segment.
        bucket_minutes: Bucket width.
        by_segment: Group by (bucket_start, segment); null segments excluded.

    Returns:
        DataFrame with bucket_start, segment, event_count.
    """
    frame = events.assign(bucket_start=floor_to_bucket(events['occurred_at'], bucket_minutes))

    if by_segment:
        frame = frame[frame['segment'].notna()]
        counts = (
            frame.groupby(['bucket_start', 'segment'], sort=True)
            .size()
            .rename('event_count')
            .reset_index()
        )
    else:
        counts = (
            frame.groupby('bucket_start', sort=True)
            .size()
            .rename('event_count')
            .reset_index()
        )
        counts['segment'] = None

    counts['event_count'] = counts['event_count'].astype('int64')
    return counts[['bucket_start', 'segment', 'event_count']]


def _fill_empty(
    counts: pd.DataFrame,
    buckets: pd.DatetimeIndex,
    segment_labels: Optional[Sequence[str]],
) -> pd.DataFrame:
    if segment_labels is None:
        grid = pd.DataFrame({'bucket_start': buckets})
        filled = grid.merge(counts.drop(columns='segment'), on='bucket_start', how='left')
        filled['segment'] = None
    else:
        grid = pd.MultiIndex.from_product(
            [buckets, list(segment_labels)], names=['bucket_start', 'segment']
        ).to_frame(index=False)
        filled = grid.merge(counts, on=['bucket_start', 'segment'], how='left')

    extra = len(counts) - int(filled['event_count'].notna().sum())
    if extra:
        logger.warning(f"{extra} counted buckets fall outside the fill window and were dropped")
    filled['event_count'] = filled['event_count'].fillna(0).astype('int64')
    filled['segment'] = filled['segment'].astype(object).where(filled['segment'].notna(), None)
    return filled


def bucketize_events(
    events: pd.DataFrame,
    sizer: CohortSizer,
    bucket_minutes: int = DEFAULT_BUCKET_MINUTES,
    by_segment: bool = False,
    segment_labels: Optional[Sequence[str]] = None,
    fill_window: Optional[Tuple[datetime, datetime]] = None,
) -> pd.DataFrame:
    """
    Produce RateRecords for window-filtered, segment-annotated events.

    Args:
        events: Events within the analysis window, with a segment column
            from attach_segments().
        sizer: Cohort sizer over the annotated entity table.
        bucket_minutes: Bucket width in minutes.
        by_segment: Emit one record per (bucket, segment) instead of per bucket.
        segment_labels: Ordered segment labels; used for output ordering and,
            with fill_window, for the zero-filled grid.
        fill_window: (window_start, window_end) to emit zero-count buckets.

    Returns:
        DataFrame with RATE_COLUMNS sorted by bucket_start then segment order.
        rate is NaN where active_population is 0.
    """
    counts = count_events(events, bucket_minutes, by_segment=by_segment)

    if fill_window is not None:
        buckets = window_buckets(fill_window[0], fill_window[1], bucket_minutes)
        labels = None
        if by_segment:
            labels = list(segment_labels) if segment_labels else list(sizer.segments)
        counts = _fill_empty(counts, buckets, labels)

    population_cache: Dict[Tuple[pd.Timestamp, Optional[str]], int] = {}

    def _population(day: pd.Timestamp, segment: Optional[str]) -> int:
        key = (day, segment)
        if key not in population_cache:
            population_cache[key] = sizer.count_active(day, segment)
        return population_cache[key]

    counts['bucket_start'] = pd.to_datetime(counts['bucket_start'])
    days = counts['bucket_start'].dt.normalize()
    counts['active_population'] = pd.Series(
        [_population(day, segment) for day, segment in zip(days, counts['segment'])],
        index=counts.index,
        dtype='int64',
    )

    population = counts['active_population']
    counts['rate'] = counts['event_count'] / population.where(population > 0)

    undefined = int(counts['rate'].isna().sum())
    if undefined:
        logger.warning(f"{undefined} buckets have zero active population; their rate is null")

    return sort_records(counts[RATE_COLUMNS], segment_labels)
